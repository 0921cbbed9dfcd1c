# Overview: Flask API routes for login and token management; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import auth_service

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Exchange username/password for an API token.

    The token is returned once and must be sent as
    ``Authorization: Bearer <token>``. Logging in again replaces it.
    """
    data = request.get_json(silent=True) or {}
    username = data.get("username")
    password = data.get("password")

    if not all([username, password]):
        return jsonify({"error": "username and password required"}), 400

    user = auth_service.authenticate(username, password)
    if user is None:
        current_app.logger.info("Failed login for %r", username)
        return jsonify({"error": "Invalid credentials"}), 401

    token = auth_service.issue_token(user)
    return jsonify({"token": token, "user": user.to_dict()}), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    auth_service.revoke_token(g.current_user)
    return jsonify({"status": "ok"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "permissions": sorted(auth_service.get_user_permissions(user)),
    }), 200
