# Overview: Flask API routes for register sessions and closed-session access; parses input and returns JSON responses.

"""
Register Session API Routes

WHY: The drawer is opened, reviewed and closed here, and closed sessions are
only viewed or edited through a supervised access request.

DESIGN:
- Shift lifecycle: open -> pending_review -> closed
- Amounts are accepted as decimal strings/numbers and returned as cents plus
  a formatted string
- Closed sessions: transactions are visible to admins and to users holding an
  approved access request; edits consume that request

SECURITY:
- "access drawer" for the operator's own shift
- "access register-history" for closed sessions, requests and edits
- "approve register-access" for approving or denying requests
- Only administrators may close or review a session they did not open
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import CashbookError, ValidationError
from ..models.registers import SESSION_CLOSED
from ..permissions import (
    ACCESS_DRAWER,
    ACCESS_REGISTER_HISTORY,
    ACCESS_REPORTS,
    APPROVE_REGISTER_ACCESS,
)
from ..services import access_service, ledger_service, register_service
from .errors import cents_field, error_response, internal_error

registers_bp = Blueprint("registers", __name__, url_prefix="/api/registers")

# API field -> session column
EDIT_FIELDS = {
    "opening_balance": "opening_balance_cents",
    "cash_sales": "cash_sales_cents",
    "debt_repaid": "debt_repaid_cents",
    "actual_cash": "actual_cash_cents",
}


# =============================================================================
# SHIFT LIFECYCLE
# =============================================================================

@registers_bp.post("/sessions")
@require_auth
@require_permission(ACCESS_DRAWER)
def open_session_route():
    """
    Open the register.

    Request body:
    {
        "opening_balance": "1000.00"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        opening = cents_field(data, "opening_balance", allow_zero=True)
        session = register_service.open_session(g.current_user.id, opening)
        return jsonify({"session": session.to_dict()}), 201
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to open register session")


@registers_bp.get("/sessions/current")
@require_auth
@require_permission(ACCESS_DRAWER)
def current_session_route():
    session = register_service.get_open_session()
    if session is None:
        return jsonify({"session": None}), 200
    totals = ledger_service.compute_session_totals(session.id)
    return jsonify({"session": session.to_dict(), "totals": totals.to_dict()}), 200


@registers_bp.post("/sessions/<int:session_id>/review")
@require_auth
@require_permission(ACCESS_DRAWER)
def request_review_route(session_id: int):
    try:
        session = register_service.request_close_review(
            session_id,
            g.current_user.id,
            manager_override=g.current_user.is_admin,
        )
        return jsonify({"session": session.to_dict()}), 200
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to request close review")


@registers_bp.post("/sessions/<int:session_id>/close")
@require_auth
@require_permission(ACCESS_DRAWER)
def close_session_route(session_id: int):
    """
    Close the register with the counted cash.

    Request body:
    {
        "actual_cash": "1690.00",
        "notes": "Short ten"  (optional)
    }

    Variance never blocks the close; it is returned for review.
    """
    try:
        data = request.get_json(silent=True) or {}
        actual = cents_field(data, "actual_cash", allow_zero=True)
        session = register_service.close_session(
            session_id,
            g.current_user.id,
            actual,
            data.get("notes"),
            manager_override=g.current_user.is_admin,
        )
        return jsonify({"session": session.to_dict()}), 200
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to close register session")


# =============================================================================
# HISTORY
# =============================================================================

@registers_bp.get("/sessions")
@require_auth
@require_permission(ACCESS_REGISTER_HISTORY)
def list_sessions_route():
    status = request.args.get("status")
    limit = request.args.get("limit", default=50, type=int)
    limit = max(1, min(limit, 500))
    sessions = register_service.list_sessions(status=status, limit=limit)
    return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200


@registers_bp.get("/sessions/<int:session_id>")
@require_auth
@require_permission(ACCESS_REGISTER_HISTORY)
def session_summary_route(session_id: int):
    try:
        summary = register_service.get_session_summary(session_id)
        summary["can_view_transactions"] = (
            not summary["is_closed"]
            or access_service.has_view_access(session_id, g.current_user)
        )
        return jsonify(summary), 200
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load register session summary")


@registers_bp.get("/sessions/<int:session_id>/transactions")
@require_auth
@require_permission(ACCESS_REGISTER_HISTORY)
def session_transactions_route(session_id: int):
    try:
        session = register_service.get_session(session_id)
        if session.status == SESSION_CLOSED and not access_service.has_view_access(session_id, g.current_user):
            return jsonify({"error": "Approval required"}), 403

        limit = request.args.get("limit", default=100, type=int)
        rows, next_cursor = ledger_service.list_entries(
            session_id=session_id,
            cursor=request.args.get("cursor"),
            limit=limit,
        )
        return jsonify({
            "items": [row.to_dict() for row in rows],
            "next_cursor": next_cursor,
        }), 200
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list session transactions")


@registers_bp.get("/sessions/<int:session_id>/audits")
@require_auth
@require_permission(ACCESS_REGISTER_HISTORY)
def session_audits_route(session_id: int):
    try:
        register_service.get_session(session_id)
        audits = register_service.list_audits(session_id)
        return jsonify({"audits": [a.to_dict() for a in audits]}), 200
    except CashbookError as e:
        return error_response(e)


@registers_bp.get("/sessions/<int:session_id>/reconcile")
@require_auth
@require_permission(ACCESS_REPORTS)
def reconcile_session_route(session_id: int):
    try:
        return jsonify(ledger_service.reconcile_session(session_id)), 200
    except CashbookError as e:
        return error_response(e)


# =============================================================================
# ACCESS REQUESTS
# =============================================================================

@registers_bp.post("/sessions/<int:session_id>/access-requests")
@require_auth
@require_permission(ACCESS_REGISTER_HISTORY)
def request_access_route(session_id: int):
    try:
        data = request.get_json(silent=True) or {}
        access_request = register_service.request_historical_access(
            session_id, g.current_user.id, data.get("reason")
        )
        current_app.logger.info(
            "User %s requested access to register session %s", g.current_user.id, session_id
        )
        return jsonify({"access_request": access_request.to_dict()}), 201
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create access request")


@registers_bp.get("/access-requests")
@require_auth
@require_permission(APPROVE_REGISTER_ACCESS)
def list_access_requests_route():
    requests_ = access_service.list_requests(
        status=request.args.get("status"),
        session_id=request.args.get("session_id", type=int),
    )
    return jsonify({"access_requests": [r.to_dict() for r in requests_]}), 200


@registers_bp.post("/access-requests/<int:request_id>/approve")
@require_auth
@require_permission(APPROVE_REGISTER_ACCESS)
def approve_access_route(request_id: int):
    try:
        access_request = register_service.approve(request_id, g.current_user.id)
        return jsonify({"access_request": access_request.to_dict()}), 200
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to approve access request")


@registers_bp.post("/access-requests/<int:request_id>/deny")
@require_auth
@require_permission(APPROVE_REGISTER_ACCESS)
def deny_access_route(request_id: int):
    try:
        data = request.get_json(silent=True) or {}
        access_request = register_service.deny(request_id, g.current_user.id, data.get("reason"))
        return jsonify({"access_request": access_request.to_dict()}), 200
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to deny access request")


@registers_bp.post("/access-requests/<int:request_id>/edit")
@require_auth
@require_permission(ACCESS_REGISTER_HISTORY)
def edit_closed_session_route(request_id: int):
    """
    Edit a closed session through an approved access request.

    Request body:
    {
        "reason": "Recount found a missed bill",
        "values": {"actual_cash": "1700.00"}
    }

    Only the requester can use their approval, and only once.
    """
    try:
        data = request.get_json(silent=True) or {}
        access_request = access_service.get_request(request_id)
        if access_request.requested_by != g.current_user.id:
            return jsonify({"error": "Only the requester can use this approval"}), 403

        raw_values = data.get("values") or {}
        if not isinstance(raw_values, dict):
            raise ValidationError("values must be an object", field="values")
        unknown = set(raw_values) - set(EDIT_FIELDS)
        if unknown:
            raise ValidationError(
                f"Fields cannot be edited: {', '.join(sorted(unknown))}", field="values"
            )
        new_values = {
            EDIT_FIELDS[key]: cents_field(raw_values, key, allow_zero=True)
            for key in raw_values
        }

        audit = register_service.edit_closed_session(request_id, new_values, data.get("reason"))
        session = register_service.get_session(audit.cash_register_session_id)
        return jsonify({"audit": audit.to_dict(), "session": session.to_dict()}), 200
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to edit closed register session")
