# Overview: JSON error responses shared by every blueprint.

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException

from ..errors import CashbookError, ValidationError
from ..extensions import db
from ..money import to_cents
from ..time_utils import parse_iso_datetime


def error_response(exc: CashbookError):
    """``{"error": code, "message": ..., "field": ...}`` with the error's status."""
    return jsonify(exc.to_dict()), exc.status_code


def internal_error(message: str):
    current_app.logger.exception(message)
    db.session.rollback()
    return jsonify({"error": "Internal server error"}), 500


def cents_field(data: dict, name: str, *, allow_zero: bool = False, required: bool = True):
    """Read a decimal API amount from ``data[name]`` as integer cents."""
    if name not in data or data[name] is None:
        if not required:
            return None
    return to_cents(data.get(name), field=name, allow_zero=allow_zero)


def as_of_arg(raw: str | None):
    try:
        return parse_iso_datetime(raw)
    except (TypeError, ValueError):
        raise ValidationError("as_of must be an ISO-8601 datetime", field="as_of")


def register_error_handlers(app) -> None:
    @app.errorhandler(CashbookError)
    def handle_cashbook_error(exc):
        db.session.rollback()
        return error_response(exc)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({"error": exc.name, "message": exc.description}), exc.code
