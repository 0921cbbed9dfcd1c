# Overview: Flask API routes for the money ledger, bank accounts and income/expense records.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import CashbookError
from ..permissions import ACCESS_DRAWER, ACCESS_REPORTS, ACCESS_SETTINGS
from ..services import ledger_service, pos_service
from .errors import as_of_arg, cents_field, error_response, internal_error

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- as_of filtering is inclusive: occurred_at <= as_of.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("/entries")
@require_auth
@require_permission(ACCESS_REPORTS)
def list_entries_route():
    try:
        limit = request.args.get("limit", default=100, type=int)
        rows, next_cursor = ledger_service.list_entries(
            session_id=request.args.get("session_id", type=int),
            bank_account_id=request.args.get("bank_account_id", type=int),
            category=request.args.get("category"),
            as_of=as_of_arg(request.args.get("as_of")),
            cursor=request.args.get("cursor"),
            limit=limit,
        )
        return jsonify({
            "items": [row.to_dict() for row in rows],
            "next_cursor": next_cursor,
            "limit": max(1, min(limit, 500)),
        }), 200
    except CashbookError as e:
        return error_response(e)


@ledger_bp.post("/entries/<int:entry_id>/reverse")
@require_auth
@require_permission(ACCESS_DRAWER)
def reverse_entry_route(entry_id: int):
    try:
        data = request.get_json(silent=True) or {}
        entry = ledger_service.reverse_entry(entry_id, g.current_user.id, data.get("reason"))
        return jsonify({"entry": entry.to_dict()}), 201
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to reverse ledger entry")


@ledger_bp.get("/sessions/<int:session_id>/balance")
@require_auth
@require_permission(ACCESS_REPORTS)
def session_balance_route(session_id: int):
    try:
        as_of = as_of_arg(request.args.get("as_of"))
        balance = ledger_service.get_cash_balance(session_id, as_of=as_of)
        return jsonify({"session_id": session_id, "cash_balance_cents": balance}), 200
    except CashbookError as e:
        return error_response(e)


@ledger_bp.get("/sessions/<int:session_id>/totals")
@require_auth
@require_permission(ACCESS_REPORTS)
def session_totals_route(session_id: int):
    try:
        as_of = as_of_arg(request.args.get("as_of"))
        return jsonify(ledger_service.compute_session_totals(session_id, as_of=as_of).to_dict()), 200
    except CashbookError as e:
        return error_response(e)


# =============================================================================
# BANK ACCOUNTS
# =============================================================================

@ledger_bp.get("/banks")
@require_auth
@require_permission(ACCESS_REPORTS)
def list_banks_route():
    accounts = ledger_service.list_bank_accounts()
    return jsonify({"bank_accounts": [a.to_dict() for a in accounts]}), 200


@ledger_bp.post("/banks")
@require_auth
@require_permission(ACCESS_SETTINGS)
def create_bank_route():
    try:
        data = request.get_json(silent=True) or {}
        account = ledger_service.create_bank_account(
            data.get("bank_name"), data.get("account_name"), data.get("account_number")
        )
        return jsonify({"bank_account": account.to_dict()}), 201
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create bank account")


@ledger_bp.get("/banks/<int:bank_account_id>/balance")
@require_auth
@require_permission(ACCESS_REPORTS)
def bank_balance_route(bank_account_id: int):
    try:
        as_of = as_of_arg(request.args.get("as_of"))
        balance = ledger_service.get_bank_balance(bank_account_id, as_of=as_of)
        return jsonify({"bank_account_id": bank_account_id, "balance_cents": balance}), 200
    except CashbookError as e:
        return error_response(e)


# =============================================================================
# INCOME / EXPENSE
# =============================================================================

@ledger_bp.post("/income-expenses")
@require_auth
@require_permission(ACCESS_DRAWER)
def create_income_expense_route():
    """
    Request body:
    {
        "type": "expense",
        "category": "Supplies",
        "amount": "35.00",
        "source": "cash_register" | "bank",
        "bank_account_id": 1,          (bank only)
        "description": "...",          (optional)
        "transaction_date": "2026-01-31" (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        record = pos_service.record_income_expense(
            g.current_user.id,
            data.get("type"),
            data.get("category"),
            cents_field(data, "amount"),
            data.get("source"),
            description=data.get("description"),
            bank_account_id=data.get("bank_account_id"),
            transaction_date=data.get("transaction_date"),
        )
        return jsonify({"record": record.to_dict()}), 201
    except CashbookError as e:
        return error_response(e)
    except ValueError:
        return jsonify({"error": "VALIDATION_ERROR", "message": "transaction_date must be YYYY-MM-DD",
                        "field": "transaction_date"}), 400
    except Exception:
        return internal_error("Failed to record income/expense")


@ledger_bp.get("/income-expenses")
@require_auth
@require_permission(ACCESS_REPORTS)
def list_income_expenses_route():
    records = pos_service.list_income_expenses(
        entry_type=request.args.get("type"),
        session_id=request.args.get("session_id", type=int),
        limit=max(1, min(request.args.get("limit", default=100, type=int), 500)),
    )
    return jsonify({"records": [r.to_dict() for r in records]}), 200
