# Overview: Flask API routes for POS sales, debt payments and returns; parses input and returns JSON responses.

"""
POS API Routes

SECURITY:
- "access pos" for sales and debt collection on the caller's open session
- "access register-history" for returns against closed sessions; the
  service additionally requires an admin or an approved access request
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import CashbookError, ValidationError
from ..money import to_cents
from ..permissions import ACCESS_POS, ACCESS_REGISTER_HISTORY
from ..services import pos_service
from .errors import cents_field, error_response, internal_error

pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")


def _sale_lines(raw_items) -> list[dict]:
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list", field="items")
    lines = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", field="items")
        line = {"item_id": raw.get("item_id"), "quantity": raw.get("quantity")}
        if raw.get("price") is not None:
            line["price_cents"] = to_cents(raw["price"], field="price", allow_zero=True)
        lines.append(line)
    return lines


@pos_bp.post("/sales")
@require_auth
@require_permission(ACCESS_POS)
def checkout_route():
    """
    Ring up a sale on the caller's open register session.

    Request body:
    {
        "payment_method": "cash" | "bank" | "credit",
        "items": [{"item_id": 1, "quantity": 2, "price": "250.00"}],
        "amount_paid": "600.00",     (cash only)
        "customer_id": 3,            (required for credit)
        "bank_account_id": 1,        (required for bank)
        "notes": "..."               (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        payment_method = data.get("payment_method")
        sale = pos_service.checkout(
            g.current_user.id,
            _sale_lines(data.get("items") or []),
            payment_method,
            customer_id=data.get("customer_id"),
            bank_account_id=data.get("bank_account_id"),
            amount_paid_cents=cents_field(data, "amount_paid", allow_zero=True, required=False),
            notes=data.get("notes"),
        )
        return jsonify({"sale": sale.to_dict()}), 201
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to record sale")


@pos_bp.get("/sales/<int:sale_id>")
@require_auth
@require_permission(ACCESS_POS)
def get_sale_route(sale_id: int):
    try:
        return jsonify({"sale": pos_service.get_sale(sale_id).to_dict()}), 200
    except CashbookError as e:
        return error_response(e)


@pos_bp.post("/debt-payments")
@require_auth
@require_permission(ACCESS_POS)
def collect_debt_route():
    """
    Request body:
    {
        "customer_id": 3,
        "amount": "200.00",
        "payment_method": "cash" | "bank",
        "bank_account_id": 1   (bank only)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        entry = pos_service.collect_debt(
            g.current_user.id,
            data.get("customer_id"),
            cents_field(data, "amount"),
            data.get("payment_method"),
            data.get("bank_account_id"),
        )
        return jsonify({"entry": entry.to_dict()}), 201
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to record debt payment")


@pos_bp.post("/sales/<int:sale_id>/returns")
@require_auth
@require_permission(ACCESS_REGISTER_HISTORY)
def return_sale_route(sale_id: int):
    """
    Request body:
    {
        "reason": "Defective",
        "items": [{"id": <sale_item_id>, "quantity": 1}]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        refund = pos_service.return_sale(sale_id, g.current_user, data.get("items") or [], data.get("reason"))
        return jsonify({
            "status": "ok",
            "refund_id": refund.id,
            "refund_amount_cents": abs(refund.total_cents),
            "refund": refund.to_dict(),
        }), 201
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to process return")


@pos_bp.post("/sales/<int:sale_id>/refund-source")
@require_auth
@require_permission(ACCESS_REGISTER_HISTORY)
def refund_source_route(sale_id: int):
    """
    Request body:
    {
        "refund_source": "cash" | "bank",
        "bank_account_id": 1   (bank only)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        entry = pos_service.set_refund_source(
            sale_id, g.current_user.id, data.get("refund_source"), data.get("bank_account_id")
        )
        return jsonify({"status": "ok", "entry": entry.to_dict()}), 200
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to record refund source")
