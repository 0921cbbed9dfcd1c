# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import CashbookError
from ..permissions import (
    ACCESS_ASSEMBLY,
    ACCESS_INVENTORY,
    ACCESS_INVENTORY_LOG,
    ACCESS_STOCK_ADJUSTMENTS,
)
from ..services import stock_service
from .errors import error_response, internal_error

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/items/<int:item_id>")
@require_auth
@require_permission(ACCESS_INVENTORY)
def get_item_route(item_id: int):
    try:
        return jsonify({"item": stock_service.get_item(item_id).to_dict()}), 200
    except CashbookError as e:
        return error_response(e)


@inventory_bp.post("/items/<int:item_id>/receive")
@require_auth
@require_permission(ACCESS_INVENTORY)
def receive_route(item_id: int):
    """
    Request body:
    {
        "quantity": 10,
        "description": "PO 1042"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        log = stock_service.receive_stock(
            item_id, data.get("quantity"), g.current_user.id, description=data.get("description")
        )
        return jsonify({"log": log.to_dict()}), 201
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to receive stock")


@inventory_bp.get("/items/<int:item_id>/history")
@require_auth
@require_permission(ACCESS_INVENTORY_LOG)
def item_history_route(item_id: int):
    try:
        limit = request.args.get("limit", type=int)
        logs = stock_service.get_item_history(item_id, limit=limit)
        return jsonify({"logs": [log.to_dict() for log in logs]}), 200
    except CashbookError as e:
        return error_response(e)


@inventory_bp.get("/items/<int:item_id>/verify")
@require_auth
@require_permission(ACCESS_INVENTORY_LOG)
def verify_history_route(item_id: int):
    try:
        return jsonify(stock_service.verify_item_history(item_id)), 200
    except CashbookError as e:
        return error_response(e)


@inventory_bp.post("/logs/<int:log_id>/reverse")
@require_auth
@require_permission(ACCESS_STOCK_ADJUSTMENTS)
def reverse_log_route(log_id: int):
    try:
        data = request.get_json(silent=True) or {}
        log = stock_service.reverse_movement(log_id, g.current_user.id, data.get("description"))
        return jsonify({"log": log.to_dict()}), 201
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to reverse stock movement")


# =============================================================================
# ADJUSTMENTS
# =============================================================================

@inventory_bp.post("/adjustments")
@require_auth
@require_permission(ACCESS_STOCK_ADJUSTMENTS)
def create_adjustment_route():
    """
    Request body:
    {
        "item_id": 1,
        "quantity_change": -2,
        "reason": "damage",   (adjustment | warranty | damage | internal_use)
        "notes": "Dropped"    (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        adjustment = stock_service.record_adjustment(
            data.get("item_id"),
            data.get("quantity_change"),
            data.get("reason"),
            g.current_user.id,
            data.get("notes"),
        )
        return jsonify({"adjustment": adjustment.to_dict()}), 201
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to record stock adjustment")


@inventory_bp.post("/adjustments/<int:adjustment_id>/reverse")
@require_auth
@require_permission(ACCESS_STOCK_ADJUSTMENTS)
def reverse_adjustment_route(adjustment_id: int):
    try:
        adjustment = stock_service.reverse_adjustment(adjustment_id, g.current_user.id)
        return jsonify({"adjustment": adjustment.to_dict()}), 200
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to reverse stock adjustment")


# =============================================================================
# ASSEMBLY
# =============================================================================

@inventory_bp.post("/assemblies")
@require_auth
@require_permission(ACCESS_ASSEMBLY)
def create_assembly_route():
    """
    Request body:
    {
        "final_item_id": 5,
        "quantity": 2,
        "parts": [{"item_id": 1, "quantity": 1}, {"item_id": 2, "quantity": 4}],
        "notes": "..."  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        assembly = stock_service.assemble(
            data.get("final_item_id"),
            data.get("quantity"),
            data.get("parts") or [],
            g.current_user.id,
            data.get("notes"),
        )
        return jsonify({"assembly": assembly.to_dict()}), 201
    except CashbookError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to assemble item")
