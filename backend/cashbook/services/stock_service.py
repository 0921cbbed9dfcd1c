# Overview: Service-layer operations for the stock ledger; item stock changes and their movement log.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    EntryAlreadyReversed,
    InvalidQuantity,
    InvalidReversal,
    NegativeStock,
    NotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Assembly, AssemblyPart, Item, ItemLog, Reference, StockAdjustment
from ..models.inventory import (
    ADJUSTMENT_REASONS,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_ASSEMBLY,
    MOVEMENT_RECEIVED,
    MOVEMENT_REVERSED,
    MOVEMENT_TYPES,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_unit

"""
Stock Ledger Invariants (authoritative)

- Item.stock is written only here, and every write appends exactly one
  ItemLog row in the same DB transaction.
- ItemLog.old_stock is the stock read under the item lock; new_stock is
  old_stock + quantity_change. The chain of logs for an item therefore
  replays to its current stock (see verify_item_history).
- Stock may not go below zero unless the movement type is listed in the
  STOCK_NEGATIVE_ALLOWED_TYPES config (empty by default).
- item_logs is append-only. Corrections append a ``reversed`` movement
  with reversal_of_id pointing at the original; one reversal per entry.
"""


# =============================================================================
# MOVEMENTS
# =============================================================================

def apply_movement(
    item_id: int,
    movement_type: str,
    quantity_change: int,
    user_id: int | None,
    reference: Reference | None = None,
    description: str | None = None,
    *,
    commit: bool = True,
) -> ItemLog:
    """
    Change an item's stock and log the movement.

    Raises:
        InvalidQuantity: quantity_change is zero or not an integer
        ValidationError: unknown movement type
        NotFound: item does not exist
        NegativeStock: resulting stock would be below zero
    """
    _validate_quantity(quantity_change, allow_negative=True)
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type: {movement_type}", field="type")

    def _inner() -> ItemLog:
        item = _get_item_locked(item_id)
        return _move(item, movement_type, quantity_change, user_id, reference, description)

    return run_unit(_inner, commit)


def reverse_movement(
    log_id: int,
    user_id: int | None,
    description: str | None = None,
    *,
    commit: bool = True,
) -> ItemLog:
    """Undo a movement by appending its inverse as a ``reversed`` entry."""
    def _inner() -> ItemLog:
        original = db.session.get(ItemLog, log_id)
        if original is None:
            raise NotFound(f"Item log {log_id} not found")
        if original.reversal_of_id is not None:
            raise InvalidReversal(f"Item log {log_id} is itself a reversal")
        if db.session.query(ItemLog.id).filter_by(reversal_of_id=log_id).first():
            raise EntryAlreadyReversed(f"Item log {log_id} has already been reversed")

        item = _get_item_locked(original.item_id)
        return _move(
            item,
            MOVEMENT_REVERSED,
            -original.quantity_change,
            user_id,
            original.reference,
            description or f"Reversal of {original.type_label.lower()} #{original.id}",
            reversal_of_id=original.id,
        )

    try:
        return run_unit(_inner, commit)
    except IntegrityError as exc:
        db.session.rollback()
        raise EntryAlreadyReversed(f"Item log {log_id} has already been reversed") from exc


def receive_stock(
    item_id: int,
    quantity: int,
    user_id: int | None,
    reference: Reference | None = None,
    description: str | None = None,
) -> ItemLog:
    """Goods arriving (purchase receipt, opening stock)."""
    _validate_quantity(quantity)
    return apply_movement(item_id, MOVEMENT_RECEIVED, quantity, user_id, reference, description)


def _move(
    item: Item,
    movement_type: str,
    quantity_change: int,
    user_id: int | None,
    reference: Reference | None,
    description: str | None,
    reversal_of_id: int | None = None,
) -> ItemLog:
    old_stock = item.stock or 0
    new_stock = old_stock + quantity_change
    if new_stock < 0 and movement_type not in _negative_allowed_types():
        raise NegativeStock(
            f"Insufficient stock for {item.name}: have {old_stock}, need {-quantity_change}",
            field="quantity",
        )

    item.stock = new_stock
    return _log_stock_change(
        item,
        movement_type=movement_type,
        quantity_change=quantity_change,
        old_stock=old_stock,
        new_stock=new_stock,
        user_id=user_id,
        reference=reference,
        description=description,
        reversal_of_id=reversal_of_id,
    )


def _log_stock_change(item: Item, *, movement_type: str, quantity_change: int, old_stock: int,
                      new_stock: int, user_id, reference, description, reversal_of_id=None) -> ItemLog:
    """
    Append the ItemLog row for a stock change already applied to ``item``.

    Failures are logged with their context and re-raised; the caller's unit
    rolls back both the stock write and the log.
    """
    # A failed flush expires ``item``; the error log must not touch it
    item_id = item.id
    try:
        log = ItemLog(
            item_id=item_id,
            type=movement_type,
            quantity_change=quantity_change,
            old_stock=old_stock,
            new_stock=new_stock,
            description=description,
            user_id=user_id,
            reversal_of_id=reversal_of_id,
            created_at=utcnow(),
        )
        log.reference = reference
        db.session.add(log)
        db.session.flush()
        return log
    except Exception as exc:
        current_app.logger.error(
            "Failed to log stock change: item=%s type=%s change=%s old=%s new=%s error=%s",
            item_id, movement_type, quantity_change, old_stock, new_stock, exc,
        )
        raise


# =============================================================================
# ADJUSTMENTS
# =============================================================================

def record_adjustment(
    item_id: int,
    quantity_change: int,
    reason: str,
    user_id: int,
    notes: str | None = None,
) -> StockAdjustment:
    """Manual stock correction with a reason code and an adjustment movement."""
    _validate_quantity(quantity_change, allow_negative=True)
    if reason not in ADJUSTMENT_REASONS:
        raise ValidationError(
            f"reason must be one of: {', '.join(ADJUSTMENT_REASONS)}", field="reason"
        )

    def _inner() -> StockAdjustment:
        item = _get_item_locked(item_id)
        old_stock = item.stock or 0
        adjustment = StockAdjustment(
            item_id=item.id,
            quantity_change=quantity_change,
            reason=reason,
            notes=notes,
            old_stock=old_stock,
            new_stock=old_stock + quantity_change,
            user_id=user_id,
            created_at=utcnow(),
        )
        db.session.add(adjustment)
        db.session.flush()

        description = ADJUSTMENT_REASONS[reason]
        if notes:
            description = f"{description}: {notes}"
        _move(item, MOVEMENT_ADJUSTMENT, quantity_change, user_id,
              Reference.of(adjustment), description)
        return adjustment

    adjustment = run_unit(_inner)
    current_app.logger.info(
        "Stock adjustment %s on item %s: %+d (%s)",
        adjustment.id, item_id, quantity_change, reason,
    )
    return adjustment


def reverse_adjustment(adjustment_id: int, user_id: int) -> StockAdjustment:
    """Reverse an adjustment's movement and mark the adjustment reversed."""
    def _inner() -> StockAdjustment:
        adjustment = db.session.get(StockAdjustment, adjustment_id)
        if adjustment is None:
            raise NotFound(f"Stock adjustment {adjustment_id} not found")
        if adjustment.reversed_at is not None:
            raise EntryAlreadyReversed(f"Stock adjustment {adjustment_id} has already been reversed")

        ref = Reference.of(adjustment)
        log = db.session.query(ItemLog).filter_by(
            reference_kind=ref.kind,
            reference_id=ref.id,
            type=MOVEMENT_ADJUSTMENT,
        ).first()
        if log is None:
            raise NotFound(f"No stock movement recorded for adjustment {adjustment_id}")

        reverse_movement(
            log.id,
            user_id,
            f"Reversal of stock adjustment #{adjustment.id}",
            commit=False,
        )
        adjustment.reversed_at = utcnow()
        adjustment.reversed_by = user_id
        return adjustment

    return run_unit(_inner)


# =============================================================================
# ASSEMBLY
# =============================================================================

def assemble(
    final_item_id: int,
    quantity: int,
    parts: list[dict],
    user_id: int,
    notes: str | None = None,
) -> Assembly:
    """
    Build ``quantity`` units of a final item from parts.

    ``parts`` is a list of {"item_id", "quantity"} where quantity is per
    finished unit. Every part consumption and the final increase happen in
    one unit; a shortage of any part aborts the whole assembly.
    """
    _validate_quantity(quantity)
    if not parts:
        raise ValidationError("At least one part is required", field="parts")

    required: dict[int, int] = {}
    for part in parts:
        try:
            part_id = int(part["item_id"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError("Each part needs an item_id", field="parts")
        per_unit = part.get("quantity", 1)
        _validate_quantity(per_unit)
        if part_id == final_item_id:
            raise ValidationError("An item cannot be a part of itself", field="parts")
        required[part_id] = required.get(part_id, 0) + per_unit * quantity

    def _inner() -> Assembly:
        # Lock the final item and every part in one id-ordered pass so
        # concurrent assemblies cannot deadlock on each other's items
        locked = {item_id: _get_item_locked(item_id) for item_id in sorted({final_item_id, *required})}
        final_item = locked[final_item_id]
        assembly = Assembly(
            final_item_id=final_item.id,
            quantity=quantity,
            notes=notes,
            user_id=user_id,
            created_at=utcnow(),
        )
        db.session.add(assembly)
        db.session.flush()
        ref = Reference.of(assembly)

        for part_id in sorted(required):
            used = required[part_id]
            _move(locked[part_id], MOVEMENT_ASSEMBLY, -used, user_id, ref,
                  f"Used in assembly #{assembly.id} of {final_item.name}")
            db.session.add(AssemblyPart(
                assembly_id=assembly.id, part_item_id=part_id, quantity_used=used
            ))

        _move(final_item, MOVEMENT_ASSEMBLY, quantity, user_id, ref,
              f"Assembled from {len(required)} part(s)")
        return assembly

    return run_unit(_inner)


# =============================================================================
# HISTORY
# =============================================================================

def get_item_history(item_id: int, limit: int | None = None) -> list[ItemLog]:
    """Movements for an item, oldest first."""
    if db.session.get(Item, item_id) is None:
        raise NotFound(f"Item {item_id} not found")
    q = db.session.query(ItemLog).filter_by(item_id=item_id).order_by(ItemLog.id)
    if limit:
        q = q.limit(limit)
    return q.all()


def verify_item_history(item_id: int) -> dict:
    """
    Check that an item's log chain replays to its current stock.

    Every entry must satisfy new = old + change, each entry's old_stock must
    equal the previous entry's new_stock, and the last new_stock must equal
    Item.stock. Returns {"ok", "stock", "entries", "breaks"}.
    """
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFound(f"Item {item_id} not found")

    logs = get_item_history(item_id)
    breaks = []
    previous = None
    for log in logs:
        if log.old_stock + log.quantity_change != log.new_stock:
            breaks.append({"log_id": log.id, "problem": "arithmetic"})
        if previous is not None and log.old_stock != previous.new_stock:
            breaks.append({
                "log_id": log.id,
                "problem": "chain",
                "expected_old_stock": previous.new_stock,
                "old_stock": log.old_stock,
            })
        previous = log

    if previous is not None and previous.new_stock != item.stock:
        breaks.append({
            "log_id": previous.id,
            "problem": "current_stock",
            "expected_stock": previous.new_stock,
            "stock": item.stock,
        })

    if breaks:
        current_app.logger.warning("Stock history for item %s is inconsistent: %s", item_id, breaks)

    return {"ok": not breaks, "stock": item.stock, "entries": len(logs), "breaks": breaks}


def get_item(item_id: int) -> Item:
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFound(f"Item {item_id} not found")
    return item


def _get_item_locked(item_id: int) -> Item:
    item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
    if item is None:
        raise NotFound(f"Item {item_id} not found", field="item_id")
    return item


def _validate_quantity(quantity, allow_negative: bool = False) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise InvalidQuantity("quantity must be an integer", field="quantity")
    if quantity == 0 or (quantity < 0 and not allow_negative):
        qualifier = "non-zero" if allow_negative else "greater than zero"
        raise InvalidQuantity(f"quantity must be {qualifier}", field="quantity")
    return quantity


def _negative_allowed_types() -> frozenset:
    return current_app.config.get("STOCK_NEGATIVE_ALLOWED_TYPES") or frozenset()
