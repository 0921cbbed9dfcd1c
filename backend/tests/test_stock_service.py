"""
Stock ledger tests.

Verifies:
- Every stock write appends exactly one ItemLog with old/new stock
- Negative stock is refused unless the movement type is allowed by config
- Reversals, adjustments and assemblies keep the chain replayable
"""

import pytest

from cashbook.errors import (
    EntryAlreadyReversed,
    ImmutableRecordError,
    InvalidQuantity,
    InvalidReversal,
    NegativeStock,
    NotFound,
    ValidationError,
)
from cashbook.extensions import db
from cashbook.models import AssemblyPart, Item, ItemLog, StockAdjustment
from cashbook.services import stock_service


def _stock(item_id):
    db.session.expire_all()
    return db.session.get(Item, item_id).stock


# =============================================================================
# MOVEMENTS
# =============================================================================


class TestApplyMovement:

    def test_receive_logs_old_and_new(self, item, cashier):
        log = stock_service.receive_stock(item.id, 5, cashier.id, description="PO 1042")

        assert log.type == "received"
        assert log.quantity_change == 5
        assert log.old_stock == 0
        assert log.new_stock == 5
        assert log.description == "PO 1042"
        assert _stock(item.id) == 5

    def test_sale_reduces_stock(self, item, cashier):
        stock_service.receive_stock(item.id, 5, cashier.id)
        log = stock_service.apply_movement(item.id, "sale", -2, cashier.id)

        assert log.old_stock == 5
        assert log.new_stock == 3
        assert _stock(item.id) == 3

    def test_negative_stock_refused_without_log(self, item, cashier):
        stock_service.receive_stock(item.id, 1, cashier.id)

        with pytest.raises(NegativeStock):
            stock_service.apply_movement(item.id, "sale", -2, cashier.id)

        assert _stock(item.id) == 1
        assert ItemLog.query.filter_by(item_id=item.id).count() == 1

    def test_negative_stock_allowed_for_configured_type(self, app, item, cashier, monkeypatch):
        monkeypatch.setitem(app.config, "STOCK_NEGATIVE_ALLOWED_TYPES", frozenset({"adjustment"}))

        log = stock_service.apply_movement(item.id, "adjustment", -3, cashier.id)
        assert log.new_stock == -3

        with pytest.raises(NegativeStock):
            stock_service.apply_movement(item.id, "sale", -1, cashier.id)

    @pytest.mark.parametrize("quantity", [0, 1.5, "2", None, True])
    def test_invalid_quantity(self, item, cashier, quantity):
        with pytest.raises(InvalidQuantity):
            stock_service.apply_movement(item.id, "received", quantity, cashier.id)
        assert ItemLog.query.count() == 0

    def test_unknown_type(self, item, cashier):
        with pytest.raises(ValidationError):
            stock_service.apply_movement(item.id, "teleported", 1, cashier.id)

    def test_unknown_item(self, cashier):
        with pytest.raises(NotFound):
            stock_service.apply_movement(999, "received", 1, cashier.id)

    def test_receive_rejects_negative(self, item, cashier):
        with pytest.raises(InvalidQuantity):
            stock_service.receive_stock(item.id, -1, cashier.id)

    def test_logs_are_append_only(self, item, cashier):
        log = stock_service.receive_stock(item.id, 5, cashier.id)
        log.quantity_change = 50

        with pytest.raises(ImmutableRecordError):
            db.session.commit()
        db.session.rollback()

    def test_log_failure_is_logged_and_raised(self, item, cashier, monkeypatch, caplog):
        stock_service.receive_stock(item.id, 5, cashier.id)

        def _broken_log(**kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(stock_service, "ItemLog", _broken_log)

        with pytest.raises(RuntimeError):
            stock_service.apply_movement(item.id, "sale", -1, cashier.id)
        db.session.rollback()
        monkeypatch.undo()

        assert "Failed to log stock change" in caplog.text
        assert f"item={item.id}" in caplog.text
        assert _stock(item.id) == 5


# =============================================================================
# REVERSALS
# =============================================================================


class TestReverseMovement:

    def test_reverse_restores_stock(self, item, cashier):
        stock_service.receive_stock(item.id, 5, cashier.id)
        sale = stock_service.apply_movement(item.id, "sale", -2, cashier.id)

        reversal = stock_service.reverse_movement(sale.id, cashier.id)

        assert reversal.type == "reversed"
        assert reversal.quantity_change == 2
        assert reversal.reversal_of_id == sale.id
        assert _stock(item.id) == 5

    def test_reverse_once(self, item, cashier):
        log = stock_service.receive_stock(item.id, 5, cashier.id)
        stock_service.reverse_movement(log.id, cashier.id)

        with pytest.raises(EntryAlreadyReversed):
            stock_service.reverse_movement(log.id, cashier.id)
        assert _stock(item.id) == 0

    def test_reversal_is_not_reversible(self, item, cashier):
        log = stock_service.receive_stock(item.id, 5, cashier.id)
        reversal = stock_service.reverse_movement(log.id, cashier.id)

        with pytest.raises(InvalidReversal):
            stock_service.reverse_movement(reversal.id, cashier.id)

    def test_reversing_a_receipt_cannot_go_negative(self, item, cashier):
        log = stock_service.receive_stock(item.id, 5, cashier.id)
        stock_service.apply_movement(item.id, "sale", -4, cashier.id)

        with pytest.raises(NegativeStock):
            stock_service.reverse_movement(log.id, cashier.id)
        assert _stock(item.id) == 1


# =============================================================================
# ADJUSTMENTS
# =============================================================================


class TestAdjustments:

    def test_adjustment_records_reason_and_movement(self, item, cashier):
        stock_service.receive_stock(item.id, 10, cashier.id)

        adjustment = stock_service.record_adjustment(item.id, -2, "damage", cashier.id, "Dropped")

        assert adjustment.old_stock == 10
        assert adjustment.new_stock == 8
        assert _stock(item.id) == 8

        log = ItemLog.query.filter_by(type="adjustment").one()
        assert log.reference_kind == "stock_adjustments"
        assert log.reference_id == adjustment.id
        assert log.description == "Damaged Goods: Dropped"

    def test_unknown_reason(self, item, cashier):
        with pytest.raises(ValidationError):
            stock_service.record_adjustment(item.id, 1, "theft", cashier.id)

    def test_adjustment_below_zero_rolls_back(self, item, cashier):
        with pytest.raises(NegativeStock):
            stock_service.record_adjustment(item.id, -1, "adjustment", cashier.id)
        assert StockAdjustment.query.count() == 0

    def test_reverse_adjustment(self, item, cashier):
        stock_service.receive_stock(item.id, 10, cashier.id)
        adjustment = stock_service.record_adjustment(item.id, -2, "internal_use", cashier.id)

        reversed_adjustment = stock_service.reverse_adjustment(adjustment.id, cashier.id)

        assert reversed_adjustment.reversed_at is not None
        assert reversed_adjustment.reversed_by == cashier.id
        assert _stock(item.id) == 10

        with pytest.raises(EntryAlreadyReversed):
            stock_service.reverse_adjustment(adjustment.id, cashier.id)


# =============================================================================
# ASSEMBLY
# =============================================================================


class TestAssembly:

    def test_assemble_consumes_parts(self, part_items, cashier):
        bolt, plate, bracket = part_items

        assembly = stock_service.assemble(
            bracket.id,
            2,
            [{"item_id": bolt.id, "quantity": 4}, {"item_id": plate.id, "quantity": 1}],
            cashier.id,
        )

        assert _stock(bolt.id) == 2
        assert _stock(plate.id) == 1
        assert _stock(bracket.id) == 2

        used = {p.part_item_id: p.quantity_used for p in AssemblyPart.query.filter_by(assembly_id=assembly.id)}
        assert used == {bolt.id: 8, plate.id: 2}
        assert ItemLog.query.filter_by(type="assembly", reference_id=assembly.id).count() == 3

    def test_shortage_aborts_whole_assembly(self, part_items, cashier):
        bolt, plate, bracket = part_items

        with pytest.raises(NegativeStock):
            stock_service.assemble(
                bracket.id,
                4,
                [{"item_id": bolt.id, "quantity": 1}, {"item_id": plate.id, "quantity": 1}],
                cashier.id,
            )

        assert _stock(bolt.id) == 10
        assert _stock(plate.id) == 3
        assert _stock(bracket.id) == 0
        assert ItemLog.query.count() == 0
        assert AssemblyPart.query.count() == 0

    def test_locks_final_item_and_parts_in_id_order(self, part_items, cashier, monkeypatch):
        bolt, plate, bracket = part_items
        stock_service.receive_stock(bracket.id, 1, cashier.id)
        locked = []
        original_get = stock_service._get_item_locked

        def _recording_get(item_id):
            locked.append(item_id)
            return original_get(item_id)

        monkeypatch.setattr(stock_service, "_get_item_locked", _recording_get)

        # The final item sits between its parts in id order
        stock_service.assemble(
            plate.id,
            1,
            [{"item_id": bracket.id, "quantity": 1}, {"item_id": bolt.id, "quantity": 1}],
            cashier.id,
        )

        assert locked == sorted([bolt.id, plate.id, bracket.id])

    def test_item_cannot_be_its_own_part(self, part_items, cashier):
        _, _, bracket = part_items
        with pytest.raises(ValidationError):
            stock_service.assemble(bracket.id, 1, [{"item_id": bracket.id, "quantity": 1}], cashier.id)

    def test_parts_required(self, part_items, cashier):
        _, _, bracket = part_items
        with pytest.raises(ValidationError):
            stock_service.assemble(bracket.id, 1, [], cashier.id)


# =============================================================================
# HISTORY
# =============================================================================


class TestHistory:

    def test_history_replays_to_stock(self, item, cashier):
        stock_service.receive_stock(item.id, 5, cashier.id)
        sale = stock_service.apply_movement(item.id, "sale", -3, cashier.id)
        stock_service.reverse_movement(sale.id, cashier.id)

        history = stock_service.get_item_history(item.id)
        assert [log.quantity_change for log in history] == [5, -3, 3]
        for previous, current in zip(history, history[1:]):
            assert current.old_stock == previous.new_stock

        result = stock_service.verify_item_history(item.id)
        assert result == {"ok": True, "stock": 5, "entries": 3, "breaks": []}

    def test_verify_detects_out_of_band_stock_write(self, item, cashier, caplog):
        stock_service.receive_stock(item.id, 5, cashier.id)
        tampered = db.session.get(Item, item.id)
        tampered.stock = 99
        db.session.commit()

        result = stock_service.verify_item_history(item.id)

        assert result["ok"] is False
        assert result["breaks"][0]["problem"] == "current_stock"
        assert "inconsistent" in caplog.text

    def test_history_unknown_item(self):
        with pytest.raises(NotFound):
            stock_service.get_item_history(999)
