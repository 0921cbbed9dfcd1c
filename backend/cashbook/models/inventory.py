from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .base import ReferenceMixin, make_append_only

MOVEMENT_RECEIVED = "received"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_SALE = "sale"
MOVEMENT_ASSEMBLY = "assembly"
MOVEMENT_REVERSED = "reversed"

MOVEMENT_TYPES = (
    MOVEMENT_RECEIVED,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_SALE,
    MOVEMENT_ASSEMBLY,
    MOVEMENT_REVERSED,
)

MOVEMENT_LABELS = {
    MOVEMENT_RECEIVED: "Stock Received",
    MOVEMENT_ADJUSTMENT: "Stock Adjustment",
    MOVEMENT_SALE: "Sale",
    MOVEMENT_ASSEMBLY: "Assembly",
    MOVEMENT_REVERSED: "Reversed",
}

ADJUSTMENT_REASONS = {
    "adjustment": "Stock Adjustment",
    "warranty": "Warranty Claim",
    "damage": "Damaged Goods",
    "internal_use": "Internal Use",
}


class Item(db.Model):
    """
    Catalog item as seen by the stock ledger.

    The catalog owns names and prices; the ledger only reads and writes
    ``stock``. version_id makes every stock write a compare-and-swap.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_items_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.BigInteger, nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Item id={self.id} sku={self.sku!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "version_id": self.version_id,
        }


class ItemLog(ReferenceMixin, db.Model):
    """
    Append-only stock movement.

    INVARIANTS:
    - new_stock == old_stock + quantity_change
    - old_stock equals the item's stock at the moment of append
    - written in the same transaction as the item's stock update
    """
    __tablename__ = "item_logs"
    __table_args__ = (
        db.CheckConstraint("new_stock = old_stock + quantity_change", name="ck_item_logs_arithmetic"),
        db.CheckConstraint("quantity_change <> 0", name="ck_item_logs_nonzero"),
        db.Index("ix_item_logs_item_created", "item_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    old_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reference_kind = db.Column(db.String(64), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    reversal_of_id = db.Column(db.Integer, db.ForeignKey("item_logs.id"), nullable=True, unique=True)

    description = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    item = db.relationship("Item")

    @property
    def type_label(self) -> str:
        return MOVEMENT_LABELS.get(self.type, self.type)

    def to_dict(self) -> dict:
        reference = self.reference
        return {
            "id": self.id,
            "item_id": self.item_id,
            "type": self.type,
            "type_label": self.type_label,
            "quantity_change": self.quantity_change,
            "old_stock": self.old_stock,
            "new_stock": self.new_stock,
            "reference": reference.to_dict() if reference else None,
            "reversal_of_id": self.reversal_of_id,
            "description": self.description,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


make_append_only(ItemLog)


class StockAdjustment(db.Model):
    """Manual stock correction (count, damage, warranty swap, internal use)."""
    __tablename__ = "stock_adjustments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    old_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "quantity_change": self.quantity_change,
            "reason": self.reason,
            "reason_label": ADJUSTMENT_REASONS.get(self.reason, self.reason),
            "notes": self.notes,
            "old_stock": self.old_stock,
            "new_stock": self.new_stock,
            "user_id": self.user_id,
            "reversed_at": to_utc_z(self.reversed_at),
            "reversed_by": self.reversed_by,
            "created_at": to_utc_z(self.created_at),
        }


class Assembly(db.Model):
    """Build of ``quantity`` units of a final item from parts."""
    __tablename__ = "assemblies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    final_item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    parts = db.relationship("AssemblyPart", backref=db.backref("assembly", lazy=True), lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "final_item_id": self.final_item_id,
            "quantity": self.quantity,
            "notes": self.notes,
            "user_id": self.user_id,
            "parts": [
                {"part_item_id": p.part_item_id, "quantity_used": p.quantity_used}
                for p in self.parts
            ],
            "created_at": to_utc_z(self.created_at),
        }


class AssemblyPart(db.Model):
    __tablename__ = "assembly_parts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    assembly_id = db.Column(db.Integer, db.ForeignKey("assemblies.id"), nullable=False, index=True)
    part_item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)
    quantity_used = db.Column(db.Integer, nullable=False)
