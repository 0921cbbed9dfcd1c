from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z
from .base import ReferenceMixin, make_append_only

ENTRY_IN = "in"
ENTRY_OUT = "out"
SOURCE_CASH_REGISTER = "cash_register"
SOURCE_BANK_ACCOUNT = "bank_account"


class BankAccount(db.Model):
    """Bank account that can receive or pay out money outside the drawer."""
    __tablename__ = "bank_accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bank_name = db.Column(db.String(128), nullable=False)
    account_name = db.Column(db.String(128), nullable=False)
    account_number = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bank_name": self.bank_name,
            "account_name": self.account_name,
            "account_number": self.account_number,
            "is_active": self.is_active,
        }


class MoneyTransaction(ReferenceMixin, db.Model):
    """
    One immutable money movement.

    INVARIANTS:
    - amount_cents > 0; direction is carried by ``type`` (in/out)
    - source is either a register session (cash) or a bank account
    - never updated or deleted; a correction is a new entry of the
      opposite type with ``reversal_of_id`` pointing at the original
    - at most one reversal per entry (unique reversal_of_id)
    """
    __tablename__ = "money_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_money_transactions_amount_positive"),
        db.CheckConstraint("type IN ('in', 'out')", name="ck_money_transactions_type"),
        db.CheckConstraint(
            "source_type IN ('cash_register', 'bank_account')",
            name="ck_money_transactions_source_type",
        ),
        db.Index("ix_money_transactions_source", "source_type", "source_id", "occurred_at"),
        db.Index("ix_money_transactions_session_occurred", "cash_register_session_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(8), nullable=False)
    amount_cents = db.Column(db.BigInteger, nullable=False)

    source_type = db.Column(db.String(32), nullable=False)
    source_id = db.Column(db.Integer, nullable=False)
    cash_register_session_id = db.Column(
        db.Integer, db.ForeignKey("register_sessions.id"), nullable=True
    )

    category = db.Column(db.String(64), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)

    reference_kind = db.Column(db.String(64), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    reversal_of_id = db.Column(
        db.Integer, db.ForeignKey("money_transactions.id"), nullable=True, unique=True
    )

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    user = db.relationship("User")

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.type == ENTRY_IN else -self.amount_cents

    def to_dict(self) -> dict:
        reference = self.reference
        return {
            "id": self.id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "amount": format_cents(self.amount_cents),
            "source_type": self.source_type,
            "source_id": self.source_id,
            "cash_register_session_id": self.cash_register_session_id,
            "category": self.category,
            "description": self.description,
            "reference": reference.to_dict() if reference else None,
            "reversal_of_id": self.reversal_of_id,
            "user_id": self.user_id,
            "user": self.user.name if self.user else None,
            "occurred_at": to_utc_z(self.occurred_at),
        }


make_append_only(MoneyTransaction)
