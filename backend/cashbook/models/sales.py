from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z

PAYMENT_CASH = "cash"
PAYMENT_BANK = "bank"
PAYMENT_CREDIT = "credit"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_BANK, PAYMENT_CREDIT)

SALE_COMPLETED = "completed"
SALE_REFUNDED = "refunded"


class Customer(db.Model):
    """Customer as seen by the ledger: a name and a running debt balance."""
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    debt_balance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "debt_balance_cents": self.debt_balance_cents,
            "debt_balance": format_cents(self.debt_balance_cents),
        }


class Sale(db.Model):
    """
    POS sale or, with a negative total and ``parent_sale_id``, a return.
    """
    __tablename__ = "sales"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cash_register_session_id = db.Column(
        db.Integer, db.ForeignKey("register_sessions.id"), nullable=False, index=True
    )
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)
    parent_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    payment_method = db.Column(db.String(16), nullable=False)
    total_cents = db.Column(db.BigInteger, nullable=False)
    amount_paid_cents = db.Column(db.BigInteger, nullable=False, default=0)
    change_given_cents = db.Column(db.BigInteger, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED)

    refund_source = db.Column(db.String(16), nullable=True)
    refund_bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    items = db.relationship("SaleItem", backref=db.backref("sale", lazy=True), lazy=True)
    customer = db.relationship("Customer")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "cash_register_session_id": self.cash_register_session_id,
            "bank_account_id": self.bank_account_id,
            "parent_sale_id": self.parent_sale_id,
            "payment_method": self.payment_method,
            "total_cents": self.total_cents,
            "total": format_cents(self.total_cents),
            "amount_paid_cents": self.amount_paid_cents,
            "change_given_cents": self.change_given_cents,
            "status": self.status,
            "refund_source": self.refund_source,
            "notes": self.notes,
            "items": [line.to_dict() for line in self.items],
            "created_at": to_utc_z(self.created_at),
        }


class SaleItem(db.Model):
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.BigInteger, nullable=False)
    subtotal_cents = db.Column(db.BigInteger, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class IncomeExpense(db.Model):
    """
    Income or expense record. Cash-register records pay in/out of the open
    session's drawer; system-generated records summarise a closed session.
    """
    __tablename__ = "income_expenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False)
    category = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    source = db.Column(db.String(32), nullable=False)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)
    cash_register_session_id = db.Column(
        db.Integer, db.ForeignKey("register_sessions.id"), nullable=True, index=True
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    transaction_date = db.Column(db.Date, nullable=False)
    is_system_generated = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "category": self.category,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "amount": format_cents(self.amount_cents),
            "source": self.source,
            "bank_account_id": self.bank_account_id,
            "cash_register_session_id": self.cash_register_session_id,
            "user_id": self.user_id,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "is_system_generated": self.is_system_generated,
        }
