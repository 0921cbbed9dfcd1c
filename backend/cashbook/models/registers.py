from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z
from .base import make_append_only

SESSION_OPEN = "open"
SESSION_PENDING_REVIEW = "pending_review"
SESSION_CLOSED = "closed"
ACTIVE_SESSION_STATUSES = (SESSION_OPEN, SESSION_PENDING_REVIEW)


class RegisterSession(db.Model):
    """
    Cash register shift.

    LIFECYCLE:
    - open: accruing cash ledger entries
    - pending_review: close requested, waiting for the drawer count
    - closed: counted; core totals only change through an approved edit

    SINGLE ACTIVE SESSION: ``active_slot`` is TRUE while the session is not
    closed and NULL afterwards. The unique constraint on it admits at most one
    non-closed session system-wide (NULLs never collide).

    CACHED TOTALS: cash_sales_cents / debt_repaid_cents / expected_cash_cents
    are running aggregates of the session's cash entries in money_transactions.
    The ledger is authoritative; close() recomputes them from it.
    """
    __tablename__ = "register_sessions"
    __table_args__ = (
        db.UniqueConstraint("active_slot", name="uq_register_sessions_active_slot"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    opened_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    closed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)
    active_slot = db.Column(db.Boolean, nullable=True, default=True)

    opening_balance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    cash_sales_cents = db.Column(db.BigInteger, nullable=False, default=0)
    debt_repaid_cents = db.Column(db.BigInteger, nullable=False, default=0)
    expected_cash_cents = db.Column(db.BigInteger, nullable=False, default=0)
    actual_cash_cents = db.Column(db.BigInteger, nullable=True)
    variance_cents = db.Column(db.BigInteger, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    review_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    opener = db.relationship("User", foreign_keys=[opened_by])
    closer = db.relationship("User", foreign_keys=[closed_by])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_SESSION_STATUSES

    def snapshot(self) -> dict:
        """Editable core fields, as stored in audit old/new values."""
        return {
            "opening_balance_cents": self.opening_balance_cents,
            "cash_sales_cents": self.cash_sales_cents,
            "debt_repaid_cents": self.debt_repaid_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "actual_cash_cents": self.actual_cash_cents,
            "variance_cents": self.variance_cents,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "opened_by": self.opened_by,
            "closed_by": self.closed_by,
            "status": self.status,
            "opening_balance_cents": self.opening_balance_cents,
            "cash_sales_cents": self.cash_sales_cents,
            "debt_repaid_cents": self.debt_repaid_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "actual_cash_cents": self.actual_cash_cents,
            "variance_cents": self.variance_cents,
            "expected_cash": format_cents(self.expected_cash_cents),
            "actual_cash": format_cents(self.actual_cash_cents),
            "variance": format_cents(self.variance_cents),
            "opened_at": to_utc_z(self.opened_at),
            "review_requested_at": to_utc_z(self.review_requested_at),
            "closed_at": to_utc_z(self.closed_at),
            "notes": self.notes,
            "version_id": self.version_id,
        }


REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_DENIED = "denied"


class CashRegisterSessionAccessRequest(db.Model):
    """
    Supervisor approval to view/edit a closed session.

    pending -> approved | denied (terminal). An approved request is consumed
    by exactly one edit: ``used_at`` is stamped once and never cleared.
    """
    __tablename__ = "register_session_access_requests"
    __table_args__ = (
        db.Index("ix_access_requests_session_requester", "cash_register_session_id", "requested_by"),
        db.Index(
            "uq_access_requests_one_pending",
            "cash_register_session_id",
            "requested_by",
            unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_register_session_id = db.Column(
        db.Integer, db.ForeignKey("register_sessions.id"), nullable=False, index=True
    )
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=REQUEST_PENDING, index=True)
    reason = db.Column(db.Text, nullable=True)

    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    denied_reason = db.Column(db.Text, nullable=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    session = db.relationship("RegisterSession", backref=db.backref("access_requests", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_register_session_id": self.cash_register_session_id,
            "requested_by": self.requested_by,
            "status": self.status,
            "reason": self.reason,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "denied_reason": self.denied_reason,
            "used_at": to_utc_z(self.used_at),
            "created_at": to_utc_z(self.created_at),
        }


class CashRegisterSessionAudit(db.Model):
    """Full before/after snapshot of one approved edit to a closed session."""
    __tablename__ = "register_session_audits"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cash_register_session_id = db.Column(
        db.Integer, db.ForeignKey("register_sessions.id"), nullable=False, index=True
    )
    access_request_id = db.Column(
        db.Integer,
        db.ForeignKey("register_session_access_requests.id"),
        nullable=False,
        unique=True,
    )
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    old_values = db.Column(db.JSON, nullable=False)
    new_values = db.Column(db.JSON, nullable=False)
    reason = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    session = db.relationship("RegisterSession", backref=db.backref("audits", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_register_session_id": self.cash_register_session_id,
            "access_request_id": self.access_request_id,
            "changed_by": self.changed_by,
            "approved_by": self.approved_by,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }


make_append_only(CashRegisterSessionAudit)
