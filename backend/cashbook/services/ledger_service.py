# Overview: Service-layer operations for the money ledger; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy import and_, case, func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import (
    EntryAlreadyReversed,
    InvalidReversal,
    NotFound,
    SessionNotOpen,
    ValidationError,
)
from ..extensions import db
from ..models import BankAccount, MoneyTransaction, Reference, RegisterSession
from ..models.ledger import ENTRY_IN, ENTRY_OUT, SOURCE_BANK_ACCOUNT, SOURCE_CASH_REGISTER
from ..models.registers import SESSION_OPEN
from ..money import validate_cents
from ..time_utils import parse_iso_datetime, utcnow
from .concurrency import lock_for_update, run_unit

"""
Money Ledger Invariants (authoritative)

- money_transactions is append-only: no updates, no deletes (enforced by
  mapper events on the model and by the absence of any write path here).
- amount_cents is always > 0; direction lives in ``type``.
- A cash entry belongs to exactly one register session and is accepted only
  while that session is open. The session row is locked and its cached
  totals updated in the same DB transaction as the append.
- Cached session totals are a projection of the ledger:
    debt_repaid  = signed sum of cash entries with category DEBT_REPAYMENT
    cash_sales   = signed sum of every other cash entry
    expected     = opening_balance + cash_sales + debt_repaid
- Corrections append an opposite-typed entry with reversal_of_id set.
- As-of filtering is inclusive: occurred_at <= as_of.
"""

CATEGORY_SALE = "sale"
CATEGORY_REFUND = "refund"
CATEGORY_DEBT_REPAYMENT = "debt_repayment"
CATEGORY_SESSION_CORRECTION = "session_correction"

BANK_SALES_CATEGORIES = (CATEGORY_SALE, CATEGORY_REFUND)


@dataclass(frozen=True)
class SessionTotals:
    """Register session figures recomputed from the ledger."""
    session_id: int
    opening_balance_cents: int
    cash_in_cents: int
    cash_out_cents: int
    cash_sales_cents: int
    debt_repaid_cents: int
    expected_cash_cents: int
    bank_sales_cents: int
    bank_debt_repaid_cents: int

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# APPENDING ENTRIES
# =============================================================================

def record_cash_in(
    amount_cents: int,
    session_id: int,
    category: str,
    user_id: int,
    description: str | None = None,
    reference: Reference | None = None,
    *,
    commit: bool = True,
) -> MoneyTransaction:
    """Money entering the drawer of an open register session."""
    return _record_cash(ENTRY_IN, amount_cents, session_id, category, user_id, description, reference, commit)


def record_cash_out(
    amount_cents: int,
    session_id: int,
    category: str,
    user_id: int,
    description: str | None = None,
    reference: Reference | None = None,
    *,
    commit: bool = True,
) -> MoneyTransaction:
    """Money leaving the drawer of an open register session."""
    return _record_cash(ENTRY_OUT, amount_cents, session_id, category, user_id, description, reference, commit)


def record_bank_in(
    amount_cents: int,
    bank_account_id: int,
    category: str,
    user_id: int,
    description: str | None = None,
    reference: Reference | None = None,
    session_id: int | None = None,
    *,
    commit: bool = True,
) -> MoneyTransaction:
    """Money received into a bank account, optionally tagged with the session it happened in."""
    return _record_bank(
        ENTRY_IN, amount_cents, bank_account_id, category, user_id, description, reference, session_id, commit
    )


def record_bank_out(
    amount_cents: int,
    bank_account_id: int,
    category: str,
    user_id: int,
    description: str | None = None,
    reference: Reference | None = None,
    session_id: int | None = None,
    *,
    commit: bool = True,
) -> MoneyTransaction:
    """Money paid out of a bank account."""
    return _record_bank(
        ENTRY_OUT, amount_cents, bank_account_id, category, user_id, description, reference, session_id, commit
    )


def _record_cash(entry_type, amount_cents, session_id, category, user_id, description, reference, commit):
    def _inner() -> MoneyTransaction:
        validate_cents(amount_cents)
        _require_category(category)
        session = _get_session_locked(session_id)
        if session.status != SESSION_OPEN:
            raise SessionNotOpen(f"Register session {session_id} is {session.status}; cash entries need an open session")
        entry = _append_entry(
            entry_type=entry_type,
            amount_cents=amount_cents,
            source_type=SOURCE_CASH_REGISTER,
            source_id=session.id,
            session_id=session.id,
            category=category,
            user_id=user_id,
            description=description,
            reference=reference,
        )
        apply_entry_to_session(session, entry)
        return entry

    return run_unit(_inner, commit)


def _record_bank(entry_type, amount_cents, bank_account_id, category, user_id, description, reference, session_id, commit):
    def _inner() -> MoneyTransaction:
        validate_cents(amount_cents)
        _require_category(category)
        account = db.session.get(BankAccount, bank_account_id)
        if account is None:
            raise NotFound(f"Bank account {bank_account_id} not found", field="bank_account_id")
        if not account.is_active:
            raise ValidationError(f"Bank account {bank_account_id} is inactive", field="bank_account_id")
        if session_id is not None and db.session.get(RegisterSession, session_id) is None:
            raise NotFound(f"Register session {session_id} not found", field="session_id")
        return _append_entry(
            entry_type=entry_type,
            amount_cents=amount_cents,
            source_type=SOURCE_BANK_ACCOUNT,
            source_id=account.id,
            session_id=session_id,
            category=category,
            user_id=user_id,
            description=description,
            reference=reference,
        )

    return run_unit(_inner, commit)


def reverse_entry(
    entry_id: int,
    user_id: int,
    reason: str | None = None,
    *,
    commit: bool = True,
) -> MoneyTransaction:
    """
    Cancel an entry by appending its mirror image.

    The reversing entry has the opposite type, the same amount, source,
    category and reference, and reversal_of_id = entry_id. Cash reversals
    are only accepted while the session is still open; closed sessions are
    corrected through the access-request workflow.
    """
    def _inner() -> MoneyTransaction:
        original = db.session.get(MoneyTransaction, entry_id)
        if original is None:
            raise NotFound(f"Ledger entry {entry_id} not found")
        if original.reversal_of_id is not None:
            raise InvalidReversal(f"Entry {entry_id} is itself a reversal")
        if db.session.query(MoneyTransaction.id).filter_by(reversal_of_id=entry_id).first():
            raise EntryAlreadyReversed(f"Entry {entry_id} has already been reversed")

        session = None
        if original.source_type == SOURCE_CASH_REGISTER:
            session = _get_session_locked(original.source_id)
            if session.status != SESSION_OPEN:
                raise SessionNotOpen(f"Register session {session.id} is {session.status}; cannot reverse its entries")

        note = f"Reversal of entry #{original.id}"
        if reason:
            note = f"{note}: {reason}"

        entry = _append_entry(
            entry_type=ENTRY_OUT if original.type == ENTRY_IN else ENTRY_IN,
            amount_cents=original.amount_cents,
            source_type=original.source_type,
            source_id=original.source_id,
            session_id=original.cash_register_session_id,
            category=original.category,
            user_id=user_id,
            description=note,
            reference=original.reference,
            reversal_of_id=original.id,
        )
        if session is not None:
            apply_entry_to_session(session, entry)
        return entry

    try:
        return run_unit(_inner, commit)
    except IntegrityError as exc:
        db.session.rollback()
        raise EntryAlreadyReversed(f"Entry {entry_id} has already been reversed") from exc


def append_session_correction(
    session: RegisterSession,
    *,
    delta_cents: int,
    category: str,
    user_id: int,
    description: str,
    reference: Reference | None = None,
) -> MoneyTransaction | None:
    """
    Append the cash entry that carries an approved edit of a closed session.

    The caller holds the session lock and owns the transaction. A zero delta
    appends nothing.
    """
    if delta_cents == 0:
        return None
    entry = _append_entry(
        entry_type=ENTRY_IN if delta_cents > 0 else ENTRY_OUT,
        amount_cents=abs(delta_cents),
        source_type=SOURCE_CASH_REGISTER,
        source_id=session.id,
        session_id=session.id,
        category=category,
        user_id=user_id,
        description=description,
        reference=reference,
    )
    apply_entry_to_session(session, entry)
    return entry


def apply_entry_to_session(session: RegisterSession, entry: MoneyTransaction) -> None:
    """Fold one cash entry into the session's cached totals."""
    signed = entry.signed_amount_cents
    if entry.category == CATEGORY_DEBT_REPAYMENT:
        session.debt_repaid_cents = (session.debt_repaid_cents or 0) + signed
    else:
        session.cash_sales_cents = (session.cash_sales_cents or 0) + signed
    session.expected_cash_cents = (
        session.opening_balance_cents + session.cash_sales_cents + session.debt_repaid_cents
    )


def _append_entry(
    *,
    entry_type: str,
    amount_cents: int,
    source_type: str,
    source_id: int,
    session_id: int | None,
    category: str,
    user_id: int,
    description: str | None,
    reference: Reference | None,
    reversal_of_id: int | None = None,
    occurred_at: Optional[datetime] = None,
) -> MoneyTransaction:
    entry = MoneyTransaction(
        type=entry_type,
        amount_cents=amount_cents,
        source_type=source_type,
        source_id=source_id,
        cash_register_session_id=session_id,
        category=category,
        description=description,
        user_id=user_id,
        reversal_of_id=reversal_of_id,
        occurred_at=occurred_at or utcnow(),
    )
    entry.reference = reference
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def _require_category(category: str) -> None:
    if not category or not str(category).strip():
        raise ValidationError("category is required", field="category")


def _get_session_locked(session_id: int) -> RegisterSession:
    session = lock_for_update(db.session.query(RegisterSession).filter_by(id=session_id)).first()
    if session is None:
        raise NotFound(f"Register session {session_id} not found", field="session_id")
    return session


# =============================================================================
# BALANCES (ledger-derived)
# =============================================================================

_signed_amount = case(
    (MoneyTransaction.type == ENTRY_IN, MoneyTransaction.amount_cents),
    else_=-MoneyTransaction.amount_cents,
)


def _signed_sum(*criteria, as_of: datetime | None = None) -> int:
    q = db.session.query(func.coalesce(func.sum(_signed_amount), 0)).filter(*criteria)
    if as_of is not None:
        q = q.filter(MoneyTransaction.occurred_at <= as_of)
    return int(q.scalar() or 0)


def _cash_of(session_id: int):
    return and_(
        MoneyTransaction.source_type == SOURCE_CASH_REGISTER,
        MoneyTransaction.source_id == session_id,
    )


def get_cash_balance(session_id: int, as_of: datetime | None = None) -> int:
    """Drawer balance: opening balance plus every cash entry up to ``as_of``."""
    session = db.session.get(RegisterSession, session_id)
    if session is None:
        raise NotFound(f"Register session {session_id} not found")
    return session.opening_balance_cents + _signed_sum(_cash_of(session_id), as_of=as_of)


def get_bank_balance(bank_account_id: int, as_of: datetime | None = None) -> int:
    if db.session.get(BankAccount, bank_account_id) is None:
        raise NotFound(f"Bank account {bank_account_id} not found")
    return _signed_sum(
        MoneyTransaction.source_type == SOURCE_BANK_ACCOUNT,
        MoneyTransaction.source_id == bank_account_id,
        as_of=as_of,
    )


def compute_session_totals(session_id: int, as_of: datetime | None = None) -> SessionTotals:
    """Recompute every session figure from money_transactions."""
    session = db.session.get(RegisterSession, session_id)
    if session is None:
        raise NotFound(f"Register session {session_id} not found")

    cash = _cash_of(session_id)
    is_debt = MoneyTransaction.category == CATEGORY_DEBT_REPAYMENT

    cash_in = _sum_amounts(cash, MoneyTransaction.type == ENTRY_IN, as_of=as_of)
    cash_out = _sum_amounts(cash, MoneyTransaction.type == ENTRY_OUT, as_of=as_of)
    debt_repaid = _signed_sum(cash, is_debt, as_of=as_of)
    cash_sales = (cash_in - cash_out) - debt_repaid

    bank = and_(
        MoneyTransaction.source_type == SOURCE_BANK_ACCOUNT,
        MoneyTransaction.cash_register_session_id == session_id,
    )
    bank_sales = _signed_sum(bank, MoneyTransaction.category.in_(BANK_SALES_CATEGORIES), as_of=as_of)
    bank_debt = _signed_sum(bank, is_debt, as_of=as_of)

    return SessionTotals(
        session_id=session_id,
        opening_balance_cents=session.opening_balance_cents,
        cash_in_cents=cash_in,
        cash_out_cents=cash_out,
        cash_sales_cents=cash_sales,
        debt_repaid_cents=debt_repaid,
        expected_cash_cents=session.opening_balance_cents + cash_sales + debt_repaid,
        bank_sales_cents=bank_sales,
        bank_debt_repaid_cents=bank_debt,
    )


def _sum_amounts(*criteria, as_of: datetime | None = None) -> int:
    q = db.session.query(func.coalesce(func.sum(MoneyTransaction.amount_cents), 0)).filter(*criteria)
    if as_of is not None:
        q = q.filter(MoneyTransaction.occurred_at <= as_of)
    return int(q.scalar() or 0)


def reconcile_session(session_id: int) -> dict:
    """
    Compare a session's cached totals with its ledger.

    Returns both views and the drift; drift is logged, never auto-corrected.
    """
    session = db.session.get(RegisterSession, session_id)
    if session is None:
        raise NotFound(f"Register session {session_id} not found")
    totals = compute_session_totals(session_id)

    cached = {
        "cash_sales_cents": session.cash_sales_cents,
        "debt_repaid_cents": session.debt_repaid_cents,
        "expected_cash_cents": session.expected_cash_cents,
    }
    ledger = {
        "cash_sales_cents": totals.cash_sales_cents,
        "debt_repaid_cents": totals.debt_repaid_cents,
        "expected_cash_cents": totals.expected_cash_cents,
    }
    drift = session.expected_cash_cents - totals.expected_cash_cents
    in_sync = cached == ledger

    if not in_sync:
        current_app.logger.warning(
            "Register session %s cached totals drift from ledger: cached=%s ledger=%s",
            session_id, cached, ledger,
        )

    return {
        "session_id": session_id,
        "status": session.status,
        "cached": cached,
        "ledger": ledger,
        "drift_cents": drift,
        "in_sync": in_sync,
    }


# =============================================================================
# LISTING
# =============================================================================

def list_entries(
    *,
    session_id: int | None = None,
    bank_account_id: int | None = None,
    category: str | None = None,
    as_of: datetime | None = None,
    cursor: str | None = None,
    limit: int = 100,
) -> tuple[list[MoneyTransaction], str | None]:
    """
    Newest-first ledger page. ``cursor`` is "<ISO-8601>|<id>" of the last
    row of the previous page.
    """
    q = MoneyTransaction.query

    if session_id is not None:
        q = q.filter(_cash_of(session_id))
    if bank_account_id is not None:
        q = q.filter(
            MoneyTransaction.source_type == SOURCE_BANK_ACCOUNT,
            MoneyTransaction.source_id == bank_account_id,
        )
    if category:
        q = q.filter(MoneyTransaction.category == category)
    if as_of is not None:
        q = q.filter(MoneyTransaction.occurred_at <= as_of)

    if cursor:
        try:
            cursor_raw, cursor_id_raw = cursor.split("|", 1)
            cursor_dt = parse_iso_datetime(cursor_raw)
            cursor_id = int(cursor_id_raw)
        except (TypeError, ValueError):
            raise ValidationError("cursor must be in format <ISO-8601>|<id>", field="cursor")
        q = q.filter(
            or_(
                MoneyTransaction.occurred_at < cursor_dt,
                and_(MoneyTransaction.occurred_at == cursor_dt, MoneyTransaction.id < cursor_id),
            )
        )

    limit = max(1, min(limit, 500))
    rows = (
        q.order_by(MoneyTransaction.occurred_at.desc(), MoneyTransaction.id.desc())
        .limit(limit)
        .all()
    )

    next_cursor = None
    if len(rows) == limit:
        last = rows[-1]
        next_cursor = f"{last.occurred_at.isoformat()}|{last.id}"
    return rows, next_cursor


# =============================================================================
# BANK ACCOUNTS
# =============================================================================

def create_bank_account(bank_name: str, account_name: str, account_number: str | None = None) -> BankAccount:
    if not bank_name or not bank_name.strip():
        raise ValidationError("bank_name is required", field="bank_name")
    if not account_name or not account_name.strip():
        raise ValidationError("account_name is required", field="account_name")

    def _inner() -> BankAccount:
        account = BankAccount(
            bank_name=bank_name.strip(),
            account_name=account_name.strip(),
            account_number=(account_number or "").strip() or None,
            is_active=True,
        )
        db.session.add(account)
        db.session.flush()
        return account

    return run_unit(_inner)


def list_bank_accounts(include_inactive: bool = False) -> list[BankAccount]:
    q = db.session.query(BankAccount)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(BankAccount.bank_name, BankAccount.account_name).all()
