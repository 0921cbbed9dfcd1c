"""
Register Session Service

WHY: A register session is one operator's shift at the drawer. It is the unit
of cash accountability: what the drawer should hold (derived from the money
ledger) against what was counted at close.

STATE MACHINE:
    (none) --open--> open --request_close_review--> pending_review
    open | pending_review --close--> closed
    closed --edit (approved access request)--> closed, plus one audit row

DESIGN PRINCIPLES:
- At most one non-closed session system-wide (unique active_slot column)
- close() recomputes totals from the ledger, never from the cached fields
- Variance is reported, never blocks a close
- A closed session only changes through an approved, single-use access
  request; the change is mirrored into the ledger and audited in full
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import (
    NotFound,
    NotSessionOwner,
    SessionAlreadyOpen,
    SessionNotClosed,
    SessionNotOpen,
    ValidationError,
)
from ..extensions import db
from ..models import (
    CashRegisterSessionAudit,
    IncomeExpense,
    Item,
    MoneyTransaction,
    Reference,
    RegisterSession,
    Sale,
    SaleItem,
)
from ..models.registers import (
    ACTIVE_SESSION_STATUSES,
    SESSION_CLOSED,
    SESSION_OPEN,
    SESSION_PENDING_REVIEW,
)
from ..money import format_cents, validate_cents
from ..time_utils import utcnow
from . import access_service, ledger_service
from .concurrency import lock_for_update, run_with_retry

EDITABLE_FIELDS = (
    "opening_balance_cents",
    "cash_sales_cents",
    "debt_repaid_cents",
    "actual_cash_cents",
)

POS_INCOME_CATEGORY = "POS Sales"


# =============================================================================
# LIFECYCLE
# =============================================================================

def open_session(operator_id: int, opening_balance_cents: int) -> RegisterSession:
    """
    Open a new register session.

    Raises:
        InvalidAmount: opening balance is negative or not an integer
        SessionAlreadyOpen: another session is open or in review
    """
    validate_cents(opening_balance_cents, field="opening_balance", allow_zero=True)

    def _op() -> RegisterSession:
        existing = get_open_session()
        if existing is not None:
            raise SessionAlreadyOpen(
                f"Session {existing.id} is already {existing.status}; close it before opening another"
            )

        session = RegisterSession(
            opened_by=operator_id,
            status=SESSION_OPEN,
            active_slot=True,
            opening_balance_cents=opening_balance_cents,
            cash_sales_cents=0,
            debt_repaid_cents=0,
            expected_cash_cents=opening_balance_cents,
            opened_at=utcnow(),
        )
        db.session.add(session)
        db.session.commit()
        return session

    try:
        session = run_with_retry(_op)
    except IntegrityError as exc:
        # uq_register_sessions_active_slot: a concurrent open won
        db.session.rollback()
        raise SessionAlreadyOpen("Another register session was opened concurrently") from exc

    current_app.logger.info(
        "Register session %s opened by user %s with %s",
        session.id, operator_id, format_cents(opening_balance_cents),
    )
    return session


def request_close_review(
    session_id: int,
    operator_id: int,
    *,
    manager_override: bool = False,
) -> RegisterSession:
    """
    Stop taking cash and wait for the drawer count.

    Snapshots the ledger-derived expected cash so the counter knows the
    target. Cash entries are refused from here on.
    """
    def _op():
        session = _get_session_locked(session_id)
        if session.status != SESSION_OPEN:
            raise SessionNotOpen(f"Register session {session_id} is {session.status}")
        _check_owner(session, operator_id, manager_override)

        _sync_totals_from_ledger(session)
        session.status = SESSION_PENDING_REVIEW
        session.review_requested_at = utcnow()
        db.session.commit()
        return session

    return run_with_retry(_op)


def close_session(
    session_id: int,
    operator_id: int,
    actual_cash_cents: int,
    notes: str | None = None,
    *,
    manager_override: bool = False,
) -> RegisterSession:
    """
    Close a session and compute its variance.

    Expected cash is recomputed from the ledger; the counted cash is stored
    as actual; variance = actual - expected. Any variance is accepted and
    surfaced for review. Closing twice fails with SessionNotOpen and leaves
    the closed session untouched.
    """
    validate_cents(actual_cash_cents, field="actual_cash", allow_zero=True)

    def _op():
        session = _get_session_locked(session_id)
        if session.status not in ACTIVE_SESSION_STATUSES:
            raise SessionNotOpen(f"Register session {session_id} is already closed")
        _check_owner(session, operator_id, manager_override)

        totals = _sync_totals_from_ledger(session)

        session.actual_cash_cents = actual_cash_cents
        session.variance_cents = actual_cash_cents - session.expected_cash_cents
        session.status = SESSION_CLOSED
        session.active_slot = None
        session.closed_by = operator_id
        session.closed_at = utcnow()
        session.notes = notes

        if current_app.config.get("POS_INCOME_ON_CLOSE", True):
            _record_pos_income(session, totals, operator_id)

        db.session.commit()
        return session

    session = run_with_retry(_op)

    if session.variance_cents:
        current_app.logger.warning(
            "Register session %s closed with variance %s (expected %s, counted %s)",
            session.id,
            format_cents(session.variance_cents),
            format_cents(session.expected_cash_cents),
            format_cents(session.actual_cash_cents),
        )
    else:
        current_app.logger.info("Register session %s closed balanced", session.id)
    return session


def _sync_totals_from_ledger(session: RegisterSession) -> ledger_service.SessionTotals:
    totals = ledger_service.compute_session_totals(session.id)
    if totals.expected_cash_cents != session.expected_cash_cents:
        current_app.logger.warning(
            "Register session %s cached expected cash %s differs from ledger %s; using ledger",
            session.id,
            format_cents(session.expected_cash_cents),
            format_cents(totals.expected_cash_cents),
        )
    session.cash_sales_cents = totals.cash_sales_cents
    session.debt_repaid_cents = totals.debt_repaid_cents
    session.expected_cash_cents = totals.expected_cash_cents
    return totals


def _check_owner(session: RegisterSession, operator_id: int, manager_override: bool) -> None:
    if session.opened_by != operator_id and not manager_override:
        raise NotSessionOwner(
            f"Register session {session.id} belongs to user {session.opened_by}"
        )


def _record_pos_income(session: RegisterSession, totals, user_id: int) -> IncomeExpense | None:
    """
    Write the session's system-generated "POS Sales" income record (once).
    """
    existing = db.session.query(IncomeExpense.id).filter_by(
        cash_register_session_id=session.id,
        is_system_generated=True,
        type="income",
        category=POS_INCOME_CATEGORY,
    ).first()
    if existing:
        return None

    total = (
        totals.cash_sales_cents
        + totals.debt_repaid_cents
        + totals.bank_sales_cents
        + totals.bank_debt_repaid_cents
    )
    if total <= 0:
        return None

    record = IncomeExpense(
        type="income",
        category=POS_INCOME_CATEGORY,
        description=(
            f"Auto-recorded from closed register session #{session.id} "
            f"(Cash Sales: {format_cents(totals.cash_sales_cents)}, "
            f"Cash Debt: {format_cents(totals.debt_repaid_cents)}, "
            f"Bank Sales: {format_cents(totals.bank_sales_cents)}, "
            f"Bank Debt: {format_cents(totals.bank_debt_repaid_cents)})"
        ),
        amount_cents=total,
        source="cash_register",
        cash_register_session_id=session.id,
        user_id=user_id,
        transaction_date=session.closed_at.date(),
        is_system_generated=True,
    )
    db.session.add(record)
    return record


# =============================================================================
# HISTORICAL ACCESS AND EDITS
# =============================================================================

def request_historical_access(session_id: int, requester_id: int, reason: str | None = None):
    return access_service.request_historical_access(session_id, requester_id, reason)


def approve(request_id: int, approver_id: int):
    return access_service.approve_request(request_id, approver_id)


def deny(request_id: int, approver_id: int, reason: str | None = None):
    return access_service.deny_request(request_id, approver_id, reason)


def edit_closed_session(request_id: int, new_values: dict, reason: str) -> CashRegisterSessionAudit:
    """
    Apply an approved edit to a closed session.

    Consumes the access request, changes the requested fields, recomputes
    expected cash and variance, and writes exactly one audit row with full
    old/new snapshots. Changes to cash_sales / debt_repaid are carried into
    the ledger as correction entries so the session still derives from it.

    Raises:
        NotFound: request does not exist
        RequestNotApproved / RequestAlreadyUsed: request cannot be consumed
        SessionNotClosed: session was not closed
        ValidationError / InvalidAmount: bad reason or values
    """
    if not reason or not reason.strip():
        raise ValidationError("reason is required", field="reason")
    values = _validate_edit_values(new_values)

    def _op():
        access_request = access_service.consume_request(request_id)
        session = _get_session_locked(access_request.cash_register_session_id)
        if session.status != SESSION_CLOSED:
            raise SessionNotClosed(f"Register session {session.id} is not closed")

        old_values = session.snapshot()
        editor_id = access_request.requested_by
        request_ref = Reference("register_session_access_requests", access_request.id)
        note = f"Approved edit of closed session #{session.id}: {reason.strip()}"

        if "opening_balance_cents" in values:
            session.opening_balance_cents = values["opening_balance_cents"]
        if "cash_sales_cents" in values:
            ledger_service.append_session_correction(
                session,
                delta_cents=values["cash_sales_cents"] - session.cash_sales_cents,
                category=ledger_service.CATEGORY_SESSION_CORRECTION,
                user_id=editor_id,
                description=note,
                reference=request_ref,
            )
        if "debt_repaid_cents" in values:
            ledger_service.append_session_correction(
                session,
                delta_cents=values["debt_repaid_cents"] - session.debt_repaid_cents,
                category=ledger_service.CATEGORY_DEBT_REPAYMENT,
                user_id=editor_id,
                description=note,
                reference=request_ref,
            )
        if "actual_cash_cents" in values:
            session.actual_cash_cents = values["actual_cash_cents"]

        session.expected_cash_cents = (
            session.opening_balance_cents + session.cash_sales_cents + session.debt_repaid_cents
        )
        if session.actual_cash_cents is not None:
            session.variance_cents = session.actual_cash_cents - session.expected_cash_cents

        audit = CashRegisterSessionAudit(
            cash_register_session_id=session.id,
            access_request_id=access_request.id,
            changed_by=editor_id,
            approved_by=access_request.approved_by,
            old_values=old_values,
            new_values=session.snapshot(),
            reason=reason.strip(),
            created_at=utcnow(),
        )
        db.session.add(audit)
        db.session.commit()
        return audit

    audit = run_with_retry(_op)
    current_app.logger.info(
        "Closed register session %s edited by user %s (approved by %s, request %s)",
        audit.cash_register_session_id, audit.changed_by, audit.approved_by, request_id,
    )
    return audit


def _validate_edit_values(new_values: dict) -> dict:
    if not isinstance(new_values, dict) or not new_values:
        raise ValidationError("new_values must be a non-empty object", field="new_values")

    unknown = set(new_values) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Fields cannot be edited: {', '.join(sorted(unknown))}", field="new_values"
        )

    values = {}
    for field, value in new_values.items():
        if field == "actual_cash_cents" and value is None:
            raise ValidationError("actual_cash_cents cannot be cleared", field=field)
        values[field] = validate_cents(value, field=field, allow_zero=True)
    return values


# =============================================================================
# QUERIES
# =============================================================================

def get_open_session() -> RegisterSession | None:
    """The single session that is open or awaiting review, if any."""
    return db.session.query(RegisterSession).filter(
        RegisterSession.status.in_(ACTIVE_SESSION_STATUSES)
    ).first()


def get_session(session_id: int) -> RegisterSession:
    session = db.session.get(RegisterSession, session_id)
    if session is None:
        raise NotFound(f"Register session {session_id} not found")
    return session


def list_sessions(status: str | None = None, limit: int = 50) -> list[RegisterSession]:
    q = db.session.query(RegisterSession)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(RegisterSession.opened_at.desc(), RegisterSession.id.desc()).limit(limit).all()


def list_audits(session_id: int) -> list[CashRegisterSessionAudit]:
    return db.session.query(CashRegisterSessionAudit).filter_by(
        cash_register_session_id=session_id
    ).order_by(CashRegisterSessionAudit.id).all()


def get_session_summary(session_id: int) -> dict:
    """
    Shift review: ledger totals, sales and per-item sales for a session.
    """
    session = get_session(session_id)
    totals = ledger_service.compute_session_totals(session_id)

    sales_count = db.session.query(func.count(Sale.id)).filter(
        Sale.cash_register_session_id == session_id,
        Sale.parent_sale_id.is_(None),
    ).scalar()

    item_rows = (
        db.session.query(
            Item.id,
            Item.name,
            func.sum(SaleItem.quantity).label("quantity"),
            func.sum(SaleItem.subtotal_cents).label("subtotal_cents"),
        )
        .join(SaleItem, SaleItem.item_id == Item.id)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(Sale.cash_register_session_id == session_id)
        .group_by(Item.id, Item.name)
        .order_by(func.sum(SaleItem.subtotal_cents).desc())
        .all()
    )

    entry_count = db.session.query(func.count(MoneyTransaction.id)).filter(
        MoneyTransaction.cash_register_session_id == session_id
    ).scalar()

    return {
        "session": session.to_dict(),
        "totals": totals.to_dict(),
        "variance_cents": session.variance_cents,
        "sales_count": int(sales_count or 0),
        "ledger_entry_count": int(entry_count or 0),
        "item_sales": [
            {
                "item_id": row.id,
                "name": row.name,
                "quantity": int(row.quantity or 0),
                "subtotal_cents": int(row.subtotal_cents or 0),
            }
            for row in item_rows
        ],
        "is_closed": session.status == SESSION_CLOSED,
    }


def _get_session_locked(session_id: int) -> RegisterSession:
    session = lock_for_update(db.session.query(RegisterSession).filter_by(id=session_id)).first()
    if session is None:
        raise NotFound(f"Register session {session_id} not found")
    return session
