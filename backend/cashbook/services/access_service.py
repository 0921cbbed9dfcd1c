# Overview: Service-layer operations for historical session access requests.

"""
Closed-Session Access Workflow

WHY: A closed register session is the record of what was in the drawer.
Anyone other than an administrator who needs to look at or correct it must
ask first, and someone else must say yes.

RULES:
- Requests are only made against closed sessions.
- One outstanding request per requester per session: a pending request, or an
  approved one that has not been used yet, blocks a new request.
- pending -> approved | denied is terminal; a new decision needs a new request.
- The approver must be a different user from the requester.
- An approved request is consumed by exactly one edit (used_at is set once).
"""

from __future__ import annotations

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from ..errors import (
    DuplicatePendingRequest,
    NotFound,
    RequestAlreadyUsed,
    RequestNotApproved,
    RequestNotPending,
    SelfApproval,
    SessionNotClosed,
)
from ..extensions import db
from ..models import CashRegisterSessionAccessRequest, RegisterSession, User
from ..models.registers import REQUEST_APPROVED, REQUEST_DENIED, REQUEST_PENDING, SESSION_CLOSED
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


def request_historical_access(
    session_id: int,
    requester_id: int,
    reason: str | None = None,
) -> CashRegisterSessionAccessRequest:
    """
    Ask for access to a closed session.

    Raises:
        NotFound: session does not exist
        SessionNotClosed: session is still open or in review
        DuplicatePendingRequest: requester already has an outstanding request
    """
    def _op():
        session = db.session.get(RegisterSession, session_id)
        if session is None:
            raise NotFound(f"Register session {session_id} not found")
        if session.status != SESSION_CLOSED:
            raise SessionNotClosed(f"Register session {session_id} is not closed")

        outstanding = db.session.query(CashRegisterSessionAccessRequest).filter(
            CashRegisterSessionAccessRequest.cash_register_session_id == session_id,
            CashRegisterSessionAccessRequest.requested_by == requester_id,
            or_(
                CashRegisterSessionAccessRequest.status == REQUEST_PENDING,
                and_(
                    CashRegisterSessionAccessRequest.status == REQUEST_APPROVED,
                    CashRegisterSessionAccessRequest.used_at.is_(None),
                ),
            ),
        ).first()
        if outstanding is not None:
            raise DuplicatePendingRequest(
                f"Request {outstanding.id} for session {session_id} is still {outstanding.status}"
            )

        access_request = CashRegisterSessionAccessRequest(
            cash_register_session_id=session_id,
            requested_by=requester_id,
            status=REQUEST_PENDING,
            reason=reason,
        )
        db.session.add(access_request)
        db.session.commit()
        return access_request

    try:
        return run_with_retry(_op)
    except IntegrityError as exc:
        # uq_access_requests_one_pending lost a race with a concurrent request
        db.session.rollback()
        raise DuplicatePendingRequest(
            f"A pending request for session {session_id} already exists"
        ) from exc


def approve_request(request_id: int, approver_id: int) -> CashRegisterSessionAccessRequest:
    """Approve a pending request. The approver cannot be the requester."""
    def _op():
        access_request = _get_request_locked(request_id)
        if access_request.requested_by == approver_id:
            raise SelfApproval("You cannot approve your own access request")
        if access_request.status != REQUEST_PENDING:
            raise RequestNotPending(f"Request {request_id} is already {access_request.status}")

        access_request.status = REQUEST_APPROVED
        access_request.approved_by = approver_id
        access_request.approved_at = utcnow()
        db.session.commit()
        return access_request

    return run_with_retry(_op)


def deny_request(
    request_id: int,
    approver_id: int,
    reason: str | None = None,
) -> CashRegisterSessionAccessRequest:
    """Deny a pending request. Denial is terminal."""
    def _op():
        access_request = _get_request_locked(request_id)
        if access_request.requested_by == approver_id:
            raise SelfApproval("You cannot deny your own access request")
        if access_request.status != REQUEST_PENDING:
            raise RequestNotPending(f"Request {request_id} is already {access_request.status}")

        access_request.status = REQUEST_DENIED
        access_request.approved_by = approver_id
        access_request.approved_at = utcnow()
        access_request.denied_reason = reason
        db.session.commit()
        return access_request

    return run_with_retry(_op)


def consume_request(request_id: int) -> CashRegisterSessionAccessRequest:
    """
    Lock an approved request and stamp used_at.

    Runs inside the caller's unit of work (no commit). The version_id column
    on the request turns a concurrent second consumer into StaleDataError,
    which the caller's retry re-reads as RequestAlreadyUsed.
    """
    access_request = _get_request_locked(request_id)
    if access_request.status != REQUEST_APPROVED:
        raise RequestNotApproved(f"Request {request_id} is {access_request.status}, not approved")
    if access_request.used_at is not None:
        raise RequestAlreadyUsed(f"Request {request_id} was already used")
    access_request.used_at = utcnow()
    return access_request


def has_view_access(session_id: int, user: User) -> bool:
    """
    Whether ``user`` may view a closed session's transactions.

    Administrators always may; everyone else needs an approved request for
    that session (used or not).
    """
    if user.is_admin:
        return True
    return db.session.query(CashRegisterSessionAccessRequest.id).filter_by(
        cash_register_session_id=session_id,
        requested_by=user.id,
        status=REQUEST_APPROVED,
    ).first() is not None


def get_request(request_id: int) -> CashRegisterSessionAccessRequest:
    access_request = db.session.get(CashRegisterSessionAccessRequest, request_id)
    if access_request is None:
        raise NotFound(f"Access request {request_id} not found")
    return access_request


def list_requests(
    *,
    status: str | None = None,
    session_id: int | None = None,
    requester_id: int | None = None,
) -> list[CashRegisterSessionAccessRequest]:
    q = db.session.query(CashRegisterSessionAccessRequest)
    if status:
        q = q.filter_by(status=status)
    if session_id is not None:
        q = q.filter_by(cash_register_session_id=session_id)
    if requester_id is not None:
        q = q.filter_by(requested_by=requester_id)
    return q.order_by(CashRegisterSessionAccessRequest.id.desc()).all()


def _get_request_locked(request_id: int) -> CashRegisterSessionAccessRequest:
    access_request = lock_for_update(
        db.session.query(CashRegisterSessionAccessRequest).filter_by(id=request_id)
    ).first()
    if access_request is None:
        raise NotFound(f"Access request {request_id} not found")
    return access_request
