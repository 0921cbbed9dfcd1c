# Overview: Domain error taxonomy shared by services, routes and the CLI.

"""
Every failure a caller can act on is a CashbookError subclass carrying a
stable ``code`` and the HTTP status the API layer answers with. Services
raise them; routes translate them (see ``routes.errors``). Nothing in the
ledger or stock paths swallows them.
"""

from __future__ import annotations


class CashbookError(Exception):
    """Base class for domain errors."""

    code = "ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str | None = None, *, field: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        self.field = field

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.field:
            body["field"] = self.field
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(CashbookError):
    """Invalid input."""
    code = "VALIDATION_ERROR"


class InvalidAmount(ValidationError):
    """Amount must be a positive number of cents."""
    code = "INVALID_AMOUNT"


class InvalidQuantity(ValidationError):
    """Quantity change must be a non-zero integer."""
    code = "INVALID_QUANTITY"


class NotFound(CashbookError):
    """Requested record does not exist."""
    code = "NOT_FOUND"
    status_code = 404


class SessionAlreadyOpen(CashbookError):
    """Another register session is already open."""
    code = "SESSION_ALREADY_OPEN"
    status_code = 409


class SessionNotOpen(CashbookError):
    """Register session is not open."""
    code = "SESSION_NOT_OPEN"
    status_code = 409


class SessionNotClosed(CashbookError):
    """Register session is not closed."""
    code = "SESSION_NOT_CLOSED"
    status_code = 409


class NegativeStock(CashbookError):
    """Movement would take item stock below zero."""
    code = "NEGATIVE_STOCK"
    status_code = 409


class DuplicatePendingRequest(CashbookError):
    """An access request from this user for this session is already outstanding."""
    code = "DUPLICATE_PENDING_REQUEST"
    status_code = 409


class RequestNotPending(CashbookError):
    """Access request has already been decided."""
    code = "REQUEST_NOT_PENDING"
    status_code = 409


class RequestNotApproved(CashbookError):
    """Access request has not been approved."""
    code = "REQUEST_NOT_APPROVED"
    status_code = 403


class RequestAlreadyUsed(CashbookError):
    """Access request has already been used."""
    code = "REQUEST_ALREADY_USED"
    status_code = 409


class SelfApproval(CashbookError):
    """Requester cannot decide their own access request."""
    code = "SELF_APPROVAL"
    status_code = 403


class EntryAlreadyReversed(CashbookError):
    """Ledger entry has already been reversed."""
    code = "ENTRY_ALREADY_REVERSED"
    status_code = 409


class InvalidReversal(ValidationError):
    """A reversing entry cannot itself be reversed."""
    code = "INVALID_REVERSAL"


class InsufficientDebt(ValidationError):
    """Payment exceeds the customer's debt balance."""
    code = "INSUFFICIENT_DEBT"


class Contention(CashbookError):
    """Record is busy; retry the request."""
    code = "CONTENTION"
    status_code = 503
    retryable = True


class ImmutableRecordError(CashbookError):
    """Ledger records cannot be updated or deleted."""
    code = "IMMUTABLE_RECORD"
    status_code = 500


class NotSessionOwner(CashbookError):
    """Only the operator who opened the session can do this without an override."""
    code = "NOT_SESSION_OWNER"
    status_code = 403
