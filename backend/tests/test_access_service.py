"""
Closed-session access request workflow tests.
"""

import pytest

from cashbook.errors import (
    DuplicatePendingRequest,
    NotFound,
    RequestNotPending,
    SelfApproval,
    SessionNotClosed,
)
from cashbook.services import access_service, register_service


@pytest.fixture
def closed_session(cashier):
    session = register_service.open_session(cashier.id, 100000)
    return register_service.close_session(session.id, cashier.id, 100000)


class TestRequests:

    def test_request_is_pending(self, closed_session, cashier):
        access_request = access_service.request_historical_access(
            closed_session.id, cashier.id, "Customer dispute"
        )
        assert access_request.status == "pending"
        assert access_request.reason == "Customer dispute"
        assert access_request.used_at is None

    def test_open_session_cannot_be_requested(self, cashier):
        session = register_service.open_session(cashier.id, 0)
        with pytest.raises(SessionNotClosed):
            access_service.request_historical_access(session.id, cashier.id)

    def test_unknown_session(self, cashier):
        with pytest.raises(NotFound):
            access_service.request_historical_access(999, cashier.id)

    def test_one_pending_per_requester(self, closed_session, cashier):
        access_service.request_historical_access(closed_session.id, cashier.id)
        with pytest.raises(DuplicatePendingRequest):
            access_service.request_historical_access(closed_session.id, cashier.id)

    def test_other_requesters_are_independent(self, closed_session, cashier, cashier_b):
        access_service.request_historical_access(closed_session.id, cashier.id)
        other = access_service.request_historical_access(closed_session.id, cashier_b.id)
        assert other.status == "pending"

    def test_approved_unused_request_blocks_new_one(self, closed_session, cashier, manager):
        access_request = access_service.request_historical_access(closed_session.id, cashier.id)
        access_service.approve_request(access_request.id, manager.id)

        with pytest.raises(DuplicatePendingRequest):
            access_service.request_historical_access(closed_session.id, cashier.id)

    def test_new_request_allowed_after_use(self, closed_session, cashier, manager):
        access_request = access_service.request_historical_access(closed_session.id, cashier.id)
        access_service.approve_request(access_request.id, manager.id)
        register_service.edit_closed_session(access_request.id, {"actual_cash_cents": 100000}, "Check")

        again = access_service.request_historical_access(closed_session.id, cashier.id)
        assert again.id != access_request.id

    def test_new_request_allowed_after_denial(self, closed_session, cashier, manager):
        access_request = access_service.request_historical_access(closed_session.id, cashier.id)
        access_service.deny_request(access_request.id, manager.id)

        again = access_service.request_historical_access(closed_session.id, cashier.id)
        assert again.status == "pending"


class TestDecisions:

    def test_approve(self, closed_session, cashier, manager):
        access_request = access_service.request_historical_access(closed_session.id, cashier.id)
        approved = access_service.approve_request(access_request.id, manager.id)

        assert approved.status == "approved"
        assert approved.approved_by == manager.id
        assert approved.approved_at is not None

    def test_deny_keeps_reason(self, closed_session, cashier, manager):
        access_request = access_service.request_historical_access(closed_session.id, cashier.id)
        denied = access_service.deny_request(access_request.id, manager.id, "Not your shift")

        assert denied.status == "denied"
        assert denied.denied_reason == "Not your shift"

    def test_self_approval_rejected(self, closed_session, cashier):
        access_request = access_service.request_historical_access(closed_session.id, cashier.id)

        with pytest.raises(SelfApproval):
            access_service.approve_request(access_request.id, cashier.id)
        with pytest.raises(SelfApproval):
            access_service.deny_request(access_request.id, cashier.id)

        assert access_service.get_request(access_request.id).status == "pending"

    def test_decisions_are_terminal(self, closed_session, cashier, manager, admin):
        access_request = access_service.request_historical_access(closed_session.id, cashier.id)
        access_service.deny_request(access_request.id, manager.id)

        with pytest.raises(RequestNotPending):
            access_service.approve_request(access_request.id, admin.id)

        approved = access_service.request_historical_access(closed_session.id, cashier.id)
        access_service.approve_request(approved.id, manager.id)
        with pytest.raises(RequestNotPending):
            access_service.deny_request(approved.id, admin.id)

    def test_unknown_request(self, manager):
        with pytest.raises(NotFound):
            access_service.approve_request(999, manager.id)


class TestViewAccess:

    def test_admin_always_has_access(self, closed_session, admin):
        assert access_service.has_view_access(closed_session.id, admin) is True

    def test_pending_request_grants_nothing(self, closed_session, cashier):
        access_service.request_historical_access(closed_session.id, cashier.id)
        assert access_service.has_view_access(closed_session.id, cashier) is False

    def test_approved_request_grants_view_even_after_use(self, closed_session, cashier, manager):
        access_request = access_service.request_historical_access(closed_session.id, cashier.id)
        access_service.approve_request(access_request.id, manager.id)
        assert access_service.has_view_access(closed_session.id, cashier) is True

        register_service.edit_closed_session(access_request.id, {"actual_cash_cents": 100000}, "Check")
        assert access_service.has_view_access(closed_session.id, cashier) is True

    def test_list_requests_filters(self, closed_session, cashier, cashier_b, manager):
        first = access_service.request_historical_access(closed_session.id, cashier.id)
        access_service.request_historical_access(closed_session.id, cashier_b.id)
        access_service.approve_request(first.id, manager.id)

        pending = access_service.list_requests(status="pending")
        assert [r.requested_by for r in pending] == [cashier_b.id]
        assert len(access_service.list_requests(session_id=closed_session.id)) == 2
