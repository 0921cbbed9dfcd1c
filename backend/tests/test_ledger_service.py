"""
Money ledger tests.

Verifies:
- Cash entries update the session buckets atomically with the append
- Bank entries never touch cash aggregates
- Entries are immutable; corrections are reversals
- Balances are ledger-derived with inclusive as_of filtering
"""

from datetime import timedelta

import pytest

from cashbook.errors import (
    EntryAlreadyReversed,
    ImmutableRecordError,
    InvalidAmount,
    InvalidReversal,
    NotFound,
    SessionNotOpen,
    ValidationError,
)
from cashbook.extensions import db
from cashbook.models import MoneyTransaction
from cashbook.services import ledger_service, register_service
from cashbook.services.ledger_service import CATEGORY_DEBT_REPAYMENT, CATEGORY_SALE
from conftest import fail_commits


@pytest.fixture
def open_session(cashier):
    return register_service.open_session(cashier.id, 100000)


# =============================================================================
# CASH ENTRIES
# =============================================================================


class TestCashEntries:

    def test_sale_goes_to_cash_sales_bucket(self, cashier, open_session):
        ledger_service.record_cash_in(50000, open_session.id, CATEGORY_SALE, cashier.id)

        session = register_service.get_session(open_session.id)
        assert session.cash_sales_cents == 50000
        assert session.debt_repaid_cents == 0
        assert session.expected_cash_cents == 150000

    def test_debt_repayment_goes_to_debt_bucket(self, cashier, open_session):
        ledger_service.record_cash_in(20000, open_session.id, CATEGORY_DEBT_REPAYMENT, cashier.id)

        session = register_service.get_session(open_session.id)
        assert session.cash_sales_cents == 0
        assert session.debt_repaid_cents == 20000
        assert session.expected_cash_cents == 120000

    def test_cash_out_reduces_expected(self, cashier, open_session):
        ledger_service.record_cash_in(50000, open_session.id, CATEGORY_SALE, cashier.id)
        ledger_service.record_cash_out(3500, open_session.id, "Supplies", cashier.id, "Tape")

        session = register_service.get_session(open_session.id)
        assert session.cash_sales_cents == 46500
        assert session.expected_cash_cents == 146500
        assert ledger_service.get_cash_balance(open_session.id) == 146500

    @pytest.mark.parametrize("amount", [0, -100, 1.5, None, True])
    def test_rejects_non_positive_or_non_integer_amounts(self, cashier, open_session, amount):
        with pytest.raises(InvalidAmount):
            ledger_service.record_cash_in(amount, open_session.id, CATEGORY_SALE, cashier.id)
        assert MoneyTransaction.query.count() == 0

    def test_requires_category(self, cashier, open_session):
        with pytest.raises(ValidationError):
            ledger_service.record_cash_in(100, open_session.id, " ", cashier.id)

    def test_unknown_session(self, cashier):
        with pytest.raises(NotFound):
            ledger_service.record_cash_in(100, 999, CATEGORY_SALE, cashier.id)

    def test_rejected_once_review_requested(self, cashier, open_session):
        register_service.request_close_review(open_session.id, cashier.id)

        with pytest.raises(SessionNotOpen):
            ledger_service.record_cash_in(100, open_session.id, CATEGORY_SALE, cashier.id)

    def test_rejected_after_close(self, cashier, open_session):
        register_service.close_session(open_session.id, cashier.id, 100000)

        with pytest.raises(SessionNotOpen):
            ledger_service.record_cash_in(100, open_session.id, CATEGORY_SALE, cashier.id)
        assert MoneyTransaction.query.count() == 0

    def test_reference_is_stored(self, cashier, open_session):
        from cashbook.models import Reference

        entry = ledger_service.record_cash_in(
            100, open_session.id, CATEGORY_SALE, cashier.id, reference=Reference("sales", 42)
        )
        assert entry.reference == Reference("sales", 42)
        assert entry.to_dict()["reference"] == {"kind": "sales", "id": 42}


# =============================================================================
# BANK ENTRIES
# =============================================================================


class TestBankEntries:

    def test_bank_entry_tagged_with_session_leaves_cash_alone(self, cashier, open_session, bank):
        ledger_service.record_bank_in(
            80000, bank.id, CATEGORY_SALE, cashier.id, session_id=open_session.id
        )

        session = register_service.get_session(open_session.id)
        assert session.cash_sales_cents == 0
        assert session.expected_cash_cents == 100000
        assert ledger_service.get_bank_balance(bank.id) == 80000

        totals = ledger_service.compute_session_totals(open_session.id)
        assert totals.bank_sales_cents == 80000
        assert totals.expected_cash_cents == 100000

    def test_bank_out(self, cashier, bank):
        ledger_service.record_bank_in(10000, bank.id, "Deposit", cashier.id)
        ledger_service.record_bank_out(2500, bank.id, "Fees", cashier.id)
        assert ledger_service.get_bank_balance(bank.id) == 7500

    def test_unknown_bank_account(self, cashier):
        with pytest.raises(NotFound):
            ledger_service.record_bank_in(100, 999, "Deposit", cashier.id)

    def test_unknown_session_tag(self, cashier, bank):
        with pytest.raises(NotFound):
            ledger_service.record_bank_in(100, bank.id, "Deposit", cashier.id, session_id=999)

    def test_inactive_bank_account(self, cashier, bank):
        bank.is_active = False
        db.session.commit()
        with pytest.raises(ValidationError):
            ledger_service.record_bank_in(100, bank.id, "Deposit", cashier.id)


# =============================================================================
# IMMUTABILITY AND REVERSALS
# =============================================================================


class TestImmutability:

    def test_update_is_rejected(self, cashier, open_session):
        entry = ledger_service.record_cash_in(100, open_session.id, CATEGORY_SALE, cashier.id)
        entry.amount_cents = 999

        with pytest.raises(ImmutableRecordError):
            db.session.commit()
        db.session.rollback()

        assert db.session.get(MoneyTransaction, entry.id).amount_cents == 100

    def test_delete_is_rejected(self, cashier, open_session):
        entry = ledger_service.record_cash_in(100, open_session.id, CATEGORY_SALE, cashier.id)
        db.session.delete(entry)

        with pytest.raises(ImmutableRecordError):
            db.session.commit()
        db.session.rollback()

        assert MoneyTransaction.query.count() == 1


class TestReversals:

    def test_reversal_mirrors_entry(self, cashier, open_session):
        entry = ledger_service.record_cash_in(50000, open_session.id, CATEGORY_SALE, cashier.id)
        reversal = ledger_service.reverse_entry(entry.id, cashier.id, "Rung up twice")

        assert reversal.type == "out"
        assert reversal.amount_cents == 50000
        assert reversal.category == CATEGORY_SALE
        assert reversal.reversal_of_id == entry.id
        assert "Rung up twice" in reversal.description

        session = register_service.get_session(open_session.id)
        assert session.cash_sales_cents == 0
        assert session.expected_cash_cents == 100000

    def test_second_reversal_fails(self, cashier, open_session):
        entry = ledger_service.record_cash_in(50000, open_session.id, CATEGORY_SALE, cashier.id)
        ledger_service.reverse_entry(entry.id, cashier.id)

        with pytest.raises(EntryAlreadyReversed):
            ledger_service.reverse_entry(entry.id, cashier.id)
        assert MoneyTransaction.query.count() == 2

    def test_reversal_cannot_be_reversed(self, cashier, open_session):
        entry = ledger_service.record_cash_in(50000, open_session.id, CATEGORY_SALE, cashier.id)
        reversal = ledger_service.reverse_entry(entry.id, cashier.id)

        with pytest.raises(InvalidReversal):
            ledger_service.reverse_entry(reversal.id, cashier.id)

    def test_cash_reversal_needs_open_session(self, cashier, open_session):
        entry = ledger_service.record_cash_in(50000, open_session.id, CATEGORY_SALE, cashier.id)
        register_service.close_session(open_session.id, cashier.id, 150000)

        with pytest.raises(SessionNotOpen):
            ledger_service.reverse_entry(entry.id, cashier.id)

    def test_bank_reversal(self, cashier, bank):
        entry = ledger_service.record_bank_in(10000, bank.id, "Deposit", cashier.id)
        ledger_service.reverse_entry(entry.id, cashier.id)
        assert ledger_service.get_bank_balance(bank.id) == 0


# =============================================================================
# BALANCES AND RECONCILIATION
# =============================================================================


class TestBalances:

    def test_as_of_is_inclusive(self, cashier, open_session):
        first = ledger_service.record_cash_in(10000, open_session.id, CATEGORY_SALE, cashier.id)
        ledger_service.record_cash_in(5000, open_session.id, CATEGORY_SALE, cashier.id)

        assert ledger_service.get_cash_balance(open_session.id, as_of=first.occurred_at) >= 110000
        before = first.occurred_at - timedelta(seconds=1)
        assert ledger_service.get_cash_balance(open_session.id, as_of=before) == 100000
        assert ledger_service.get_cash_balance(open_session.id) == 115000

    def test_totals_match_cached_fields(self, cashier, open_session):
        ledger_service.record_cash_in(50000, open_session.id, CATEGORY_SALE, cashier.id)
        ledger_service.record_cash_in(20000, open_session.id, CATEGORY_DEBT_REPAYMENT, cashier.id)
        ledger_service.record_cash_out(1000, open_session.id, "Supplies", cashier.id)

        totals = ledger_service.compute_session_totals(open_session.id)
        session = register_service.get_session(open_session.id)

        assert totals.cash_in_cents == 70000
        assert totals.cash_out_cents == 1000
        assert totals.cash_sales_cents == session.cash_sales_cents == 49000
        assert totals.debt_repaid_cents == session.debt_repaid_cents == 20000
        assert totals.expected_cash_cents == session.expected_cash_cents == 169000

    def test_reconcile_in_sync(self, cashier, open_session):
        ledger_service.record_cash_in(50000, open_session.id, CATEGORY_SALE, cashier.id)
        result = ledger_service.reconcile_session(open_session.id)
        assert result["in_sync"] is True
        assert result["drift_cents"] == 0

    def test_reconcile_reports_drift(self, cashier, open_session, caplog):
        ledger_service.record_cash_in(50000, open_session.id, CATEGORY_SALE, cashier.id)
        session = register_service.get_session(open_session.id)
        session.expected_cash_cents += 500
        db.session.commit()

        result = ledger_service.reconcile_session(open_session.id)
        assert result["in_sync"] is False
        assert result["drift_cents"] == 500
        assert "drift" in caplog.text

    def test_unknown_session_balance(self):
        with pytest.raises(NotFound):
            ledger_service.get_cash_balance(999)


class TestListing:

    def test_newest_first_with_cursor(self, cashier, open_session):
        for amount in (100, 200, 300):
            ledger_service.record_cash_in(amount, open_session.id, CATEGORY_SALE, cashier.id)

        page, cursor = ledger_service.list_entries(session_id=open_session.id, limit=2)
        assert [e.amount_cents for e in page] == [300, 200]
        assert cursor is not None

        rest, cursor = ledger_service.list_entries(session_id=open_session.id, limit=2, cursor=cursor)
        assert [e.amount_cents for e in rest] == [100]
        assert cursor is None

    def test_bad_cursor(self):
        with pytest.raises(ValidationError):
            ledger_service.list_entries(cursor="not-a-cursor")

    def test_category_filter(self, cashier, open_session):
        ledger_service.record_cash_in(100, open_session.id, CATEGORY_SALE, cashier.id)
        ledger_service.record_cash_in(200, open_session.id, CATEGORY_DEBT_REPAYMENT, cashier.id)

        rows, _ = ledger_service.list_entries(category=CATEGORY_DEBT_REPAYMENT)
        assert [e.amount_cents for e in rows] == [200]


class TestBankAccounts:

    def test_create_and_list(self):
        ledger_service.create_bank_account("BPI", "Payroll")
        ledger_service.create_bank_account("BDO", "Store")

        names = [a.bank_name for a in ledger_service.list_bank_accounts()]
        assert names == ["BDO", "BPI"]

    def test_requires_names(self):
        with pytest.raises(ValidationError):
            ledger_service.create_bank_account("", "Store")

    def test_busy_database_is_retried(self, monkeypatch):
        attempts = fail_commits(monkeypatch, times=1)

        account = ledger_service.create_bank_account("Metrobank", "Payroll")

        assert len(attempts) == 2
        assert [a.id for a in ledger_service.list_bank_accounts()] == [account.id]
