"""
POS flow tests: checkout, debt collection, returns and income/expense records.
"""

import pytest

from cashbook.errors import (
    InsufficientDebt,
    NegativeStock,
    NotSessionOwner,
    RequestNotApproved,
    SessionNotClosed,
    SessionNotOpen,
    ValidationError,
)
from cashbook.extensions import db
from cashbook.models import Customer, Item, ItemLog, MoneyTransaction, Sale
from cashbook.services import ledger_service, pos_service, register_service, stock_service


@pytest.fixture
def stocked_item(item, cashier):
    stock_service.receive_stock(item.id, 10, cashier.id)
    return item


@pytest.fixture
def shift(cashier):
    return register_service.open_session(cashier.id, 100000)


def _refresh(model, pk):
    db.session.expire_all()
    return db.session.get(model, pk)


# =============================================================================
# CHECKOUT
# =============================================================================


class TestCheckout:

    def test_cash_sale(self, cashier, shift, stocked_item):
        sale = pos_service.checkout(
            cashier.id,
            [{"item_id": stocked_item.id, "quantity": 1}],
            "cash",
            amount_paid_cents=60000,
        )

        assert sale.total_cents == 50000
        assert sale.change_given_cents == 10000
        assert sale.cash_register_session_id == shift.id
        assert _refresh(Item, stocked_item.id).stock == 9

        session = register_service.get_session(shift.id)
        assert session.cash_sales_cents == 50000
        assert session.expected_cash_cents == 150000

        entry = MoneyTransaction.query.filter_by(category="sale").one()
        assert entry.reference_kind == "sales"
        assert entry.reference_id == sale.id

    def test_price_override(self, cashier, shift, stocked_item):
        sale = pos_service.checkout(
            cashier.id,
            [{"item_id": stocked_item.id, "quantity": 2, "price_cents": 45000}],
            "cash",
            amount_paid_cents=90000,
        )
        assert sale.total_cents == 90000
        assert sale.items[0].subtotal_cents == 90000

    def test_cash_below_total_rejected(self, cashier, shift, stocked_item):
        with pytest.raises(ValidationError):
            pos_service.checkout(
                cashier.id,
                [{"item_id": stocked_item.id, "quantity": 1}],
                "cash",
                amount_paid_cents=100,
            )
        assert Sale.query.count() == 0

    def test_bank_sale_leaves_drawer_alone(self, cashier, shift, stocked_item, bank):
        pos_service.checkout(
            cashier.id,
            [{"item_id": stocked_item.id, "quantity": 1}],
            "bank",
            bank_account_id=bank.id,
        )

        assert register_service.get_session(shift.id).expected_cash_cents == 100000
        assert ledger_service.get_bank_balance(bank.id) == 50000
        assert ledger_service.compute_session_totals(shift.id).bank_sales_cents == 50000

    def test_credit_sale_adds_debt(self, cashier, shift, stocked_item, customer):
        pos_service.checkout(
            cashier.id,
            [{"item_id": stocked_item.id, "quantity": 2}],
            "credit",
            customer_id=customer.id,
        )

        assert _refresh(Customer, customer.id).debt_balance_cents == 100000
        assert MoneyTransaction.query.count() == 0

    def test_stock_shortage_aborts_sale(self, cashier, shift, item):
        with pytest.raises(NegativeStock):
            pos_service.checkout(
                cashier.id, [{"item_id": item.id, "quantity": 1}], "cash", amount_paid_cents=50000
            )

        assert Sale.query.count() == 0
        assert MoneyTransaction.query.count() == 0
        assert register_service.get_session(shift.id).expected_cash_cents == 100000

    def test_requires_open_session(self, cashier, stocked_item):
        with pytest.raises(SessionNotOpen):
            pos_service.checkout(
                cashier.id, [{"item_id": stocked_item.id, "quantity": 1}], "cash", amount_paid_cents=50000
            )

    def test_other_operators_session(self, cashier_b, shift, stocked_item):
        with pytest.raises(NotSessionOwner):
            pos_service.checkout(
                cashier_b.id, [{"item_id": stocked_item.id, "quantity": 1}], "cash", amount_paid_cents=50000
            )

    def test_credit_needs_customer(self, cashier, shift, stocked_item):
        with pytest.raises(ValidationError):
            pos_service.checkout(cashier.id, [{"item_id": stocked_item.id, "quantity": 1}], "credit")

    def test_unknown_payment_method(self, cashier, shift, stocked_item):
        with pytest.raises(ValidationError):
            pos_service.checkout(cashier.id, [{"item_id": stocked_item.id, "quantity": 1}], "barter")


# =============================================================================
# DEBT COLLECTION
# =============================================================================


class TestCollectDebt:

    @pytest.fixture
    def indebted(self, customer):
        customer.debt_balance_cents = 30000
        db.session.commit()
        return customer

    def test_cash_repayment(self, cashier, shift, indebted):
        pos_service.collect_debt(cashier.id, indebted.id, 20000, "cash")

        assert _refresh(Customer, indebted.id).debt_balance_cents == 10000
        session = register_service.get_session(shift.id)
        assert session.debt_repaid_cents == 20000
        assert session.cash_sales_cents == 0
        assert session.expected_cash_cents == 120000

    def test_bank_repayment(self, cashier, shift, indebted, bank):
        pos_service.collect_debt(cashier.id, indebted.id, 30000, "bank", bank.id)

        assert _refresh(Customer, indebted.id).debt_balance_cents == 0
        assert register_service.get_session(shift.id).debt_repaid_cents == 0
        assert ledger_service.compute_session_totals(shift.id).bank_debt_repaid_cents == 30000

    def test_cannot_exceed_debt(self, cashier, shift, indebted):
        with pytest.raises(InsufficientDebt):
            pos_service.collect_debt(cashier.id, indebted.id, 30001, "cash")
        assert _refresh(Customer, indebted.id).debt_balance_cents == 30000


# =============================================================================
# RETURNS
# =============================================================================


@pytest.fixture
def closed_cash_sale(cashier, stocked_item):
    shift = register_service.open_session(cashier.id, 100000)
    sale = pos_service.checkout(
        cashier.id, [{"item_id": stocked_item.id, "quantity": 2}], "cash", amount_paid_cents=100000
    )
    register_service.close_session(shift.id, cashier.id, 200000)
    return sale


class TestReturns:

    def test_return_needs_closed_session(self, admin, cashier, shift, stocked_item):
        sale = pos_service.checkout(
            cashier.id, [{"item_id": stocked_item.id, "quantity": 1}], "cash", amount_paid_cents=50000
        )
        line = sale.items[0]
        with pytest.raises(SessionNotClosed):
            pos_service.return_sale(sale.id, admin, [{"id": line.id, "quantity": 1}], "Defective")

    def test_return_needs_approval(self, cashier, closed_cash_sale):
        line = closed_cash_sale.items[0]
        with pytest.raises(RequestNotApproved):
            pos_service.return_sale(closed_cash_sale.id, cashier, [{"id": line.id, "quantity": 1}], "Defective")

    def test_approved_user_can_return(self, cashier, manager, closed_cash_sale, stocked_item):
        access_request = register_service.request_historical_access(
            closed_cash_sale.cash_register_session_id, cashier.id
        )
        register_service.approve(access_request.id, manager.id)
        line = closed_cash_sale.items[0]

        refund = pos_service.return_sale(closed_cash_sale.id, cashier, [{"id": line.id, "quantity": 1}], "Defective")

        assert refund.total_cents == -50000
        assert refund.parent_sale_id == closed_cash_sale.id
        assert refund.refund_source is None
        assert _refresh(Item, stocked_item.id).stock == 9
        assert _refresh(Sale, closed_cash_sale.id).status == "completed"

    def test_return_leaves_closed_session_cash_alone(self, admin, closed_cash_sale):
        session_id = closed_cash_sale.cash_register_session_id
        line = closed_cash_sale.items[0]

        pos_service.return_sale(closed_cash_sale.id, admin, [{"id": line.id, "quantity": 2}], "Wrong size")

        session = register_service.get_session(session_id)
        assert session.expected_cash_cents == 200000
        assert session.variance_cents == 0
        assert _refresh(Sale, closed_cash_sale.id).status == "refunded"

    def test_cannot_return_more_than_sold(self, admin, closed_cash_sale):
        line = closed_cash_sale.items[0]
        pos_service.return_sale(closed_cash_sale.id, admin, [{"id": line.id, "quantity": 1}], "First")

        with pytest.raises(ValidationError):
            pos_service.return_sale(closed_cash_sale.id, admin, [{"id": line.id, "quantity": 2}], "Second")

    def test_return_moves_stock_back_with_reversed_type(self, admin, closed_cash_sale, stocked_item):
        line = closed_cash_sale.items[0]
        refund = pos_service.return_sale(closed_cash_sale.id, admin, [{"id": line.id, "quantity": 1}], "Defective")

        log = ItemLog.query.filter_by(item_id=stocked_item.id, type="reversed").one()
        assert log.quantity_change == 1
        assert log.reference_kind == "sales"
        assert log.reference_id == refund.id

        sold = ItemLog.query.filter_by(item_id=stocked_item.id, type="sale").one()
        assert log.reversal_of_id is None
        assert f"Sale #{closed_cash_sale.id}" in log.description
        assert f"sale movement #{sold.id}" in log.description

    def test_second_partial_return_links_the_same_sale_movement(self, admin, closed_cash_sale, stocked_item):
        line = closed_cash_sale.items[0]
        pos_service.return_sale(closed_cash_sale.id, admin, [{"id": line.id, "quantity": 1}], "Defective")
        pos_service.return_sale(closed_cash_sale.id, admin, [{"id": line.id, "quantity": 1}], "Defective")

        sold = ItemLog.query.filter_by(item_id=stocked_item.id, type="sale").one()
        returns = ItemLog.query.filter_by(item_id=stocked_item.id, type="reversed").all()
        assert len(returns) == 2
        assert all(f"sale movement #{sold.id}" in log.description for log in returns)

    def test_cash_refund_paid_from_current_session(self, admin, cashier, closed_cash_sale):
        line = closed_cash_sale.items[0]
        refund = pos_service.return_sale(closed_cash_sale.id, admin, [{"id": line.id, "quantity": 1}], "Defective")

        with pytest.raises(SessionNotOpen):
            pos_service.set_refund_source(refund.id, admin.id, "cash")

        current = register_service.open_session(cashier.id, 100000)
        entry = pos_service.set_refund_source(refund.id, admin.id, "cash")

        assert entry.type == "out"
        assert entry.amount_cents == 50000
        assert entry.source_id == current.id
        assert register_service.get_session(current.id).expected_cash_cents == 50000
        assert register_service.get_session(closed_cash_sale.cash_register_session_id).expected_cash_cents == 200000

        with pytest.raises(ValidationError):
            pos_service.set_refund_source(refund.id, admin.id, "cash")

    def test_bank_refund(self, admin, closed_cash_sale, bank):
        ledger_service.record_bank_in(100000, bank.id, "Deposit", admin.id)
        line = closed_cash_sale.items[0]
        refund = pos_service.return_sale(closed_cash_sale.id, admin, [{"id": line.id, "quantity": 1}], "Defective")

        pos_service.set_refund_source(refund.id, admin.id, "bank", bank.id)

        assert ledger_service.get_bank_balance(bank.id) == 50000
        assert _refresh(Sale, refund.id).refund_bank_account_id == bank.id

    def test_credit_return_reduces_debt(self, admin, cashier, stocked_item, customer):
        shift = register_service.open_session(cashier.id, 0)
        sale = pos_service.checkout(
            cashier.id, [{"item_id": stocked_item.id, "quantity": 2}], "credit", customer_id=customer.id
        )
        register_service.close_session(shift.id, cashier.id, 0)

        refund = pos_service.return_sale(sale.id, admin, [{"id": sale.items[0].id, "quantity": 1}], "Defective")

        assert refund.refund_source == "credit"
        assert _refresh(Customer, customer.id).debt_balance_cents == 50000


# =============================================================================
# INCOME / EXPENSE
# =============================================================================


class TestIncomeExpense:

    def test_cash_expense_leaves_drawer(self, cashier, shift):
        record = pos_service.record_income_expense(cashier.id, "expense", "Supplies", 3500, "cash_register")

        assert record.cash_register_session_id == shift.id
        assert register_service.get_session(shift.id).expected_cash_cents == 96500
        entry = MoneyTransaction.query.one()
        assert entry.type == "out"
        assert entry.category == "Supplies"
        assert entry.reference_kind == "income_expenses"

    def test_bank_income(self, cashier, bank):
        record = pos_service.record_income_expense(
            cashier.id, "income", "Interest", 1200, "bank",
            bank_account_id=bank.id, transaction_date="2026-01-31",
        )

        assert record.cash_register_session_id is None
        assert record.transaction_date.isoformat() == "2026-01-31"
        assert ledger_service.get_bank_balance(bank.id) == 1200

    def test_cash_record_needs_open_session(self, cashier):
        with pytest.raises(SessionNotOpen):
            pos_service.record_income_expense(cashier.id, "expense", "Supplies", 100, "cash_register")

    def test_invalid_type(self, cashier, shift):
        with pytest.raises(ValidationError):
            pos_service.record_income_expense(cashier.id, "gift", "Supplies", 100, "cash_register")

    def test_list_by_session(self, cashier, shift, bank):
        pos_service.record_income_expense(cashier.id, "expense", "Supplies", 100, "cash_register")
        pos_service.record_income_expense(cashier.id, "income", "Interest", 100, "bank", bank_account_id=bank.id)

        records = pos_service.list_income_expenses(session_id=shift.id)
        assert [r.category for r in records] == ["Supplies"]
