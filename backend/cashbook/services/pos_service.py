# Overview: Service-layer operations for point-of-sale flows that drive the money and stock ledgers.

"""
POS Flows

WHY: Sales, debt collection, returns and income/expense entries are where
money and stock actually move. Each flow is one atomic unit that writes its
business record and the matching ledger entries together.

MONEY ROUTING:
- cash   -> cash entry on the operator's open register session
- bank   -> bank entry, tagged with the session it happened in
- credit -> customer debt balance only; no ledger entry until repaid

RETURNS:
- Processed against a sale of a closed session, by an admin or a user holding
  an approved access request for that session.
- The closed session's cash is never touched. The refund leaves the drawer
  later, from whichever session is open when the refund source is set.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import (
    InsufficientDebt,
    NotFound,
    NotSessionOwner,
    RequestNotApproved,
    SessionNotClosed,
    SessionNotOpen,
    ValidationError,
)
from ..extensions import db
from ..models import (
    BankAccount,
    Customer,
    IncomeExpense,
    Item,
    ItemLog,
    Reference,
    RegisterSession,
    Sale,
    SaleItem,
    User,
)
from ..models.inventory import MOVEMENT_REVERSED, MOVEMENT_SALE
from ..models.ledger import SOURCE_CASH_REGISTER
from ..models.registers import SESSION_CLOSED, SESSION_OPEN
from ..models.sales import (
    PAYMENT_BANK,
    PAYMENT_CASH,
    PAYMENT_CREDIT,
    PAYMENT_METHODS,
    SALE_COMPLETED,
    SALE_REFUNDED,
)
from ..money import format_cents, validate_cents
from ..time_utils import parse_iso_date, utcnow
from . import access_service, ledger_service, stock_service
from .concurrency import lock_for_update, run_unit
from .register_service import get_open_session

REFUND_SOURCES = (PAYMENT_CASH, PAYMENT_BANK)
INCOME_EXPENSE_TYPES = ("income", "expense")
INCOME_EXPENSE_SOURCES = (SOURCE_CASH_REGISTER, PAYMENT_BANK)


# =============================================================================
# SALES
# =============================================================================

def checkout(
    user_id: int,
    items: list[dict],
    payment_method: str,
    *,
    customer_id: int | None = None,
    bank_account_id: int | None = None,
    amount_paid_cents: int | None = None,
    notes: str | None = None,
) -> Sale:
    """
    Record a sale on the operator's open register session.

    ``items`` is a list of {"item_id", "quantity", "price_cents"?}; the
    catalog price is used when price_cents is omitted. Stock moves out with
    one ``sale`` movement per line; payment is routed per MONEY ROUTING.

    Raises:
        ValidationError: bad payment method, missing customer/bank account,
            cash tendered below the total
        SessionNotOpen: the operator has no open session
        NegativeStock: a line exceeds available stock (whole sale aborts)
    """
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}", field="payment_method"
        )
    if not items:
        raise ValidationError("At least one item is required", field="items")
    if payment_method == PAYMENT_CREDIT and not customer_id:
        raise ValidationError("A customer is required for credit sales", field="customer_id")
    if payment_method == PAYMENT_BANK and not bank_account_id:
        raise ValidationError("bank_account_id is required for bank payments", field="bank_account_id")
    if payment_method == PAYMENT_CASH and amount_paid_cents is None:
        raise ValidationError("amount_paid is required for cash payments", field="amount_paid")

    def _inner() -> Sale:
        session = _operator_open_session(user_id)
        if customer_id is not None and db.session.get(Customer, customer_id) is None:
            raise NotFound(f"Customer {customer_id} not found", field="customer_id")
        if bank_account_id is not None and db.session.get(BankAccount, bank_account_id) is None:
            raise NotFound(f"Bank account {bank_account_id} not found", field="bank_account_id")

        lines = []
        total = 0
        for line in items:
            item = db.session.get(Item, line.get("item_id"))
            if item is None:
                raise NotFound(f"Item {line.get('item_id')} not found", field="items")
            quantity = line.get("quantity")
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
                raise ValidationError("Item quantity must be a positive integer", field="items")
            price = line.get("price_cents")
            price = item.price_cents if price is None else validate_cents(price, field="price", allow_zero=True)
            lines.append((item, quantity, price))
            total += price * quantity

        if payment_method == PAYMENT_CASH:
            paid = validate_cents(amount_paid_cents, field="amount_paid", allow_zero=True)
            if paid < total:
                raise ValidationError(
                    f"Amount paid {format_cents(paid)} is less than total {format_cents(total)}",
                    field="amount_paid",
                )
        else:
            paid = total

        sale = Sale(
            customer_id=customer_id,
            user_id=user_id,
            cash_register_session_id=session.id,
            bank_account_id=bank_account_id if payment_method == PAYMENT_BANK else None,
            payment_method=payment_method,
            total_cents=total,
            amount_paid_cents=paid,
            change_given_cents=paid - total,
            status=SALE_COMPLETED,
            notes=notes,
            created_at=utcnow(),
        )
        db.session.add(sale)
        db.session.flush()
        ref = Reference.of(sale)

        for item, quantity, price in lines:
            db.session.add(SaleItem(
                sale_id=sale.id,
                item_id=item.id,
                quantity=quantity,
                price_cents=price,
                subtotal_cents=price * quantity,
            ))
            stock_service.apply_movement(
                item.id, MOVEMENT_SALE, -quantity, user_id, ref,
                f"Sold via POS (Sale #{sale.id})", commit=False,
            )

        if total > 0:
            if payment_method == PAYMENT_CASH:
                ledger_service.record_cash_in(
                    total, session.id, ledger_service.CATEGORY_SALE, user_id,
                    f"Sale #{sale.id}", ref, commit=False,
                )
            elif payment_method == PAYMENT_BANK:
                ledger_service.record_bank_in(
                    total, bank_account_id, ledger_service.CATEGORY_SALE, user_id,
                    f"Sale #{sale.id}", ref, session_id=session.id, commit=False,
                )
            else:
                customer = _get_customer_locked(customer_id)
                customer.debt_balance_cents = (customer.debt_balance_cents or 0) + total
        return sale

    sale = run_unit(_inner)
    current_app.logger.info(
        "Sale %s recorded on session %s: %s via %s",
        sale.id, sale.cash_register_session_id, format_cents(sale.total_cents), payment_method,
    )
    return sale


def collect_debt(
    user_id: int,
    customer_id: int,
    amount_cents: int,
    payment_method: str,
    bank_account_id: int | None = None,
):
    """
    Take a debt repayment from a customer.

    Cash goes into the operator's open session as ``debt_repayment``; bank
    transfers go to the bank account tagged with that session.

    Raises:
        InsufficientDebt: amount exceeds the customer's debt balance
    """
    validate_cents(amount_cents)
    if payment_method not in REFUND_SOURCES:
        raise ValidationError("payment_method must be cash or bank", field="payment_method")
    if payment_method == PAYMENT_BANK and not bank_account_id:
        raise ValidationError("bank_account_id is required for bank payments", field="bank_account_id")

    def _inner():
        customer = _get_customer_locked(customer_id)
        if amount_cents > (customer.debt_balance_cents or 0):
            raise InsufficientDebt(
                f"Payment amount cannot exceed debt balance of {format_cents(customer.debt_balance_cents)}",
                field="amount",
            )
        session = _operator_open_session(user_id)

        customer.debt_balance_cents -= amount_cents
        ref = Reference.of(customer)
        if payment_method == PAYMENT_CASH:
            return ledger_service.record_cash_in(
                amount_cents, session.id, ledger_service.CATEGORY_DEBT_REPAYMENT, user_id,
                f"Debt payment from {customer.name} via cash", ref, commit=False,
            )
        return ledger_service.record_bank_in(
            amount_cents, bank_account_id, ledger_service.CATEGORY_DEBT_REPAYMENT, user_id,
            f"Debt payment from {customer.name} via bank transfer", ref,
            session_id=session.id, commit=False,
        )

    return run_unit(_inner)


# =============================================================================
# RETURNS
# =============================================================================

def return_sale(sale_id: int, user: User, items: list[dict], reason: str) -> Sale:
    """
    Return items of a sale from a closed session.

    ``items`` is a list of {"id": sale_item_id, "quantity"}. Creates a
    refunded child sale with negative lines, moves the stock back in with
    ``reversed`` movements and, for credit sales, reduces the customer's
    debt. The parent is marked refunded once everything has come back.
    """
    if not reason or not reason.strip():
        raise ValidationError("reason is required", field="reason")
    if not items:
        raise ValidationError("Select at least one item to return", field="items")

    def _inner() -> Sale:
        sale = db.session.get(Sale, sale_id)
        if sale is None:
            raise NotFound(f"Sale {sale_id} not found")
        session = db.session.get(RegisterSession, sale.cash_register_session_id)
        if session is None or session.status != SESSION_CLOSED:
            raise SessionNotClosed("Session must be closed to process a return")
        if sale.status != SALE_COMPLETED or sale.parent_sale_id is not None:
            raise ValidationError("Only completed sales can be returned", field="sale_id")
        if not access_service.has_view_access(session.id, user):
            raise RequestNotApproved("Approval required to return sales of a closed session")

        requested = {}
        for line in items:
            try:
                requested[int(line["id"])] = line["quantity"]
            except (KeyError, TypeError, ValueError):
                raise ValidationError("Each return line needs an id and a quantity", field="items")

        returned = _returned_quantities(sale.id)
        lines = []
        refund_total = 0
        for sale_item in sale.items:
            qty = requested.pop(sale_item.id, 0)
            if not isinstance(qty, int) or isinstance(qty, bool) or qty < 0:
                raise ValidationError("Return quantity must be a positive integer", field="items")
            if qty == 0:
                continue
            available = sale_item.quantity - returned.get(sale_item.item_id, 0)
            if qty > available:
                raise ValidationError(
                    f"Return quantity exceeds available items for item {sale_item.item_id}",
                    field="items",
                )
            lines.append((sale_item, qty))
            refund_total += qty * sale_item.price_cents
        if requested:
            raise ValidationError(
                f"Sale items do not belong to sale {sale.id}: {sorted(requested)}", field="items"
            )
        if not lines:
            raise ValidationError("Select at least one item to return", field="items")

        refund = Sale(
            customer_id=sale.customer_id,
            user_id=user.id,
            cash_register_session_id=session.id,
            parent_sale_id=sale.id,
            bank_account_id=sale.bank_account_id,
            payment_method=sale.payment_method,
            total_cents=-refund_total,
            amount_paid_cents=0,
            change_given_cents=0,
            status=SALE_REFUNDED,
            notes=reason.strip(),
            created_at=utcnow(),
        )
        db.session.add(refund)
        db.session.flush()
        ref = Reference.of(refund)

        for sale_item, qty in lines:
            db.session.add(SaleItem(
                sale_id=refund.id,
                item_id=sale_item.item_id,
                quantity=-qty,
                price_cents=sale_item.price_cents,
                subtotal_cents=-qty * sale_item.price_cents,
            ))
            sold = _sale_movement(sale.id, sale_item.item_id)
            stock_service.apply_movement(
                sale_item.item_id, MOVEMENT_REVERSED, qty, user.id, ref,
                f"Return for Sale #{sale.id} (Return #{refund.id}, sale movement #{sold.id})",
                commit=False,
            )

        if sale.payment_method == PAYMENT_CREDIT and sale.customer_id:
            customer = _get_customer_locked(sale.customer_id)
            customer.debt_balance_cents = max(0, (customer.debt_balance_cents or 0) - refund_total)
            # Nothing left to pay out
            refund.refund_source = PAYMENT_CREDIT

        db.session.flush()
        total_returned = -(db.session.query(func.coalesce(func.sum(Sale.total_cents), 0)).filter(
            Sale.parent_sale_id == sale.id
        ).scalar() or 0)
        if total_returned >= sale.total_cents:
            sale.status = SALE_REFUNDED
        return refund

    refund = run_unit(_inner)
    current_app.logger.info(
        "Return %s for sale %s: %s refunded by user %s",
        refund.id, sale_id, format_cents(-refund.total_cents), user.id,
    )
    return refund


def set_refund_source(refund_id: int, user_id: int, refund_source: str, bank_account_id: int | None = None):
    """
    Pay out a return, once.

    Cash refunds leave the drawer of the session that is open now (not the
    closed one the sale belongs to); bank refunds are paid from the account.
    """
    if refund_source not in REFUND_SOURCES:
        raise ValidationError("refund_source must be cash or bank", field="refund_source")
    if refund_source == PAYMENT_BANK and not bank_account_id:
        raise ValidationError("bank_account_id is required for bank refunds", field="bank_account_id")

    def _inner():
        refund = lock_for_update(db.session.query(Sale).filter_by(id=refund_id)).first()
        if refund is None:
            raise NotFound(f"Sale {refund_id} not found")
        if refund.status != SALE_REFUNDED or refund.parent_sale_id is None:
            raise ValidationError("Invalid refund sale", field="sale_id")
        if refund.refund_source:
            raise ValidationError("Refund source already set", field="refund_source")

        amount = abs(refund.total_cents)
        refund.refund_source = refund_source
        refund.refund_bank_account_id = bank_account_id if refund_source == PAYMENT_BANK else None
        ref = Reference.of(refund)
        description = f"Refund for Sale #{refund.parent_sale_id}"

        if refund_source == PAYMENT_CASH:
            current = get_open_session()
            if current is None or current.status != SESSION_OPEN:
                raise SessionNotOpen("No open cash register session found. Please open a register first.")
            return ledger_service.record_cash_out(
                amount, current.id, ledger_service.CATEGORY_REFUND, user_id, description, ref, commit=False,
            )
        return ledger_service.record_bank_out(
            amount, bank_account_id, ledger_service.CATEGORY_REFUND, user_id, description, ref, commit=False,
        )

    return run_unit(_inner)


def _sale_movement(sale_id: int, item_id: int) -> ItemLog:
    # A partial return cannot use reversal_of_id, which allows one full inverse per movement
    log = (
        ItemLog.query
        .filter_by(reference_kind=Sale.__tablename__, reference_id=sale_id, item_id=item_id, type=MOVEMENT_SALE)
        .order_by(ItemLog.id)
        .first()
    )
    if log is None:
        raise NotFound(f"No sale movement for item {item_id} on sale {sale_id}")
    return log


def _returned_quantities(sale_id: int) -> dict[int, int]:
    rows = (
        db.session.query(SaleItem.item_id, func.sum(SaleItem.quantity))
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(Sale.parent_sale_id == sale_id)
        .group_by(SaleItem.item_id)
        .all()
    )
    return {item_id: abs(int(qty or 0)) for item_id, qty in rows}


# =============================================================================
# INCOME / EXPENSE
# =============================================================================

def record_income_expense(
    user_id: int,
    entry_type: str,
    category: str,
    amount_cents: int,
    source: str,
    *,
    description: str | None = None,
    bank_account_id: int | None = None,
    transaction_date=None,
) -> IncomeExpense:
    """
    Record an income or expense and its ledger entry.

    ``cash_register`` records pay into or out of the open session's drawer;
    ``bank`` records hit the bank account.
    """
    if entry_type not in INCOME_EXPENSE_TYPES:
        raise ValidationError("type must be income or expense", field="type")
    if source not in INCOME_EXPENSE_SOURCES:
        raise ValidationError("source must be cash_register or bank", field="source")
    if not category or not category.strip():
        raise ValidationError("category is required", field="category")
    if source == PAYMENT_BANK and not bank_account_id:
        raise ValidationError("bank_account_id is required for bank records", field="bank_account_id")
    validate_cents(amount_cents)
    if isinstance(transaction_date, str):
        transaction_date = parse_iso_date(transaction_date)

    def _inner() -> IncomeExpense:
        session = None
        if source == SOURCE_CASH_REGISTER:
            session = get_open_session()
            if session is None or session.status != SESSION_OPEN:
                raise SessionNotOpen("No open cash register session found.")

        record = IncomeExpense(
            type=entry_type,
            category=category.strip(),
            description=description,
            amount_cents=amount_cents,
            source=source,
            bank_account_id=bank_account_id if source == PAYMENT_BANK else None,
            cash_register_session_id=session.id if session else None,
            user_id=user_id,
            transaction_date=transaction_date or utcnow().date(),
            is_system_generated=False,
        )
        db.session.add(record)
        db.session.flush()

        ref = Reference.of(record)
        text = description or record.category
        if session is not None:
            record_cash = ledger_service.record_cash_in if entry_type == "income" else ledger_service.record_cash_out
            record_cash(amount_cents, session.id, record.category, user_id, text, ref, commit=False)
        else:
            record_bank = ledger_service.record_bank_in if entry_type == "income" else ledger_service.record_bank_out
            record_bank(amount_cents, bank_account_id, record.category, user_id, text, ref, commit=False)
        return record

    return run_unit(_inner)


def list_income_expenses(*, entry_type: str | None = None, session_id: int | None = None,
                         limit: int = 100) -> list[IncomeExpense]:
    q = db.session.query(IncomeExpense)
    if entry_type:
        q = q.filter_by(type=entry_type)
    if session_id is not None:
        q = q.filter_by(cash_register_session_id=session_id)
    return q.order_by(IncomeExpense.transaction_date.desc(), IncomeExpense.id.desc()).limit(limit).all()


# =============================================================================
# HELPERS
# =============================================================================

def _operator_open_session(user_id: int) -> RegisterSession:
    session = get_open_session()
    if session is None or session.status != SESSION_OPEN:
        raise SessionNotOpen("No open cash register session")
    if session.opened_by != user_id:
        raise NotSessionOwner(f"Register session {session.id} belongs to another operator")
    return session


def _get_customer_locked(customer_id: int) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if customer is None:
        raise NotFound(f"Customer {customer_id} not found", field="customer_id")
    return customer


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound(f"Sale {sale_id} not found")
    return sale


def list_session_sales(session_id: int) -> list[Sale]:
    return db.session.query(Sale).filter_by(cash_register_session_id=session_id).order_by(Sale.id).all()
