"""initial cashbook schema

Revision ID: c0a1b2c3d4e5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete schema from scratch:
- users / user_permissions: operators and capability grants
- register_sessions: one row per shift; unique active_slot admits one active session
- money_transactions: append-only cash/bank ledger
- register_session_access_requests / register_session_audits: supervised edits of closed sessions
- items / item_logs / stock_adjustments / assemblies: stock ledger
- customers / sales / sale_items / income_expenses: POS collaborators
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c0a1b2c3d4e5'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False)


def upgrade():
    # ============================================================================
    # users
    # ============================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("token_hash", sa.String(length=64), nullable=True),
        sa.Column("token_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_token_hash", "users", ["token_hash"], unique=True)

    op.create_table(
        "user_permissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("permission", sa.String(length=64), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "permission", name="uq_user_permissions_user_permission"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_user_permissions_user_id", "user_permissions", ["user_id"], unique=False)

    # ============================================================================
    # bank_accounts
    # ============================================================================
    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bank_name", sa.String(length=128), nullable=False),
        sa.Column("account_name", sa.String(length=128), nullable=False),
        sa.Column("account_number", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    # ============================================================================
    # register_sessions
    # ============================================================================
    op.create_table(
        "register_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("opened_by", sa.Integer(), nullable=False),
        sa.Column("closed_by", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("active_slot", sa.Boolean(), nullable=True),
        sa.Column("opening_balance_cents", sa.BigInteger(), nullable=False),
        sa.Column("cash_sales_cents", sa.BigInteger(), nullable=False),
        sa.Column("debt_repaid_cents", sa.BigInteger(), nullable=False),
        sa.Column("expected_cash_cents", sa.BigInteger(), nullable=False),
        sa.Column("actual_cash_cents", sa.BigInteger(), nullable=True),
        sa.Column("variance_cents", sa.BigInteger(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("review_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["opened_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["closed_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("active_slot", name="uq_register_sessions_active_slot"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_register_sessions_opened_by", "register_sessions", ["opened_by"], unique=False)
    op.create_index("ix_register_sessions_status", "register_sessions", ["status"], unique=False)
    op.create_index("ix_register_sessions_opened_at", "register_sessions", ["opened_at"], unique=False)

    # ============================================================================
    # money_transactions: append-only
    # ============================================================================
    op.create_table(
        "money_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=8), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("source_type", sa.String(length=32), nullable=False),
        sa.Column("source_id", sa.Integer(), nullable=False),
        sa.Column("cash_register_session_id", sa.Integer(), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reference_kind", sa.String(length=64), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("reversal_of_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_money_transactions_amount_positive"),
        sa.CheckConstraint("type IN ('in', 'out')", name="ck_money_transactions_type"),
        sa.CheckConstraint(
            "source_type IN ('cash_register', 'bank_account')",
            name="ck_money_transactions_source_type",
        ),
        sa.ForeignKeyConstraint(["cash_register_session_id"], ["register_sessions.id"]),
        sa.ForeignKeyConstraint(["reversal_of_id"], ["money_transactions.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reversal_of_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_money_transactions_category", "money_transactions", ["category"], unique=False)
    op.create_index("ix_money_transactions_user_id", "money_transactions", ["user_id"], unique=False)
    op.create_index("ix_money_transactions_occurred_at", "money_transactions", ["occurred_at"], unique=False)
    op.create_index(
        "ix_money_transactions_source", "money_transactions", ["source_type", "source_id", "occurred_at"], unique=False
    )
    op.create_index(
        "ix_money_transactions_session_occurred",
        "money_transactions",
        ["cash_register_session_id", "occurred_at"],
        unique=False,
    )

    # ============================================================================
    # access requests and audits
    # ============================================================================
    op.create_table(
        "register_session_access_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cash_register_session_id", sa.Integer(), nullable=False),
        sa.Column("requested_by", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("denied_reason", sa.Text(), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["cash_register_session_id"], ["register_sessions.id"]),
        sa.ForeignKeyConstraint(["requested_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["approved_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_register_session_access_requests_cash_register_session_id",
        "register_session_access_requests",
        ["cash_register_session_id"],
        unique=False,
    )
    op.create_index(
        "ix_register_session_access_requests_status", "register_session_access_requests", ["status"], unique=False
    )
    op.create_index(
        "ix_access_requests_session_requester",
        "register_session_access_requests",
        ["cash_register_session_id", "requested_by"],
        unique=False,
    )
    op.create_index(
        "uq_access_requests_one_pending",
        "register_session_access_requests",
        ["cash_register_session_id", "requested_by"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "register_session_audits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cash_register_session_id", sa.Integer(), nullable=False),
        sa.Column("access_request_id", sa.Integer(), nullable=False),
        sa.Column("changed_by", sa.Integer(), nullable=False),
        sa.Column("approved_by", sa.Integer(), nullable=False),
        sa.Column("old_values", sa.JSON(), nullable=False),
        sa.Column("new_values", sa.JSON(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["cash_register_session_id"], ["register_sessions.id"]),
        sa.ForeignKeyConstraint(["access_request_id"], ["register_session_access_requests.id"]),
        sa.ForeignKeyConstraint(["changed_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["approved_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("access_request_id"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_register_session_audits_cash_register_session_id",
        "register_session_audits",
        ["cash_register_session_id"],
        unique=False,
    )

    # ============================================================================
    # stock ledger
    # ============================================================================
    op.create_table(
        "items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("price_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku", name="uq_items_sku"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "item_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("old_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("reference_kind", sa.String(length=64), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("reversal_of_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("new_stock = old_stock + quantity_change", name="ck_item_logs_arithmetic"),
        sa.CheckConstraint("quantity_change <> 0", name="ck_item_logs_nonzero"),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.ForeignKeyConstraint(["reversal_of_id"], ["item_logs.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reversal_of_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_item_logs_item_id", "item_logs", ["item_id"], unique=False)
    op.create_index("ix_item_logs_type", "item_logs", ["type"], unique=False)
    op.create_index("ix_item_logs_user_id", "item_logs", ["user_id"], unique=False)
    op.create_index("ix_item_logs_item_created", "item_logs", ["item_id", "id"], unique=False)

    op.create_table(
        "stock_adjustments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("old_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reversed_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["reversed_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_adjustments_item_id", "stock_adjustments", ["item_id"], unique=False)

    op.create_table(
        "assemblies",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("final_item_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["final_item_id"], ["items.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_assemblies_final_item_id", "assemblies", ["final_item_id"], unique=False)

    op.create_table(
        "assembly_parts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("assembly_id", sa.Integer(), nullable=False),
        sa.Column("part_item_id", sa.Integer(), nullable=False),
        sa.Column("quantity_used", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["assembly_id"], ["assemblies.id"]),
        sa.ForeignKeyConstraint(["part_item_id"], ["items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_assembly_parts_assembly_id", "assembly_parts", ["assembly_id"], unique=False)

    # ============================================================================
    # POS collaborators
    # ============================================================================
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("debt_balance_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("cash_register_session_id", sa.Integer(), nullable=False),
        sa.Column("bank_account_id", sa.Integer(), nullable=True),
        sa.Column("parent_sale_id", sa.Integer(), nullable=True),
        sa.Column("payment_method", sa.String(length=16), nullable=False),
        sa.Column("total_cents", sa.BigInteger(), nullable=False),
        sa.Column("amount_paid_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("change_given_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("refund_source", sa.String(length=16), nullable=True),
        sa.Column("refund_bank_account_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["cash_register_session_id"], ["register_sessions.id"]),
        sa.ForeignKeyConstraint(["bank_account_id"], ["bank_accounts.id"]),
        sa.ForeignKeyConstraint(["parent_sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["refund_bank_account_id"], ["bank_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_customer_id", "sales", ["customer_id"], unique=False)
    op.create_index("ix_sales_user_id", "sales", ["user_id"], unique=False)
    op.create_index("ix_sales_cash_register_session_id", "sales", ["cash_register_session_id"], unique=False)
    op.create_index("ix_sales_parent_sale_id", "sales", ["parent_sale_id"], unique=False)

    op.create_table(
        "sale_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price_cents", sa.BigInteger(), nullable=False),
        sa.Column("subtotal_cents", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sale_items_sale_id", "sale_items", ["sale_id"], unique=False)
    op.create_index("ix_sale_items_item_id", "sale_items", ["item_id"], unique=False)

    op.create_table(
        "income_expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("category", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("bank_account_id", sa.Integer(), nullable=True),
        sa.Column("cash_register_session_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("is_system_generated", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.ForeignKeyConstraint(["bank_account_id"], ["bank_accounts.id"]),
        sa.ForeignKeyConstraint(["cash_register_session_id"], ["register_sessions.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_income_expenses_cash_register_session_id", "income_expenses", ["cash_register_session_id"], unique=False
    )


def downgrade():
    for table in (
        "income_expenses",
        "sale_items",
        "sales",
        "customers",
        "assembly_parts",
        "assemblies",
        "stock_adjustments",
        "item_logs",
        "items",
        "register_session_audits",
        "register_session_access_requests",
        "money_transactions",
        "register_sessions",
        "bank_accounts",
        "user_permissions",
        "users",
    ):
        op.drop_table(table)
