"""Wallet ledger, clearances, deductions, payouts and commission history

Revision ID: 20261016_wallet_ledger_schema
Revises:
Create Date: 2026-10-16 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261016_wallet_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=nullable)


def upgrade():
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=64), nullable=True),
        sa.Column("withdrawable_hold_hours", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)
    op.create_index("ix_tenants_is_active", "tenants", ["is_active"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("cook_id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=True),
        sa.Column("order_number", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending_payment"),
        sa.Column("subtotal", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delivery_fee", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("commission_amount", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "order_number", name="uq_orders_tenant_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_orders_tenant_id", "orders", ["tenant_id"], unique=False)
    op.create_index("ix_orders_cook_id", "orders", ["cook_id"], unique=False)
    op.create_index("ix_orders_client_id", "orders", ["client_id"], unique=False)
    op.create_index("ix_orders_status", "orders", ["status"], unique=False)
    op.create_index("ix_orders_tenant_status", "orders", ["tenant_id", "status"], unique=False)

    op.create_table(
        "cook_wallets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("cook_id", sa.Integer(), nullable=False),
        sa.Column("total_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("withdrawable_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unwithdrawable_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="XAF"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "cook_id", name="uq_cook_wallets_tenant_cook"),
        sa.CheckConstraint("withdrawable_balance >= 0", name="ck_cook_wallets_withdrawable_nonneg"),
        sa.CheckConstraint("unwithdrawable_balance >= 0", name="ck_cook_wallets_unwithdrawable_nonneg"),
        sa.CheckConstraint("total_balance = withdrawable_balance + unwithdrawable_balance", name="ck_cook_wallets_total"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cook_wallets_tenant_id", "cook_wallets", ["tenant_id"], unique=False)
    op.create_index("ix_cook_wallets_cook_id", "cook_wallets", ["cook_id"], unique=False)

    op.create_table(
        "client_wallets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("total_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("withdrawable_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unwithdrawable_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="XAF"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", name="uq_client_wallets_client"),
        sa.CheckConstraint("withdrawable_balance >= 0", name="ck_client_wallets_withdrawable_nonneg"),
        sa.CheckConstraint("unwithdrawable_balance >= 0", name="ck_client_wallets_unwithdrawable_nonneg"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_client_wallets_client_id", "client_wallets", ["client_id"], unique=False)

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cook_wallet_id", sa.Integer(), nullable=True),
        sa.Column("client_wallet_id", sa.Integer(), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("gross_amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="XAF"),
        sa.Column("balance_before", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("withdrawable_after", sa.Integer(), nullable=False),
        sa.Column("is_withdrawable", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("withdrawable_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["cook_wallet_id"], ["cook_wallets.id"]),
        sa.ForeignKeyConstraint(["client_wallet_id"], ["client_wallets.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("(cook_wallet_id IS NULL) <> (client_wallet_id IS NULL)", name="ck_wallet_txns_single_owner"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_wallet_transactions_cook_wallet_id", "wallet_transactions", ["cook_wallet_id"], unique=False)
    op.create_index("ix_wallet_transactions_client_wallet_id", "wallet_transactions", ["client_wallet_id"], unique=False)
    op.create_index("ix_wallet_transactions_order_id", "wallet_transactions", ["order_id"], unique=False)
    op.create_index("ix_wallet_transactions_type", "wallet_transactions", ["type"], unique=False)
    op.create_index("ix_wallet_transactions_created_at", "wallet_transactions", ["created_at"], unique=False)
    op.create_index("ix_wallet_txns_cook_wallet_created", "wallet_transactions", ["cook_wallet_id", "created_at"], unique=False)
    op.create_index("ix_wallet_txns_client_wallet_created", "wallet_transactions", ["client_wallet_id", "created_at"], unique=False)

    op.create_table(
        "order_clearances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("cook_id", sa.Integer(), nullable=False),
        sa.Column("cook_wallet_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("hold_hours", sa.Integer(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("withdrawable_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("remaining_seconds_at_pause", sa.Integer(), nullable=True),
        sa.Column("cleared_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deducted_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_cleared", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_paused", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["cook_wallet_id"], ["cook_wallets.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", name="uq_order_clearances_order"),
        sa.CheckConstraint(
            "(CASE WHEN is_cleared THEN 1 ELSE 0 END)"
            " + (CASE WHEN is_paused THEN 1 ELSE 0 END)"
            " + (CASE WHEN is_cancelled THEN 1 ELSE 0 END) <= 1",
            name="ck_order_clearances_exclusive_flags",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_order_clearances_tenant_id", "order_clearances", ["tenant_id"], unique=False)
    op.create_index("ix_order_clearances_cook_id", "order_clearances", ["cook_id"], unique=False)
    op.create_index("ix_order_clearances_cook_wallet_id", "order_clearances", ["cook_wallet_id"], unique=False)
    op.create_index(
        "ix_order_clearances_sweep",
        "order_clearances",
        ["is_cleared", "is_paused", "is_cancelled", "withdrawable_at"],
        unique=False,
    )

    op.create_table(
        "pending_deductions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cook_wallet_id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("cook_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("original_amount", sa.Integer(), nullable=False),
        sa.Column("remaining_amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["cook_wallet_id"], ["cook_wallets.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("remaining_amount >= 0", name="ck_pending_deductions_remaining_nonneg"),
        sa.CheckConstraint("remaining_amount <= original_amount", name="ck_pending_deductions_remaining_le_original"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_pending_deductions_cook_wallet_id", "pending_deductions", ["cook_wallet_id"], unique=False)
    op.create_index("ix_pending_deductions_tenant_id", "pending_deductions", ["tenant_id"], unique=False)
    op.create_index("ix_pending_deductions_cook_id", "pending_deductions", ["cook_id"], unique=False)
    op.create_index("ix_pending_deductions_order_id", "pending_deductions", ["order_id"], unique=False)
    op.create_index("ix_pending_deductions_source", "pending_deductions", ["source"], unique=False)
    op.create_index("ix_pending_deductions_settled_at", "pending_deductions", ["settled_at"], unique=False)
    op.create_index(
        "ix_pending_deductions_wallet_open",
        "pending_deductions",
        ["cook_wallet_id", "settled_at", "created_at"],
        unique=False,
    )

    op.create_table(
        "deduction_settlements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("deduction_id", sa.Integer(), nullable=False),
        sa.Column("wallet_transaction_id", sa.Integer(), nullable=True),
        sa.Column("source_order_id", sa.Integer(), nullable=True),
        sa.Column("amount_applied", sa.Integer(), nullable=False),
        sa.Column("remaining_after", sa.Integer(), nullable=False),
        _timestamp("settled_at"),
        sa.ForeignKeyConstraint(["deduction_id"], ["pending_deductions.id"]),
        sa.ForeignKeyConstraint(["wallet_transaction_id"], ["wallet_transactions.id"]),
        sa.ForeignKeyConstraint(["source_order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_deduction_settlements_deduction_id", "deduction_settlements", ["deduction_id"], unique=False)
    op.create_index("ix_deduction_settlements_source_order_id", "deduction_settlements", ["source_order_id"], unique=False)

    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cook_wallet_id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("cook_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="XAF"),
        sa.Column("mobile_money_number", sa.String(length=32), nullable=False),
        sa.Column("mobile_money_provider", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("idempotency_key", sa.String(length=64), nullable=True),
        sa.Column("provider_reference", sa.String(length=128), nullable=True),
        sa.Column("provider_response", sa.JSON(), nullable=True),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        _timestamp("requested_at"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["cook_wallet_id"], ["cook_wallets.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_withdrawal_requests_cook_wallet_id", "withdrawal_requests", ["cook_wallet_id"], unique=False)
    op.create_index("ix_withdrawal_requests_tenant_id", "withdrawal_requests", ["tenant_id"], unique=False)
    op.create_index("ix_withdrawal_requests_cook_id", "withdrawal_requests", ["cook_id"], unique=False)
    op.create_index("ix_withdrawal_requests_status", "withdrawal_requests", ["status"], unique=False)
    op.create_index(
        "ix_withdrawals_cook_requested",
        "withdrawal_requests",
        ["tenant_id", "cook_id", "requested_at"],
        unique=False,
    )

    op.create_table(
        "payout_tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("withdrawal_request_id", sa.Integer(), nullable=True),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("cook_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="XAF"),
        sa.Column("mobile_money_number", sa.String(length=32), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempt_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.Column("idempotency_key", sa.String(length=64), nullable=False),
        sa.Column("provider_reference", sa.String(length=128), nullable=True),
        sa.Column("provider_response", sa.JSON(), nullable=True),
        sa.Column("reference_number", sa.String(length=128), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("completed_by", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["withdrawal_request_id"], ["withdrawal_requests.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("withdrawal_request_id", name="uq_payout_tasks_withdrawal"),
        sa.CheckConstraint("retry_count >= 0 AND retry_count <= 3", name="ck_payout_tasks_retry_bound"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payout_tasks_tenant_id", "payout_tasks", ["tenant_id"], unique=False)
    op.create_index("ix_payout_tasks_cook_id", "payout_tasks", ["cook_id"], unique=False)
    op.create_index("ix_payout_tasks_status", "payout_tasks", ["status"], unique=False)
    op.create_index("ix_payout_tasks_idempotency_key", "payout_tasks", ["idempotency_key"], unique=False)
    op.create_index("ix_payout_tasks_status_requested", "payout_tasks", ["status", "requested_at"], unique=False)

    op.create_table(
        "commission_changes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("old_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("new_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("changed_by", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("new_rate >= 0 AND new_rate <= 50", name="ck_commission_changes_rate_range"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_commission_changes_tenant_id", "commission_changes", ["tenant_id"], unique=False)
    op.create_index("ix_commission_changes_tenant_created", "commission_changes", ["tenant_id", "created_at"], unique=False)

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("tenant_id", sa.Integer(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        _timestamp("occurred_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"], unique=False)
    op.create_index("ix_audit_events_actor_id", "audit_events", ["actor_id"], unique=False)
    op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"], unique=False)
    op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"], unique=False)
    op.create_index("ix_audit_events_occurred", "audit_events", ["occurred_at"], unique=False)


def downgrade():
    for table in (
        "audit_events",
        "commission_changes",
        "payout_tasks",
        "withdrawal_requests",
        "deduction_settlements",
        "pending_deductions",
        "order_clearances",
        "wallet_transactions",
        "client_wallets",
        "cook_wallets",
        "orders",
        "tenants",
    ):
        op.drop_table(table)
