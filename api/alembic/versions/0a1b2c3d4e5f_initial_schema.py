"""initial_schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""

from typing import Union

import sqlalchemy as sa
from alembic import op

revision: str = "0a1b2c3d4e5f"
down_revision: Union[str, None] = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── users ───────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("notification_days", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("plan", sa.String(20), nullable=False, server_default="free"),
        sa.Column("financial_account_id", sa.String(255), nullable=True),
        sa.Column("financial_access_token", sa.Text(), nullable=True),
        sa.Column("financial_sync_month", sa.String(7), nullable=True),
        sa.Column("financial_sync_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("financial_last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("calendar_token", sa.String(64), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ── subscriptions ───────────────────────────────────────────────────────
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("billing_cycle", sa.String(20), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("next_payment_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="Other"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("last_notified_for", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_next_payment_date", "subscriptions", ["next_payment_date"])

    # ── financial_transactions ──────────────────────────────────────────────
    op.create_table(
        "financial_transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("account_id", sa.String(255), nullable=False),
        sa.Column("transaction_id", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("transacted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "linked_subscription_id",
            sa.Uuid(),
            sa.ForeignKey("subscriptions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_financial_transactions_user_id", "financial_transactions", ["user_id"])
    op.create_index(
        "ix_financial_transactions_transaction_id", "financial_transactions", ["transaction_id"], unique=True
    )
    op.create_index("ix_financial_transactions_transacted_at", "financial_transactions", ["transacted_at"])
    op.create_index(
        "ix_financial_transactions_linked_subscription_id", "financial_transactions", ["linked_subscription_id"]
    )


def downgrade() -> None:
    op.drop_table("financial_transactions")
    op.drop_table("subscriptions")
    op.drop_table("users")
