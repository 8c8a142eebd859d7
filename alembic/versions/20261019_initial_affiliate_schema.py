"""Create affiliate ledger tables

Revision ID: 001_affiliate_ledger
Revises:
Create Date: 2026-10-19

Adds tables for:
- affiliates: Partner profiles, codes, levels and running totals
- clicks: Tracked referral link visits
- conversions: Click-to-user bindings (one per user, one per click)
- withdrawal_requests: Payout requests
- commissions: Commission ledger, allocated to withdrawals on settlement
- scheduled_events: Durable qualifying events fired at a deadline
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_affiliate_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create affiliate ledger tables."""

    # Affiliates table
    op.create_table(
        "affiliates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("code", sa.String(40), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("level", sa.String(20), nullable=False),
        sa.Column("custom_commission_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("total_earnings", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_paid", sa.Numeric(12, 2), nullable=False),
        sa.Column("allocation_version", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("promotion_strategy", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_affiliates_user_id", "affiliates", ["user_id"], unique=True)
    op.create_index("ix_affiliates_code", "affiliates", ["code"], unique=True)

    # Clicks table (audit trail, never deleted)
    op.create_table(
        "clicks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("converted", sa.Boolean(), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("referrer", sa.String(1024), nullable=True),
        sa.Column("utm_source", sa.String(255), nullable=True),
        sa.Column("utm_medium", sa.String(255), nullable=True),
        sa.Column("utm_campaign", sa.String(255), nullable=True),
        sa.Column("utm_content", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_clicks_affiliate_id", "clicks", ["affiliate_id"], unique=False)
    op.create_index("ix_clicks_affiliate_unbound", "clicks", ["affiliate_id", "user_id", "created_at"], unique=False)

    # Conversions table
    op.create_table(
        "conversions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("click_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("reference_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"]),
        sa.ForeignKeyConstraint(["click_id"], ["clicks.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
        sa.UniqueConstraint("click_id"),
    )
    op.create_index("ix_conversions_affiliate_id", "conversions", ["affiliate_id"], unique=False)

    # Withdrawal requests table
    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("payment_details", sa.JSON(), nullable=True),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_withdrawal_requests_affiliate_id", "withdrawal_requests", ["affiliate_id"], unique=False)
    op.create_index("ix_withdrawal_requests_status", "withdrawal_requests", ["status"], unique=False)

    # Commissions table
    op.create_table(
        "commissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("reference_id", sa.String(128), nullable=True),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("paid_in_withdrawal_id", sa.Integer(), nullable=True),
        sa.Column("split_from_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"]),
        sa.ForeignKeyConstraint(["paid_in_withdrawal_id"], ["withdrawal_requests.id"]),
        sa.ForeignKeyConstraint(["split_from_id"], ["commissions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("type", "reference_id", name="uq_commissions_type_reference"),
    )
    op.create_index("ix_commissions_affiliate_id", "commissions", ["affiliate_id"], unique=False)
    op.create_index("ix_commissions_user_id", "commissions", ["user_id"], unique=False)
    op.create_index("ix_commissions_status", "commissions", ["status"], unique=False)
    op.create_index("ix_commissions_paid_in_withdrawal_id", "commissions", ["paid_in_withdrawal_id"], unique=False)

    # Scheduled qualifying events table
    op.create_table(
        "scheduled_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("reference_id", sa.String(128), nullable=False),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("due_at", sa.DateTime(), nullable=False),
        sa.Column("fired_at", sa.DateTime(), nullable=True),
        sa.Column("outcome", sa.String(40), nullable=True),
        sa.Column("commission_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["commission_id"], ["commissions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_type", "reference_id", name="uq_scheduled_events_type_reference"),
    )
    op.create_index("ix_scheduled_events_user_id", "scheduled_events", ["user_id"], unique=False)
    op.create_index("ix_scheduled_events_due_at", "scheduled_events", ["due_at"], unique=False)


def downgrade() -> None:
    """Drop affiliate ledger tables."""
    op.drop_table("scheduled_events")
    op.drop_table("commissions")
    op.drop_table("withdrawal_requests")
    op.drop_table("conversions")
    op.drop_table("clicks")
    op.drop_table("affiliates")
