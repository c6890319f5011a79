"""Initial database schema.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

Creates the payout core tables:
- Mentors (payout account, trust ledger)
- Bookings (pricing, confirmation, fraud, payout state)
- Payout audit logs
"""

from typing import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create all database tables."""

    # ==================== MENTORS ====================
    op.create_table(
        "mentors",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("display_name", sa.String(200)),
        sa.Column("stripe_connect_id", sa.String(100), unique=True),
        sa.Column("stripe_onboarded", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("verified_bookings_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_trusted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("trusted_at", sa.DateTime(timezone=True)),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("deactivated_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("verified_bookings_count >= 0", name="ck_mentors_verified_count_nonneg"),
    )

    # ==================== BOOKINGS ====================
    op.create_table(
        "bookings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "mentor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("mentors.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), index=True),
        # Pricing (in cents)
        sa.Column("total_price", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), server_default="usd"),
        sa.Column("platform_fee", sa.Integer),
        sa.Column("mentor_payout", sa.Integer),
        # Payment
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("stripe_payment_intent_id", sa.String(100)),
        # Confirmation
        sa.Column("student_confirmed_at", sa.DateTime(timezone=True)),
        sa.Column("auto_confirm_at", sa.DateTime(timezone=True)),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("verified_at", sa.DateTime(timezone=True)),
        # Fraud
        sa.Column("is_fraud_reported", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("fraud_reported_at", sa.DateTime(timezone=True)),
        sa.Column("fraud_notes", sa.Text),
        # Payout
        sa.Column("payout_status", sa.String(20), nullable=False, server_default="NONE"),
        sa.Column("payout_released_at", sa.DateTime(timezone=True)),
        sa.Column("payout_id", sa.String(100)),
        sa.Column("payout_claim_token", sa.String(64)),
        sa.Column("payout_claimed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("total_price > 0", name="ck_bookings_total_price_positive"),
        sa.CheckConstraint(
            "platform_fee IS NULL OR mentor_payout IS NULL "
            "OR platform_fee + mentor_payout = total_price",
            name="ck_bookings_fee_split",
        ),
        sa.CheckConstraint(
            "payout_status IN ('NONE', 'HELD', 'PAID_OUT', 'REFUNDED')",
            name="ck_bookings_payout_status",
        ),
    )
    op.create_index(
        "ix_bookings_payout_sweep", "bookings", ["payout_status", "payout_released_at"]
    )

    # ==================== AUDIT ====================
    op.create_table(
        "payout_audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id"), index=True),
        sa.Column("mentor_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("mentors.id"), index=True),
        sa.Column("action", sa.String(50), nullable=False, index=True),
        sa.Column("actor", sa.String(50), server_default="system"),
        sa.Column("old_values", postgresql.JSONB),
        sa.Column("new_values", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("payout_audit_logs")
    op.drop_index("ix_bookings_payout_sweep", table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("mentors")
