"""
consultation booking, escrow and provider availability tables

Revision ID: 0001_consultation_core
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_consultation_core"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_PREDICATE = sa.text("status != 'CANCELLED'")


def upgrade() -> None:
    op.create_table(
        "provider_profiles",
        sa.Column("provider_id", sa.String(length=36), primary_key=True),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("hourly_rate_cents", sa.Integer(), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allows_first_consult_discount", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("available_24_7", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "client_profiles",
        sa.Column("client_id", sa.String(length=36), primary_key=True),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("phone_number", sa.String(length=20), nullable=True),
        sa.Column("phone_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_used_first_consult_discount", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "provider_working_hours",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "provider_id",
            sa.String(length=36),
            sa.ForeignKey("provider_profiles.provider_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("provider_id", "day_of_week", name="uq_provider_working_hours_day"),
    )
    op.create_table(
        "provider_blocked_slots",
        sa.Column("blocked_slot_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "provider_id",
            sa.String(length=36),
            sa.ForeignKey("provider_profiles.provider_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_provider_blocked_slots_window", "provider_blocked_slots", ["provider_id", "starts_at", "ends_at"]
    )

    op.create_table(
        "consultation_bookings",
        sa.Column("booking_id", sa.String(length=36), primary_key=True),
        sa.Column("client_id", sa.String(length=36), sa.ForeignKey("client_profiles.client_id"), nullable=False),
        sa.Column("provider_id", sa.String(length=36), sa.ForeignKey("provider_profiles.provider_id"), nullable=False),
        sa.Column("consultation_type", sa.String(length=16), nullable=False),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("original_amount_cents", sa.Integer(), nullable=False),
        sa.Column("client_payment_cents", sa.Integer(), nullable=False),
        sa.Column("first_consult_discount", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("platform_commission_bps", sa.Integer(), nullable=False),
        sa.Column("platform_commission_cents", sa.Integer(), nullable=False),
        sa.Column("provider_payout_cents", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("client_payment_status", sa.String(length=16), nullable=False),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column("receipt_number", sa.String(length=64), nullable=True),
        sa.Column("client_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("client_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("client_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("provider_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_by_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payout_status", sa.String(length=16), nullable=False),
        sa.Column("cancelled_by", sa.String(length=16), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=500), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_consultation_bookings_client_id", "consultation_bookings", ["client_id"])
    op.create_index("ix_consultation_bookings_provider_id", "consultation_bookings", ["provider_id"])
    op.create_index("ix_consultation_bookings_status", "consultation_bookings", ["status"])
    op.create_index(
        "ix_consultation_bookings_provider_window",
        "consultation_bookings",
        ["provider_id", "scheduled_start", "scheduled_end"],
    )
    op.create_index(
        "uq_consultation_bookings_provider_start_active",
        "consultation_bookings",
        ["provider_id", "scheduled_start"],
        unique=True,
        sqlite_where=ACTIVE_PREDICATE,
        postgresql_where=ACTIVE_PREDICATE,
    )
    if op.get_bind().dialect.name == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            "ALTER TABLE consultation_bookings ADD CONSTRAINT ex_consultation_bookings_no_overlap "
            "EXCLUDE USING gist (provider_id WITH =, tstzrange(scheduled_start, scheduled_end, '[)') WITH &&) "
            "WHERE (status != 'CANCELLED')"
        )

    op.create_table(
        "escrow_holds",
        sa.Column("hold_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "booking_id",
            sa.String(length=36),
            sa.ForeignKey("consultation_bookings.booking_id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("client_id", sa.String(length=36), nullable=False),
        sa.Column("provider_id", sa.String(length=36), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("commission_cents", sa.Integer(), nullable=False),
        sa.Column("payout_cents", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settlement_reason", sa.String(length=500), nullable=True),
        sa.Column("cancelled_by", sa.String(length=16), nullable=True),
        sa.Column("refunded_amount_cents", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_escrow_holds_provider_id", "escrow_holds", ["provider_id"])
    op.create_index("ix_escrow_holds_status", "escrow_holds", ["status"])

    op.create_table(
        "provider_wallets",
        sa.Column("wallet_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "provider_id",
            sa.String(length=36),
            sa.ForeignKey("provider_profiles.provider_id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("pending_balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="KES"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "provider_wallet_transactions",
        sa.Column("transaction_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "wallet_id",
            sa.String(length=36),
            sa.ForeignKey("provider_wallets.wallet_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_provider_wallet_transactions_wallet_id", "provider_wallet_transactions", ["wallet_id"])
    op.create_index("ix_provider_wallet_transactions_booking_id", "provider_wallet_transactions", ["booking_id"])


def downgrade() -> None:
    op.drop_table("provider_wallet_transactions")
    op.drop_table("provider_wallets")
    op.drop_table("escrow_holds")
    op.drop_table("consultation_bookings")
    op.drop_table("provider_blocked_slots")
    op.drop_table("provider_working_hours")
    op.drop_table("client_profiles")
    op.drop_table("provider_profiles")
