"""users entitlement, bookings ledger, stripe events, audit events

Revision ID: 20261018_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column(
            "is_subscribed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("subscription_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "retainer_active", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("retainer_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retainer_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "retainer_sessions_used", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "retainer_sessions_this_week",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("retainer_last_session_week", sa.String(length=8), nullable=True),
        sa.Column(
            "retainer_version", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "retainer_sessions_used >= 0", name="ck_users_sessions_used_nonneg"
        ),
        sa.CheckConstraint(
            "retainer_sessions_this_week >= 0",
            name="ck_users_sessions_this_week_nonneg",
        ),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_stripe_customer_id", "users", ["stripe_customer_id"])

    booking_status = sa.Enum(
        "confirmed", "completed", "refunded", "cancelled", name="booking_status"
    )
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.String(length=64), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column(
            "consultation_type",
            sa.String(length=16),
            nullable=False,
            server_default="video",
        ),
        sa.Column("intake_text", sa.Text(), nullable=True),
        sa.Column(
            "is_retainer_session",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("price_paid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "currency", sa.String(length=3), nullable=False, server_default="usd"
        ),
        sa.Column("stripe_payment_id", sa.String(length=255), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column(
            "status", booking_status, nullable=False, server_default="confirmed"
        ),
        sa.Column("actual_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("refund_amount", sa.Integer(), nullable=True),
        sa.Column("stripe_refund_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("stripe_payment_id", name="uq_bookings_stripe_payment_id"),
        sa.UniqueConstraint(
            "user_id", "request_id", name="uq_bookings_user_request"
        ),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])

    op.create_table(
        "stripe_events",
        sa.Column("id", sa.String(length=255), primary_key=True),
        sa.Column("type", sa.String(length=128), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("events")
    op.drop_table("stripe_events")
    op.drop_index("ix_bookings_user_id", table_name="bookings")
    op.drop_table("bookings")
    sa.Enum(name="booking_status").drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_users_stripe_customer_id", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
