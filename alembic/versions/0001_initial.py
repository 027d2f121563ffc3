"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

_blocking = sa.text("status IN ('Pending', 'Confirmed', 'Realized')")
_active_payment = sa.text("status IN ('pending', 'processed')")


def upgrade() -> None:
    op.create_table(
        "courts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("court_type", sa.String(length=60), nullable=False, server_default=""),
        sa.Column("location", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("hourly_price", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False, server_default="Active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_courts_state", "courts", ["state"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_code", sa.String(length=6), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("court_id", sa.Integer(), nullable=False),
        sa.Column("date_str", sa.String(length=10), nullable=False),
        sa.Column("start", sa.String(length=5), nullable=False),
        sa.Column("end", sa.String(length=5), nullable=False),
        sa.Column("status", sa.String(length=12), nullable=False, server_default="Pending"),
        sa.Column("created_by_role", sa.String(length=12), nullable=False, server_default="CLIENT"),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("qr_object_key", sa.String(length=512), nullable=True),
        sa.Column("qr_storage", sa.String(length=16), nullable=False, server_default="local"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_bookings_booking_code", "bookings", ["booking_code"], unique=True)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_court_id", "bookings", ["court_id"])
    op.create_index("ix_bookings_date_str", "bookings", ["date_str"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ux_bookings_blocking_slot", "bookings", ["court_id", "date_str", "start"], unique=True,
                    postgresql_where=_blocking, sqlite_where=_blocking)

    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("method", sa.String(length=20), nullable=False, server_default="online"),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("provider_ref", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index("ux_payments_active_booking", "payments", ["booking_id"], unique=True,
                    postgresql_where=_active_payment, sqlite_where=_active_payment)

    op.create_table(
        "void_records",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=False),
        sa.Column("refund_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("refund_amount", sa.Integer(), nullable=True),
        sa.Column("refund_status", sa.String(length=20), nullable=False, server_default="not_required"),
        sa.Column("refund_ref", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("voided_by", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_void_records_booking_id", "void_records", ["booking_id"], unique=True)

    op.create_table(
        "revenue_entries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("count_delta", sa.Integer(), nullable=False),
        sa.Column("amount_delta", sa.Integer(), nullable=False),
        sa.Column("period", sa.String(length=7), nullable=False),
        sa.Column("idempotency_key", sa.String(length=60), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_revenue_entries_idempotency_key"),
    )
    op.create_index("ix_revenue_entries_booking_id", "revenue_entries", ["booking_id"])
    op.create_index("ix_revenue_entries_period", "revenue_entries", ["period"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("message", sa.String(length=500), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor_user_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_table("revenue_entries")
    op.drop_table("void_records")
    op.drop_index("ux_payments_active_booking", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ux_bookings_blocking_slot", table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("courts")
