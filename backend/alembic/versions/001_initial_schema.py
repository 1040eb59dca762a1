"""Initial schema: users, events, ticket types, bookings, payments and tickets.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("venue", sa.String(255), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_starts_at", "events", ["starts_at"])

    op.create_table(
        "ticket_types",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("event_id", "name", name="uq_ticket_type_event_name"),
        sa.CheckConstraint("price >= 0", name="check_ticket_type_price_non_negative"),
        sa.CheckConstraint("quantity > 0", name="check_ticket_type_quantity_positive"),
    )
    op.create_index("ix_ticket_types_id", "ticket_types", ["id"])
    op.create_index("ix_ticket_types_event_id", "ticket_types", ["event_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("reference", sa.String(40), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("seat_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        *_timestamps(),
        sa.UniqueConstraint("reference", name="uq_bookings_reference"),
        sa.CheckConstraint("seat_count > 0", name="check_booking_seat_count_positive"),
        sa.CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
        sa.CheckConstraint("status IN ('pending', 'confirmed', 'cancelled')", name="check_booking_status"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_event_id", "bookings", ["event_id"])

    op.create_table(
        "booking_line_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("ticket_type_id", sa.Integer(), sa.ForeignKey("ticket_types.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.UniqueConstraint("booking_id", "ticket_type_id", name="uq_line_item_booking_ticket_type"),
        sa.CheckConstraint("quantity > 0", name="check_line_item_quantity_positive"),
    )
    op.create_index("ix_booking_line_items_id", "booking_line_items", ["id"])
    op.create_index("ix_booking_line_items_booking_id", "booking_line_items", ["booking_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", sa.String(20), nullable=False, server_default=sa.text("'mpesa'")),
        sa.Column("checkout_request_id", sa.String(100), nullable=False),
        sa.Column("merchant_request_id", sa.String(100), nullable=True),
        sa.Column("initiated_phone", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("mpesa_receipt", sa.String(50), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("result_code", sa.Integer(), nullable=True),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        sa.Column("tickets_generated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
        sa.CheckConstraint("status IN ('pending', 'success', 'failed')", name="check_payment_status"),
        sa.CheckConstraint(
            "(status = 'success' AND paid_at IS NOT NULL) OR (status <> 'success' AND paid_at IS NULL)",
            name="check_payment_paid_at_only_on_success",
        ),
        sa.CheckConstraint(
            "status = 'failed' OR failure_reason IS NULL",
            name="check_payment_failure_reason_only_on_failed",
        ),
        sa.CheckConstraint(
            "status = 'success' OR NOT tickets_generated",
            name="check_payment_tickets_only_on_success",
        ),
    )
    op.create_index("ix_payments_id", "payments", ["id"])
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    # Every provider callback is matched on this column
    op.create_index("ix_payments_checkout_request_id", "payments", ["checkout_request_id"], unique=True)
    # One payment prompt in flight or settled per booking
    op.create_index(
        "uq_payments_open_per_booking",
        "payments",
        ["booking_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'success')"),
        sqlite_where=sa.text("status IN ('pending', 'success')"),
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("ticket_type_id", sa.Integer(), sa.ForeignKey("ticket_types.id"), nullable=False),
        sa.Column("qr_code", sa.String(64), nullable=False),
        sa.Column("manual_code", sa.String(14), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'valid'")),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('valid', 'used')", name="check_ticket_status"),
        sa.CheckConstraint(
            "(status = 'used' AND used_at IS NOT NULL) OR (status = 'valid' AND used_at IS NULL)",
            name="check_ticket_used_at_only_when_used",
        ),
    )
    op.create_index("ix_tickets_id", "tickets", ["id"])
    op.create_index("ix_tickets_booking_id", "tickets", ["booking_id"])
    # Door scans look tickets up by either code; both must be globally unique
    op.create_index("ix_tickets_qr_code", "tickets", ["qr_code"], unique=True)
    op.create_index("ix_tickets_manual_code", "tickets", ["manual_code"], unique=True)


def downgrade() -> None:
    op.drop_table("tickets")
    op.drop_table("payments")
    op.drop_table("booking_line_items")
    op.drop_table("bookings")
    op.drop_table("ticket_types")
    op.drop_table("events")
    op.drop_table("users")
