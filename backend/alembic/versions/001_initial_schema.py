"""Initial schema: events, ticket categories, orders, order items, tickets.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Events table
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(2000), nullable=True),
        sa.Column("venue", sa.String(255), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'published'")),
        *_timestamps(),
        sa.CheckConstraint("ends_at >= starts_at", name="check_event_window"),
        sa.CheckConstraint(
            "status IN ('draft', 'published', 'cancelled', 'completed')",
            name="check_event_status",
        ),
    )
    op.create_index("ix_events_id", "events", ["id"])
    # Upcoming-event listings filter and sort on starts_at
    op.create_index("ix_events_starts_at", "events", ["starts_at"])

    # Ticket categories: capacity plus the optimistic-lock version
    op.create_table(
        "ticket_categories",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'idr'")),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("max_per_order", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("capacity >= 0", name="check_category_capacity_non_negative"),
        sa.CheckConstraint("price_cents >= 0", name="check_category_price_non_negative"),
        sa.CheckConstraint("max_per_order > 0", name="check_category_max_per_order_positive"),
    )
    op.create_index("ix_ticket_categories_id", "ticket_categories", ["id"])
    op.create_index("ix_ticket_categories_event_id", "ticket_categories", ["event_id"])

    # Orders table
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'created'")),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("fees_cents", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_reference", sa.String(255), nullable=True),
        sa.Column("refunded_cents", sa.Integer(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("billing_address", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("payment_reference", name="uq_orders_payment_reference"),
        sa.CheckConstraint("subtotal_cents >= 0", name="check_order_subtotal_non_negative"),
        sa.CheckConstraint("fees_cents >= 0", name="check_order_fees_non_negative"),
        sa.CheckConstraint("total_cents = subtotal_cents + fees_cents", name="check_order_total"),
        sa.CheckConstraint(
            "status IN ('created', 'pending_payment', 'paid', 'cancelled', 'expired', 'refunded')",
            name="check_order_status",
        ),
    )
    op.create_index("ix_orders_id", "orders", ["id"])
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_event_id", "orders", ["event_id"])
    # Serves both the held-inventory sum (status IN holding AND expires_at > now)
    # and the expiry sweep (status IN holding AND expires_at <= now)
    op.create_index("ix_orders_status_expires_at", "orders", ["status", "expires_at"])

    # Order items: quantity and price snapshot per category
    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("ticket_categories.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="check_order_item_quantity_positive"),
        sa.CheckConstraint("unit_price_cents >= 0", name="check_order_item_price_non_negative"),
    )
    op.create_index("ix_order_items_id", "order_items", ["id"])
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_category_id", "order_items", ["category_id"])

    # Tickets table
    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("ticket_categories.id"), nullable=False),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("ticket_number", sa.String(64), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("qr_payload", sa.Text(), nullable=False),
        sa.Column("status", sa.String(10), nullable=False, server_default=sa.text("'active'")),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_gate_id", sa.String(64), nullable=True),
        sa.UniqueConstraint("ticket_number", name="uq_tickets_ticket_number"),
        sa.UniqueConstraint("code", name="uq_tickets_code"),
        sa.CheckConstraint("status IN ('issued', 'active', 'used', 'void')", name="check_ticket_status"),
    )
    op.create_index("ix_tickets_id", "tickets", ["id"])
    op.create_index("ix_tickets_order_id", "tickets", ["order_id"])
    op.create_index("ix_tickets_event_id", "tickets", ["event_id"])
    op.create_index("ix_tickets_user_id", "tickets", ["user_id"])
    op.create_index("ix_tickets_event_status", "tickets", ["event_id", "status"])


def downgrade() -> None:
    op.drop_table("tickets")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("ticket_categories")
    op.drop_table("events")
