"""
Order and order item models.

Key design decisions:
- Money is integer minor units; `total_cents = subtotal_cents + fees_cents`
  is enforced by a CHECK constraint and totals are only written at creation
- `payment_reference` is unique and names the current intent; every intent
  ever opened for the order is kept in `payment_attempts` so provider events
  for a superseded intent still map to exactly one order
- OrderItem keeps its own unit price snapshot; later category price changes
  never touch existing orders
- Composite index on (status, expires_at) serves both the held-inventory
  query and the expiry sweep
"""

import enum

from sqlalchemy import JSON, CheckConstraint, Column, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from boxoffice.db.base import Base, TimestampMixin, UTCDateTime


class OrderStatus(str, enum.Enum):
    CREATED = "created"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.CREATED.value)

    subtotal_cents = Column(Integer, nullable=False)
    fees_cents = Column(Integer, nullable=False)
    total_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)

    expires_at = Column(UTCDateTime(), nullable=True)
    payment_reference = Column(String(255), nullable=True, unique=True)
    payment_method = Column(String(50), nullable=True)
    paid_at = Column(UTCDateTime(), nullable=True)
    refund_reference = Column(String(255), nullable=True)
    refunded_cents = Column(Integer, nullable=True)
    refunded_at = Column(UTCDateTime(), nullable=True)
    reminder_sent_at = Column(UTCDateTime(), nullable=True)

    # Customer contact snapshot at checkout time
    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    billing_address = Column(JSON, nullable=True)

    event = relationship("Event", lazy="selectin")
    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.id",
    )
    tickets = relationship(
        "Ticket",
        back_populates="order",
        lazy="selectin",
        order_by="Ticket.id",
    )

    __table_args__ = (
        CheckConstraint("subtotal_cents >= 0", name="check_order_subtotal_non_negative"),
        CheckConstraint("fees_cents >= 0", name="check_order_fees_non_negative"),
        CheckConstraint("total_cents = subtotal_cents + fees_cents", name="check_order_total"),
        CheckConstraint(
            "status IN ('created', 'pending_payment', 'paid', 'cancelled', 'expired', 'refunded')",
            name="check_order_status",
        ),
        Index("ix_orders_status_expires_at", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, user={self.user_id}, status={self.status}, total={self.total_cents})>"


class OrderItem(Base, TimestampMixin):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("ticket_categories.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
    category = relationship("TicketCategory", lazy="selectin")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_order_item_quantity_positive"),
        CheckConstraint("unit_price_cents >= 0", name="check_order_item_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<OrderItem(order={self.order_id}, category={self.category_id}, qty={self.quantity})>"


class PaymentAttempt(Base, TimestampMixin):
    """
    One payment intent opened for an order.

    Retrying payment replaces `Order.payment_reference`, but the earlier
    intent can still be captured by the provider. Its row stays here, marked
    superseded, so a late event for it still resolves to the order.
    """

    __tablename__ = "payment_attempts"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    intent_id = Column(String(255), nullable=False, unique=True)
    amount_cents = Column(Integer, nullable=False)
    superseded_at = Column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<PaymentAttempt(order={self.order_id}, intent={self.intent_id})>"
