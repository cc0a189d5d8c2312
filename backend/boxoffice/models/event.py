"""
Event and ticket category models.

Key design decisions:
- Capacity lives on the category; availability is derived from orders, never
  stored as a decrementing counter
- `version` on the category is the optimistic-lock counter every reservation
  bumps, so concurrent checkouts of the same category serialize on its row
- Index on `starts_at` for upcoming-event listings
"""

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from boxoffice.db.base import Base, TimestampMixin, UTCDateTime

EVENT_STATUSES = ("draft", "published", "cancelled", "completed")


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String(2000), nullable=True)
    venue = Column(String(255), nullable=True)
    starts_at = Column(UTCDateTime(), nullable=False)
    ends_at = Column(UTCDateTime(), nullable=False)
    status = Column(String(20), nullable=False, default="published")

    categories = relationship(
        "TicketCategory",
        back_populates="event",
        lazy="selectin",
        order_by="TicketCategory.id",
    )

    __table_args__ = (
        CheckConstraint("ends_at >= starts_at", name="check_event_window"),
        CheckConstraint(
            "status IN ('draft', 'published', 'cancelled', 'completed')",
            name="check_event_status",
        ),
        Index("ix_events_starts_at", "starts_at"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, starts_at={self.starts_at})>"


class TicketCategory(Base, TimestampMixin):
    __tablename__ = "ticket_categories"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="idr")
    capacity = Column(Integer, nullable=False)
    max_per_order = Column(Integer, nullable=False, default=10)
    is_available = Column(Boolean, nullable=False, default=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    event = relationship("Event", back_populates="categories")

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="check_category_capacity_non_negative"),
        CheckConstraint("price_cents >= 0", name="check_category_price_non_negative"),
        CheckConstraint("max_per_order > 0", name="check_category_max_per_order_positive"),
    )

    def __repr__(self) -> str:
        return f"<TicketCategory(id={self.id}, name={self.name}, capacity={self.capacity})>"
