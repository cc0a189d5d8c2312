"""
Ticket model.

Key design decisions:
- `code` and `ticket_number` are unique at the database level; issuance
  regenerates on collision instead of trusting randomness alone
- Status only moves issued/active -> used or issued/active -> void; both
  moves are conditional updates on the current status
"""

import enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from boxoffice.db.base import Base, UTCDateTime, utcnow


class TicketStatus(str, enum.Enum):
    ISSUED = "issued"
    ACTIVE = "active"
    USED = "used"
    VOID = "void"


UNUSED_STATUSES = (TicketStatus.ISSUED.value, TicketStatus.ACTIVE.value)


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("ticket_categories.id"), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)

    ticket_number = Column(String(64), nullable=False, unique=True)
    code = Column(String(32), nullable=False, unique=True)
    qr_payload = Column(Text, nullable=False)
    status = Column(String(10), nullable=False, default=TicketStatus.ACTIVE.value)

    issued_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    used_at = Column(UTCDateTime(), nullable=True)
    used_gate_id = Column(String(64), nullable=True)

    order = relationship("Order", back_populates="tickets")
    category = relationship("TicketCategory", lazy="selectin")
    event = relationship("Event", lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "status IN ('issued', 'active', 'used', 'void')",
            name="check_ticket_status",
        ),
        Index("ix_tickets_event_status", "event_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Ticket(id={self.id}, number={self.ticket_number}, status={self.status})>"
