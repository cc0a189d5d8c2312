from boxoffice.models.event import Event, TicketCategory
from boxoffice.models.order import Order, OrderItem, OrderStatus, PaymentAttempt
from boxoffice.models.ticket import Ticket, TicketStatus

__all__ = [
    "Event", "TicketCategory",
    "Order", "OrderItem", "OrderStatus", "PaymentAttempt",
    "Ticket", "TicketStatus",
]
