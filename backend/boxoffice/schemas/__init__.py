from boxoffice.schemas.event import CategoryCreate, CategoryResponse, EventCreate, EventResponse, EventListResponse
from boxoffice.schemas.inventory import (
    AvailabilityCheckRequest, AvailabilityCheckResponse, CategoryUpdate, EventInventoryResponse, InventoryItem,
)
from boxoffice.schemas.order import CartItem, CheckoutResponse, CustomerDetails, OrderCreate, OrderResponse
from boxoffice.schemas.payment import PaymentStatusResponse, RefundRequest, RefundResponse, WebhookAck
from boxoffice.schemas.ticket import TicketCodeRequest, TicketResponse, TicketValidationResponse

__all__ = [
    "CategoryCreate", "CategoryResponse", "EventCreate", "EventResponse", "EventListResponse",
    "AvailabilityCheckRequest", "AvailabilityCheckResponse", "CategoryUpdate", "EventInventoryResponse",
    "InventoryItem",
    "CartItem", "CheckoutResponse", "CustomerDetails", "OrderCreate", "OrderResponse",
    "PaymentStatusResponse", "RefundRequest", "RefundResponse", "WebhookAck",
    "TicketCodeRequest", "TicketResponse", "TicketValidationResponse",
]
