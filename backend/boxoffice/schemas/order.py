"""
Pydantic schemas for checkout and order request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class CartItem(BaseModel):
    # Positivity and per-order limits are checked by checkout so they surface as INVALID_CART
    category_id: int
    quantity: int


class CustomerDetails(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = Field(..., min_length=1, max_length=255)
    billing_address: Optional[dict] = None


class OrderCreate(BaseModel):
    items: list[CartItem]
    customer: CustomerDetails


class OrderItemResponse(BaseModel):
    id: int
    category_id: int
    quantity: int
    unit_price_cents: int

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: int
    user_id: str
    event_id: int
    status: str
    subtotal_cents: int
    fees_cents: int
    total_cents: int
    currency: str
    expires_at: Optional[datetime]
    payment_reference: Optional[str]
    paid_at: Optional[datetime]
    refunded_cents: Optional[int]
    refunded_at: Optional[datetime]
    items: list[OrderItemResponse]
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentHandle(BaseModel):
    intent_id: str
    client_secret: str


class CheckoutResponse(BaseModel):
    order: OrderResponse
    payment: PaymentHandle


class OrderStatsResponse(BaseModel):
    counts: dict[str, int]
    total_orders: int
    paid_revenue_cents: int
