"""
Pydantic schemas for payment status, webhooks and refunds.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
    order_id: Optional[int] = None


class PaymentStatusResponse(BaseModel):
    order_id: int
    status: str
    order_status: str
    amount_cents: int
    currency: str
    payment_reference: Optional[str]
    paid_at: Optional[datetime]


class RefundRequest(BaseModel):
    amount_cents: Optional[int] = Field(None, gt=0)


class RefundResponse(BaseModel):
    order_id: int
    status: str
    refund_reference: str
    refunded_cents: int
    tickets_voided: int
