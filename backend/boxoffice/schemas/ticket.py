"""
Pydantic schemas for tickets and gate operations.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class TicketResponse(BaseModel):
    id: int
    order_id: int
    event_id: int
    category_id: int
    ticket_number: str
    code: str
    qr_payload: str
    status: str
    issued_at: datetime
    used_at: Optional[datetime]

    model_config = {"from_attributes": True}


class TicketCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    gate_id: Optional[str] = Field(None, max_length=64)


class TicketContextResponse(BaseModel):
    event_id: int
    event_title: str
    venue: Optional[str]
    starts_at: datetime
    ends_at: datetime
    category_name: str
    order_id: int
    order_status: str
    customer_name: Optional[str]
    customer_email: Optional[str]
    total_cents: int
    currency: str

    model_config = {"from_attributes": True}


class TicketValidationResponse(BaseModel):
    valid: bool
    reason: str
    message: str
    ticket: Optional[TicketResponse] = None
    used_at: Optional[datetime] = None
    context: Optional[TicketContextResponse] = None
