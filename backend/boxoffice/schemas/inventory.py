"""
Pydantic schemas for inventory checks and category administration.
"""

from typing import Optional
from pydantic import BaseModel, Field


class InventoryItem(BaseModel):
    category_id: int
    name: str
    capacity: int
    sold: int
    held: int
    available: int
    is_available: bool
    is_sold_out: bool

    model_config = {"from_attributes": True}


class EventInventoryResponse(BaseModel):
    event_id: int
    categories: list[InventoryItem]
    cached: bool = False


class AvailabilityRequestItem(BaseModel):
    category_id: int
    quantity: int = Field(..., gt=0)


class AvailabilityCheckRequest(BaseModel):
    items: list[AvailabilityRequestItem] = Field(..., min_length=1)


class AvailabilityResultResponse(BaseModel):
    category_id: int
    requested: int
    remaining: int
    reason: str
    available: bool
    message: str


class AvailabilityCheckResponse(BaseModel):
    all_available: bool
    results: list[AvailabilityResultResponse]


class CategoryUpdate(BaseModel):
    capacity: Optional[int] = Field(None, ge=0)
    is_available: Optional[bool] = None
