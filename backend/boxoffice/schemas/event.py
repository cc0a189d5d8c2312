"""
Pydantic schemas for event and ticket category request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    price_cents: int = Field(..., ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    capacity: int = Field(..., ge=0, le=1000000)
    max_per_order: int = Field(default=10, gt=0)


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    venue: Optional[str] = Field(None, max_length=255)
    starts_at: datetime
    ends_at: datetime
    status: str = Field(default="published", pattern="^(draft|published)$")
    categories: list[CategoryCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_window(self):
        if self.ends_at < self.starts_at:
            raise ValueError("ends_at must not be before starts_at")
        return self


class CategoryResponse(BaseModel):
    id: int
    name: str
    price_cents: int
    currency: str
    capacity: int
    max_per_order: int
    is_available: bool

    model_config = {"from_attributes": True}


class EventResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    venue: Optional[str]
    starts_at: datetime
    ends_at: datetime
    status: str
    categories: list[CategoryResponse]
    created_at: datetime

    model_config = {"from_attributes": True}


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    page: int
    page_size: int
