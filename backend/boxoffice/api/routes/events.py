"""
Event catalog endpoints and the cached inventory snapshot.
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.session import get_db
from boxoffice.schemas.event import EventCreate, EventResponse, EventListResponse
from boxoffice.schemas.inventory import EventInventoryResponse, InventoryItem
from boxoffice.services.event_service import create_event, get_event, list_events
from boxoffice.services.inventory_service import get_event_inventory
from boxoffice.services.cache_service import get_cached_inventory, set_cached_inventory
from boxoffice.core.security import require_admin
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create an event with its ticket categories. Admin only."""
    return await create_event(db, event_data)


@router.get("/", response_model=EventListResponse)
async def list_events_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    events, total = await list_events(db, page, page_size, upcoming_only)
    return EventListResponse(
        events=[EventResponse.model_validate(e) for e in events],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{event_id}", response_model=EventResponse)
async def get_event_endpoint(
    event_id: int,
    db: AsyncSession = Depends(get_db),
):
    return await get_event(db, event_id)


@router.get("/{event_id}/inventory", response_model=EventInventoryResponse)
async def get_event_inventory_endpoint(
    event_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Per-category inventory for display.
    Served from a short-lived Redis snapshot; checkout never reads it.
    """
    cached = await get_cached_inventory(event_id)
    if cached is not None:
        return EventInventoryResponse(event_id=event_id, categories=cached, cached=True)

    await get_event(db, event_id)
    statuses = await get_event_inventory(db, event_id)
    categories = [asdict(s) for s in statuses]
    await set_cached_inventory(event_id, categories)
    return EventInventoryResponse(
        event_id=event_id,
        categories=[InventoryItem(**c) for c in categories],
    )
