"""
Event catalog: just enough to put categories on sale.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.config import get_settings
from boxoffice.core.errors import NotFoundError
from boxoffice.core.logging import get_logger
from boxoffice.db.base import utcnow
from boxoffice.models.event import Event, TicketCategory
from boxoffice.schemas.event import EventCreate

logger = get_logger(__name__)


async def create_event(db: AsyncSession, event_data: EventCreate) -> Event:
    """Create an event together with its ticket categories."""
    event = Event(
        title=event_data.title,
        description=event_data.description,
        venue=event_data.venue,
        starts_at=event_data.starts_at,
        ends_at=event_data.ends_at,
        status=event_data.status,
    )
    db.add(event)
    await db.flush()

    currency = get_settings().DEFAULT_CURRENCY
    db.add_all([
        TicketCategory(
            event_id=event.id,
            name=category.name,
            price_cents=category.price_cents,
            currency=(category.currency or currency).lower(),
            capacity=category.capacity,
            max_per_order=category.max_per_order,
        )
        for category in event_data.categories
    ])
    await db.flush()

    event = await get_event(db, event.id)
    logger.info(
        "event_created",
        event_id=event.id,
        title=event.title,
        categories=len(event.categories),
        capacity=sum(c.capacity for c in event.categories),
    )
    return event


async def get_event(db: AsyncSession, event_id: int) -> Event:
    """Get a single event with its categories."""
    result = await db.execute(
        select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()
    if not event:
        raise NotFoundError("Event", event_id)
    return event


async def list_events(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    upcoming_only: bool = True,
) -> tuple[list[Event], int]:
    """
    List published events with pagination.
    Uses the ix_events_starts_at index for date filtering.
    """
    query = select(Event).where(Event.status == "published")

    if upcoming_only:
        query = query.where(Event.starts_at >= utcnow())

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    events_query = (
        query
        .order_by(Event.starts_at.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(events_query)
    return list(result.scalars().all()), total
