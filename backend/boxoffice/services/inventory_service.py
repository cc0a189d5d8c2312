"""
Inventory evaluation for ticket categories.

AVAILABILITY MODEL
==================

Nothing is decremented when a cart is reserved. Availability is derived:

  sold      = sum(quantity) over items of PAID orders
  held      = sum(quantity) over items of holding orders (created,
              pending_payment) whose expires_at > now
  available = max(0, capacity - sold - held)

The hold timeout is enforced lazily: an order whose hold lapsed stops counting
as held immediately, even before the sweep rewrites its status.

CAPACITY GUARD: Optimistic Locking with Retry
=============================================

check_availability() is a point-in-time read. Two checkouts can both see the
last unit. To close that window, checkout calls claim_capacity() inside the
same transaction that inserts the order:

  1. Read the category's current version
  2. Recount sold + held and compare with the requested quantity
  3. UPDATE ticket_categories SET version = version + 1
     WHERE id = :category_id AND version = :current_version
  4. If rows_affected == 0, another reservation touched this category -> retry

The UPDATE takes the row lock until commit, so a concurrent claim on the same
category waits, then fails its version predicate and recounts with the
winner's items visible.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.errors import CapacityConflictError, NotFoundError
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import inventory_checks
from boxoffice.db.base import utcnow
from boxoffice.models.event import TicketCategory
from boxoffice.models.order import Order, OrderItem, OrderStatus

logger = get_logger(__name__)

HOLDING_STATUSES = (OrderStatus.CREATED.value, OrderStatus.PENDING_PAYMENT.value)


class AvailabilityReason(str, Enum):
    OK = "ok"
    DISABLED = "disabled"
    SOLD_OUT = "sold_out"
    INSUFFICIENT = "insufficient"


@dataclass(frozen=True)
class InventoryStatus:
    category_id: int
    name: str
    capacity: int
    sold: int
    held: int
    available: int
    is_available: bool
    is_sold_out: bool


@dataclass(frozen=True)
class AvailabilityResult:
    category_id: int
    requested: int
    remaining: int
    reason: AvailabilityReason

    @property
    def ok(self) -> bool:
        return self.reason is AvailabilityReason.OK

    @property
    def message(self) -> str:
        if self.reason is AvailabilityReason.DISABLED:
            return "Ticket category is not available for sale"
        if self.reason is AvailabilityReason.SOLD_OUT:
            return "Ticket category is sold out"
        if self.reason is AvailabilityReason.INSUFFICIENT:
            return f"Only {self.remaining} tickets available"
        return "Tickets available"


async def get_category(db: AsyncSession, category_id: int) -> TicketCategory:
    result = await db.execute(
        select(TicketCategory)
        .where(TicketCategory.id == category_id)
        .execution_options(populate_existing=True)
    )
    category = result.scalar_one_or_none()
    if not category:
        raise NotFoundError("Ticket category", category_id)
    return category


async def _sum_quantity(db: AsyncSession, category_id: int, *conditions) -> int:
    query = (
        select(func.coalesce(func.sum(OrderItem.quantity), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .where(OrderItem.category_id == category_id, *conditions)
    )
    return int((await db.execute(query)).scalar_one())


async def count_sold(db: AsyncSession, category_id: int) -> int:
    return await _sum_quantity(db, category_id, Order.status == OrderStatus.PAID.value)


async def count_held(
    db: AsyncSession,
    category_id: int,
    now: datetime | None = None,
    exclude_order_id: int | None = None,
) -> int:
    now = now or utcnow()
    conditions = [Order.status.in_(HOLDING_STATUSES), Order.expires_at > now]
    if exclude_order_id is not None:
        conditions.append(Order.id != exclude_order_id)
    return await _sum_quantity(db, category_id, *conditions)


def _build_status(category: TicketCategory, sold: int, held: int) -> InventoryStatus:
    available = max(0, category.capacity - sold - held)
    return InventoryStatus(
        category_id=category.id,
        name=category.name,
        capacity=category.capacity,
        sold=sold,
        held=held,
        available=available,
        is_available=bool(category.is_available) and available > 0,
        is_sold_out=available == 0,
    )


async def get_inventory_status(
    db: AsyncSession,
    category_id: int,
    now: datetime | None = None,
) -> InventoryStatus:
    """Live inventory for one category. Never served from cache."""
    category = await get_category(db, category_id)
    sold = await count_sold(db, category_id)
    held = await count_held(db, category_id, now=now)
    return _build_status(category, sold, held)


def _evaluate(category: TicketCategory, status: InventoryStatus, requested: int) -> AvailabilityResult:
    if not category.is_available:
        reason, remaining = AvailabilityReason.DISABLED, 0
    elif status.is_sold_out:
        reason, remaining = AvailabilityReason.SOLD_OUT, 0
    elif requested > status.available:
        reason, remaining = AvailabilityReason.INSUFFICIENT, status.available
    else:
        reason, remaining = AvailabilityReason.OK, status.available

    inventory_checks.labels(result=reason.value).inc()
    return AvailabilityResult(
        category_id=category.id,
        requested=requested,
        remaining=remaining,
        reason=reason,
    )


async def check_availability(
    db: AsyncSession,
    category_id: int,
    requested_qty: int,
    now: datetime | None = None,
) -> AvailabilityResult:
    """Point-in-time availability check. Advisory: it takes no lock."""
    category = await get_category(db, category_id)
    sold = await count_sold(db, category_id)
    held = await count_held(db, category_id, now=now)
    return _evaluate(category, _build_status(category, sold, held), requested_qty)


async def check_batch(
    db: AsyncSession,
    items: list[tuple[int, int]],
    now: datetime | None = None,
) -> dict[int, AvailabilityResult]:
    """
    Check (category_id, quantity) pairs independently.
    There is no cross-item atomicity; a positive result is not a reservation.
    """
    results = {}
    for category_id, quantity in items:
        results[category_id] = await check_availability(db, category_id, quantity, now=now)
    return results


async def claim_capacity(
    db: AsyncSession,
    category_id: int,
    quantity: int,
    now: datetime | None = None,
    exclude_order_id: int | None = None,
) -> tuple[bool, AvailabilityResult]:
    """
    Optimistically claim `quantity` units of a category.

    Returns (claimed, result). claimed is False with an OK result when the
    version moved underneath us; the caller should roll back and retry.
    A non-OK result means the units are genuinely not there.
    """
    category = await get_category(db, category_id)
    current_version = category.version
    sold = await count_sold(db, category_id)
    held = await count_held(db, category_id, now=now, exclude_order_id=exclude_order_id)
    result = _evaluate(category, _build_status(category, sold, held), quantity)
    if not result.ok:
        return False, result

    update_result = await db.execute(
        update(TicketCategory)
        .where(
            TicketCategory.id == category_id,
            TicketCategory.version == current_version,
        )
        .values(version=TicketCategory.version + 1)
        .execution_options(synchronize_session=False)
    )
    if update_result.rowcount == 0:
        logger.info(
            "capacity_claim_conflict",
            category_id=category_id,
            version=current_version,
        )
        return False, result
    return True, result


async def get_event_inventory(db: AsyncSession, event_id: int) -> list[InventoryStatus]:
    result = await db.execute(
        select(TicketCategory)
        .where(TicketCategory.event_id == event_id)
        .order_by(TicketCategory.id)
    )
    statuses = []
    for category in result.scalars().all():
        sold = await count_sold(db, category.id)
        held = await count_held(db, category.id)
        statuses.append(_build_status(category, sold, held))
    return statuses


async def get_low_stock(db: AsyncSession, event_id: int, threshold: int = 10) -> list[InventoryStatus]:
    statuses = await get_event_inventory(db, event_id)
    return [s for s in statuses if s.is_available and 0 < s.available <= threshold]


async def get_sold_out(db: AsyncSession, event_id: int) -> list[InventoryStatus]:
    statuses = await get_event_inventory(db, event_id)
    return [s for s in statuses if s.is_sold_out]


async def update_capacity(db: AsyncSession, category_id: int, new_capacity: int) -> TicketCategory:
    """Change capacity; never below the units already sold."""
    category = await get_category(db, category_id)
    sold = await count_sold(db, category_id)
    if new_capacity < sold:
        raise CapacityConflictError(category_id, new_capacity, sold)

    await db.execute(
        update(TicketCategory)
        .where(TicketCategory.id == category_id)
        .values(capacity=new_capacity, version=TicketCategory.version + 1)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(category)
    logger.info("category_capacity_updated", category_id=category_id, capacity=new_capacity, sold=sold)
    return category


async def set_availability(db: AsyncSession, category_id: int, is_available: bool) -> TicketCategory:
    category = await get_category(db, category_id)
    await db.execute(
        update(TicketCategory)
        .where(TicketCategory.id == category_id)
        .values(is_available=is_available, version=TicketCategory.version + 1)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(category)
    logger.info("category_availability_updated", category_id=category_id, is_available=is_available)
    return category
