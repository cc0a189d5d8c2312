"""
Order state machine.

    created ──────────> pending_payment ──> paid ──> refunded
       │                     │    │
       └──> cancelled <──────┘    └──> expired

cancelled, expired and refunded are terminal. A paid order is never
cancelled; it is refunded.

Transitions are compare-and-swap on the current status:

    UPDATE orders SET status = :target, ...
    WHERE id = :order_id AND status = :current

Zero rows affected means a concurrent writer moved the order first, so at
most one of two racing transitions can succeed.
"""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.errors import AlreadyProcessedError, IllegalTransitionError, NotFoundError
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import record_transition
from boxoffice.db.base import utcnow
from boxoffice.models.order import Order, OrderStatus
from boxoffice.services import ticket_service
from boxoffice.services.cache_service import invalidate_inventory_cache

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED}),
    OrderStatus.PENDING_PAYMENT: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.EXPIRED}),
    OrderStatus.PAID: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.EXPIRED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, allowed in ALLOWED_TRANSITIONS.items() if not allowed)
HOLDING_STATUSES = frozenset({OrderStatus.CREATED, OrderStatus.PENDING_PAYMENT})


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in ALLOWED_TRANSITIONS[OrderStatus(current)]


def is_terminal(status: OrderStatus | str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def is_holding(status: OrderStatus | str) -> bool:
    return OrderStatus(status) in HOLDING_STATUSES


async def load_order(db: AsyncSession, order_id: int, user_id: str | None = None) -> Order:
    """Load an order with items and tickets, bypassing stale identity-map state."""
    query = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    if user_id is not None:
        query = query.where(Order.user_id == user_id)
    order = (await db.execute(query)).scalar_one_or_none()
    if not order:
        raise NotFoundError("Order", order_id)
    return order


async def transition(
    db: AsyncSession,
    order: Order,
    target: OrderStatus | str,
    now: datetime | None = None,
    **values,
) -> Order:
    """
    Move `order` to `target`, applying the entry side effects.

    Raises AlreadyProcessedError when the order is already in `target`
    (including when a concurrent writer got there first) and
    IllegalTransitionError when `target` is not reachable.
    """
    target = OrderStatus(target)
    current = OrderStatus(order.status)

    if current is target:
        raise AlreadyProcessedError(f"Order is already {target.value}", order_id=order.id)
    if not can_transition(current, target):
        raise IllegalTransitionError(current.value, target.value)

    now = now or utcnow()
    values["status"] = target.value
    values["updated_at"] = now
    if target is OrderStatus.PAID:
        values.setdefault("paid_at", now)
    if target is OrderStatus.REFUNDED:
        values.setdefault("refunded_at", now)

    result = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == current.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        await db.refresh(order)
        logger.info(
            "order_transition_lost_race",
            order_id=order.id,
            expected=current.value,
            actual=order.status,
            target=target.value,
        )
        if order.status == target.value:
            raise AlreadyProcessedError(f"Order is already {target.value}", order_id=order.id)
        raise IllegalTransitionError(
            order.status,
            target.value,
            reason=f"Order changed concurrently to {order.status}",
        )

    await db.refresh(order)
    record_transition(current.value, target.value)
    logger.info(
        "order_transitioned",
        order_id=order.id,
        from_status=current.value,
        to_status=target.value,
    )

    if target is OrderStatus.REFUNDED:
        await ticket_service.void_by_order(db, order.id)

    await invalidate_inventory_cache(order.event_id)
    return order
