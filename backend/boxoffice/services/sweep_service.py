"""
Expiry sweep and payment reminders.

Inventory never depends on the sweep: held units stop counting the moment
`expires_at` passes. The sweep only ends lapsed holds (`expired`, or
`cancelled` for an order that never opened a payment intent) so status
reads stay honest, and nudges customers before their hold runs out.
"""

import asyncio
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.core.config import get_settings
from boxoffice.core.errors import AlreadyProcessedError, IllegalTransitionError
from boxoffice.core.logging import bind_context, clear_context, get_logger
from boxoffice.core.metrics import orders_expired
from boxoffice.db.base import utcnow
from boxoffice.models.order import Order, OrderStatus
from boxoffice.services import notification_service
from boxoffice.services.interfaces.notifier import Notifier
from boxoffice.services.order_state import HOLDING_STATUSES, transition

logger = get_logger(__name__)

_HOLDING = [status.value for status in HOLDING_STATUSES]


# Lapsed holds end in the terminal status their current state allows.
# A `created` order never got a payment intent, so it is cancelled.
LAPSE_TARGETS = {
    OrderStatus.PENDING_PAYMENT: OrderStatus.EXPIRED,
    OrderStatus.CREATED: OrderStatus.CANCELLED,
}


async def process_expired_orders(db: AsyncSession, now: datetime | None = None) -> int:
    """
    End every lapsed hold. Idempotent.

    Each order goes through the state machine's compare-and-swap, so an
    order paid or cancelled since the SELECT is skipped rather than
    overwritten.
    """
    now = now or utcnow()
    candidates = (
        await db.execute(
            select(Order)
            .where(Order.status.in_(_HOLDING), Order.expires_at <= now)
            .order_by(Order.id)
            .execution_options(populate_existing=True)
        )
    ).scalars().all()
    if not candidates:
        return 0

    swept = []
    for order in candidates:
        target = LAPSE_TARGETS[OrderStatus(order.status)]
        try:
            await transition(db, order, target, now=now)
        except (AlreadyProcessedError, IllegalTransitionError):
            continue
        swept.append((order.id, target.value))
    await db.commit()

    expired = sum(1 for _, status in swept if status == OrderStatus.EXPIRED.value)
    if expired:
        orders_expired.inc(expired)
    if swept:
        logger.info(
            "orders_expired",
            count=len(swept),
            order_ids=[order_id for order_id, _ in swept],
            cancelled=len(swept) - expired,
        )
    return len(swept)


async def send_payment_reminders(db: AsyncSession, notifier: Notifier, now: datetime | None = None) -> int:
    """Remind each pending order once, shortly before its hold lapses."""
    now = now or utcnow()
    window_end = now + timedelta(minutes=get_settings().PAYMENT_REMINDER_MINUTES)

    order_ids = (
        await db.execute(
            select(Order.id)
            .where(
                Order.status == OrderStatus.PENDING_PAYMENT.value,
                Order.expires_at > now,
                Order.expires_at <= window_end,
                Order.reminder_sent_at.is_(None),
            )
            .order_by(Order.expires_at)
        )
    ).scalars().all()

    sent = 0
    for order_id in order_ids:
        # Claim the reminder first so two sweepers never both send it
        claimed = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.reminder_sent_at.is_(None))
            .values(reminder_sent_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if claimed.rowcount == 0:
            continue
        if await notification_service.send_payment_reminder(db, notifier, order_id):
            sent += 1

    if order_ids:
        logger.info("payment_reminders_sent", candidates=len(order_ids), sent=sent)
    return sent


async def run_sweep(db: AsyncSession, notifier: Notifier, now: datetime | None = None) -> dict:
    now = now or utcnow()
    expired = await process_expired_orders(db, now=now)
    reminded = await send_payment_reminders(db, notifier, now=now)
    return {"expired": expired, "reminded": reminded}


async def run_sweeper(
    session_factory: async_sessionmaker,
    notifier: Notifier,
    interval: float,
) -> None:
    """Background loop started from the app lifespan. Runs until cancelled."""
    logger.info("sweeper_started", interval_seconds=interval)
    run = 0
    while True:
        run += 1
        bind_context(sweep_run=run)
        try:
            async with session_factory() as db:
                stats = await run_sweep(db, notifier)
            logger.debug("sweep_completed", **stats)
        except Exception as e:
            logger.exception("sweep_failed", error=str(e))
        finally:
            clear_context()
        await asyncio.sleep(interval)
