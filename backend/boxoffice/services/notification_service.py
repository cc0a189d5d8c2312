"""
Customer notifications for the order lifecycle.

Every send is best effort: a failing notifier is logged and counted, never
raised, so a delivery problem can't roll back a payment or a sweep.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.errors import NotFoundError
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import record_notification
from boxoffice.models.event import Event
from boxoffice.models.order import Order, OrderStatus
from boxoffice.services.interfaces.notifier import NotificationMessage, Notifier
from boxoffice.services.order_state import load_order

logger = get_logger(__name__)


def _format_amount(cents: int, currency: str) -> str:
    return f"{currency.upper()} {cents:,}"


async def _dispatch(notifier: Notifier, message: NotificationMessage) -> bool:
    try:
        sent = await notifier.send(message)
    except Exception as e:
        logger.error("notification_failed", kind=message.kind, to=message.to, error=str(e))
        record_notification(message.kind, False)
        return False

    if not sent:
        logger.warning("notification_failed", kind=message.kind, to=message.to, error="rejected")
    record_notification(message.kind, sent)
    return sent


def _skip(kind: str, order: Order, reason: str) -> bool:
    logger.info("notification_skipped", kind=kind, order_id=order.id, reason=reason)
    return False


async def send_order_confirmation(db: AsyncSession, notifier: Notifier, order_id: int) -> bool:
    order = await load_order(db, order_id)
    if not order.customer_email:
        return _skip("order_confirmation", order, "no_email")

    lines = [
        f"- {item.category.name} x{item.quantity}: {_format_amount(item.unit_price_cents * item.quantity, order.currency)}"
        for item in order.items
    ]
    body = "\n".join([
        f"Hi {order.customer_name or 'there'},",
        "",
        f"Your order #{order.id} for {order.event.title} is confirmed.",
        *lines,
        f"Service fee: {_format_amount(order.fees_cents, order.currency)}",
        f"Total paid: {_format_amount(order.total_cents, order.currency)}",
    ])
    return await _dispatch(notifier, NotificationMessage(
        kind="order_confirmation",
        to=order.customer_email,
        subject=f"Order confirmed - {order.event.title}",
        body=body,
        data={"order_id": order.id, "total_cents": order.total_cents},
    ))


async def send_payment_reminder(db: AsyncSession, notifier: Notifier, order_id: int) -> bool:
    order = await load_order(db, order_id)
    if order.status != OrderStatus.PENDING_PAYMENT.value:
        return _skip("payment_reminder", order, order.status)
    if not order.customer_email:
        return _skip("payment_reminder", order, "no_email")

    return await _dispatch(notifier, NotificationMessage(
        kind="payment_reminder",
        to=order.customer_email,
        subject=f"Complete your payment - {order.event.title}",
        body=(
            f"Your tickets for {order.event.title} are held until "
            f"{order.expires_at.isoformat()}. Complete payment of "
            f"{_format_amount(order.total_cents, order.currency)} to keep them."
        ),
        data={"order_id": order.id, "expires_at": order.expires_at.isoformat()},
    ))


async def send_ticket_delivery(db: AsyncSession, notifier: Notifier, order_id: int) -> bool:
    order = await load_order(db, order_id)
    if order.status != OrderStatus.PAID.value:
        return _skip("ticket_delivery", order, order.status)
    if not order.tickets:
        return _skip("ticket_delivery", order, "no_tickets")
    if not order.customer_email:
        return _skip("ticket_delivery", order, "no_email")

    tickets = [
        {"ticket_number": t.ticket_number, "code": t.code, "qr_payload": t.qr_payload}
        for t in order.tickets
    ]
    body = "\n".join(
        [f"Your tickets for {order.event.title}:"]
        + [f"- {t['ticket_number']} ({t['code']})" for t in tickets]
    )
    return await _dispatch(notifier, NotificationMessage(
        kind="ticket_delivery",
        to=order.customer_email,
        subject=f"Your tickets - {order.event.title}",
        body=body,
        data={"order_id": order.id, "tickets": tickets},
    ))


async def send_event_reminder(db: AsyncSession, notifier: Notifier, event_id: int) -> int:
    """Remind every paid order of an event. Returns how many were sent."""
    event = await db.get(Event, event_id)
    if not event:
        raise NotFoundError("Event", event_id)

    result = await db.execute(
        select(Order)
        .where(Order.event_id == event_id, Order.status == OrderStatus.PAID.value)
        .order_by(Order.id)
    )
    sent = 0
    for order in result.scalars().all():
        if not order.customer_email:
            continue
        delivered = await _dispatch(notifier, NotificationMessage(
            kind="event_reminder",
            to=order.customer_email,
            subject=f"Reminder - {event.title}",
            body=f"{event.title} starts at {event.starts_at.isoformat()} at {event.venue}.",
            data={"order_id": order.id, "event_id": event.id},
        ))
        sent += int(delivered)

    logger.info("event_reminders_sent", event_id=event_id, sent=sent)
    return sent
