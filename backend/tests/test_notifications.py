"""
Tests for best-effort customer notifications.
"""

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.models.order import Order, OrderStatus
from boxoffice.services import checkout_service, notification_service, payment_service
from boxoffice.services.interfaces.log_notifier import LogNotifier
from boxoffice.services.interfaces.notifier import NotificationMessage
from boxoffice.services.payment_service import WebhookOutcome
from conftest import webhook_event


@pytest.mark.asyncio
async def test_ticket_delivery_lists_every_ticket(db_session: AsyncSession, notifier, vip_id, paid_order):
    order = await paid_order(vip_id, 2)

    delivery = next(m for m in notifier.messages if m.kind == "ticket_delivery")
    assert delivery.to == "buyer@example.com"
    assert sorted(t["code"] for t in delivery.data["tickets"]) == sorted(t.code for t in order.tickets)

    confirmation = next(m for m in notifier.messages if m.kind == "order_confirmation")
    assert "IDR" in confirmation.body
    assert confirmation.data["total_cents"] == order.total_cents


@pytest.mark.asyncio
async def test_failing_notifier_never_breaks_payment(db_session: AsyncSession, gateway, notifier, vip_id, place_order):
    notifier.fail = True
    checkout = await place_order(vip_id, 1)

    result = await payment_service.handle_event(
        db_session, webhook_event(checkout.intent.intent_id, checkout.order.total_cents), gateway, notifier
    )
    assert result.outcome is WebhookOutcome.PROCESSED
    order = await checkout_service.get_order(db_session, checkout.order.id)
    assert order.status == OrderStatus.PAID.value
    assert len(order.tickets) == 1
    assert notifier.messages == []


@pytest.mark.asyncio
async def test_reminder_skipped_for_non_pending(db_session: AsyncSession, notifier, vip_id, paid_order):
    order = await paid_order(vip_id, 1)
    notifier.messages.clear()

    assert await notification_service.send_payment_reminder(db_session, notifier, order.id) is False
    assert notifier.messages == []


@pytest.mark.asyncio
async def test_orders_without_email_are_skipped(db_session: AsyncSession, notifier, vip_id, paid_order):
    order = await paid_order(vip_id, 1)
    notifier.messages.clear()
    await db_session.execute(update(Order).where(Order.id == order.id).values(customer_email=None))
    await db_session.commit()

    assert await notification_service.send_order_confirmation(db_session, notifier, order.id) is False
    assert notifier.messages == []


@pytest.mark.asyncio
async def test_event_reminder_goes_to_paid_orders(
    db_session: AsyncSession, notifier, event_id, vip_id, place_order, paid_order
):
    await paid_order(vip_id, 1)
    await paid_order(vip_id, 1, user_id="user-2")
    await place_order(vip_id, 1, user_id="user-3")
    notifier.messages.clear()

    sent = await notification_service.send_event_reminder(db_session, notifier, event_id)
    assert sent == 2
    assert notifier.kinds() == ["event_reminder", "event_reminder"]


@pytest.mark.asyncio
async def test_log_notifier_always_succeeds():
    message = NotificationMessage(kind="order_confirmation", to="a@b.c", subject="s", body="b", data={})
    assert await LogNotifier().send(message) is True
