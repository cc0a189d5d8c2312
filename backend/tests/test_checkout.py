"""
Tests for checkout: cart validation, pricing, atomic reservation and
compensation when the payment provider fails.
"""

from datetime import datetime, timezone, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.errors import (
    ExternalDependencyError,
    IllegalTransitionError,
    InsufficientInventoryError,
    InvalidCartError,
)
from boxoffice.models.event import Event, TicketCategory
from boxoffice.models.order import Order, OrderStatus, PaymentAttempt
from boxoffice.schemas.order import CartItem
from boxoffice.services import checkout_service, inventory_service
from boxoffice.services.checkout_service import calculate_fees
from conftest import FailingGateway, expire_hold


def test_fee_is_ten_percent_of_subtotal():
    """Subtotal 100,000 -> fees 10,000, total 110,000."""
    assert calculate_fees(100000, 10) == 10000


def test_fee_rounds_half_up():
    assert calculate_fees(5, 10) == 1  # 0.5 -> 1
    assert calculate_fees(4, 10) == 0
    assert calculate_fees(15, 10) == 2  # 1.5 -> 2


@pytest.mark.asyncio
async def test_create_order_prices_and_holds(db_session: AsyncSession, vip_id, place_order):
    result = await place_order(vip_id, 2)
    order = result.order

    assert order.status == OrderStatus.PENDING_PAYMENT.value
    assert order.subtotal_cents == 100000
    assert order.fees_cents == 10000
    assert order.total_cents == 110000
    assert order.total_cents == order.subtotal_cents + order.fees_cents
    assert order.payment_reference == result.intent.intent_id
    assert order.expires_at > datetime.now(timezone.utc) + timedelta(minutes=29)
    assert [(i.category_id, i.quantity, i.unit_price_cents) for i in order.items] == [(vip_id, 2, 50000)]
    assert result.intent.client_secret.startswith(result.intent.intent_id)


@pytest.mark.asyncio
async def test_price_snapshot_survives_price_change(db_session: AsyncSession, vip_id, place_order):
    result = await place_order(vip_id, 1)
    order_id = result.order.id

    category = await inventory_service.get_category(db_session, vip_id)
    category.price_cents = 99999
    await db_session.commit()

    order = await checkout_service.get_order(db_session, order_id)
    assert order.items[0].unit_price_cents == 50000
    assert order.subtotal_cents == 50000


@pytest.mark.asyncio
async def test_duplicate_lines_are_merged(db_session: AsyncSession, gateway, customer, ga_id):
    result = await checkout_service.create_order(
        db_session,
        "user-1",
        [CartItem(category_id=ga_id, quantity=2), CartItem(category_id=ga_id, quantity=3)],
        customer,
        gateway,
    )
    assert len(result.order.items) == 1
    assert result.order.items[0].quantity == 5


@pytest.mark.asyncio
async def test_multi_category_order(db_session: AsyncSession, gateway, customer, vip_id, ga_id):
    result = await checkout_service.create_order(
        db_session,
        "user-1",
        [CartItem(category_id=ga_id, quantity=2), CartItem(category_id=vip_id, quantity=1)],
        customer,
        gateway,
    )
    assert result.order.subtotal_cents == 2 * 25000 + 50000
    assert sorted(i.category_id for i in result.order.items) == sorted([vip_id, ga_id])


@pytest.mark.asyncio
async def test_empty_cart_rejected(db_session: AsyncSession, gateway, customer, test_event):
    with pytest.raises(InvalidCartError):
        await checkout_service.create_order(db_session, "user-1", [], customer, gateway)


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, -3])
async def test_non_positive_quantity_rejected(db_session: AsyncSession, gateway, customer, vip_id, quantity):
    with pytest.raises(InvalidCartError):
        await checkout_service.create_order(
            db_session, "user-1", [CartItem(category_id=vip_id, quantity=quantity)], customer, gateway
        )


@pytest.mark.asyncio
async def test_cart_spanning_two_events_rejected(db_session: AsyncSession, gateway, customer, vip_id):
    starts_at = datetime.now(timezone.utc) + timedelta(days=60)
    other = Event(title="Other Show", starts_at=starts_at, ends_at=starts_at + timedelta(hours=2))
    db_session.add(other)
    await db_session.flush()
    other_category = TicketCategory(event_id=other.id, name="GA", price_cents=1000, capacity=50)
    db_session.add(other_category)
    await db_session.commit()

    with pytest.raises(InvalidCartError):
        await checkout_service.create_order(
            db_session,
            "user-1",
            [CartItem(category_id=vip_id, quantity=1), CartItem(category_id=other_category.id, quantity=1)],
            customer,
            gateway,
        )


@pytest.mark.asyncio
async def test_unpublished_event_rejected(db_session: AsyncSession, gateway, customer, vip_id, test_event):
    test_event.status = "draft"
    await db_session.commit()

    with pytest.raises(InvalidCartError):
        await checkout_service.create_order(
            db_session, "user-1", [CartItem(category_id=vip_id, quantity=1)], customer, gateway
        )


@pytest.mark.asyncio
async def test_per_category_limit_enforced(db_session: AsyncSession, gateway, customer, ga_id):
    with pytest.raises(InvalidCartError):
        await checkout_service.create_order(
            db_session, "user-1", [CartItem(category_id=ga_id, quantity=11)], customer, gateway
        )


@pytest.mark.asyncio
async def test_insufficient_inventory_names_category(db_session: AsyncSession, vip_id, place_order):
    await place_order(vip_id, 8, user_id="early-bird")

    with pytest.raises(InsufficientInventoryError) as exc_info:
        await place_order(vip_id, 3)
    assert exc_info.value.category_id == vip_id
    assert exc_info.value.remaining == 2

    count = (await db_session.execute(select(func.count(Order.id)))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_gateway_failure_cancels_order(db_session: AsyncSession, customer, vip_id):
    """No orphan order keeps holding inventory when the provider is down."""
    with pytest.raises(ExternalDependencyError):
        await checkout_service.create_order(
            db_session,
            "user-1",
            [CartItem(category_id=vip_id, quantity=4)],
            customer,
            FailingGateway("whsec-test"),
        )

    orders = (await db_session.execute(select(Order))).scalars().all()
    assert len(orders) == 1
    assert orders[0].status == OrderStatus.CANCELLED.value

    status = await inventory_service.get_inventory_status(db_session, vip_id)
    assert status.held == 0
    assert status.available == 10


@pytest.mark.asyncio
async def test_version_conflict_is_retried(db_session: AsyncSession, vip_id, place_order, monkeypatch):
    """The first claim loses the version race; the retry succeeds."""
    original_claim = inventory_service.claim_capacity
    calls = {"n": 0}

    async def flaky_claim(db, category_id, quantity, now=None):
        calls["n"] += 1
        claimed, result = await original_claim(db, category_id, quantity, now=now)
        if calls["n"] == 1:
            return False, result
        return claimed, result

    monkeypatch.setattr(inventory_service, "claim_capacity", flaky_claim)

    result = await place_order(vip_id, 2)
    assert calls["n"] == 2
    assert result.order.status == OrderStatus.PENDING_PAYMENT.value


@pytest.mark.asyncio
async def test_cancel_order_releases_hold(db_session: AsyncSession, vip_id, place_order):
    result = await place_order(vip_id, 5)

    order = await checkout_service.cancel_order(db_session, result.order.id, "user-1")
    assert order.status == OrderStatus.CANCELLED.value

    status = await inventory_service.get_inventory_status(db_session, vip_id)
    assert status.held == 0


@pytest.mark.asyncio
async def test_cancel_paid_order_requires_refund(db_session: AsyncSession, vip_id, paid_order):
    order = await paid_order(vip_id, 1)

    with pytest.raises(IllegalTransitionError):
        await checkout_service.cancel_order(db_session, order.id, "user-1")


@pytest.mark.asyncio
async def test_retry_payment_replaces_reference(db_session: AsyncSession, gateway, vip_id, place_order):
    result = await place_order(vip_id, 1)
    first_reference = result.order.payment_reference

    retried = await checkout_service.retry_payment(db_session, result.order.id, "user-1", gateway)
    assert retried.order.payment_reference == retried.intent.intent_id
    assert retried.order.payment_reference != first_reference
    assert retried.order.status == OrderStatus.PENDING_PAYMENT.value
    assert gateway.canceled == {first_reference}


@pytest.mark.asyncio
async def test_retry_payment_keeps_every_intent(db_session: AsyncSession, gateway, vip_id, place_order):
    result = await place_order(vip_id, 1)
    first_reference = result.order.payment_reference

    retried = await checkout_service.retry_payment(db_session, result.order.id, "user-1", gateway)

    attempts = (
        await db_session.execute(
            select(PaymentAttempt).where(PaymentAttempt.order_id == result.order.id).order_by(PaymentAttempt.id)
        )
    ).scalars().all()
    assert [a.intent_id for a in attempts] == [first_reference, retried.intent.intent_id]
    assert attempts[0].superseded_at is not None
    assert attempts[1].superseded_at is None


@pytest.mark.asyncio
async def test_retry_payment_after_lapse_expires_order(db_session: AsyncSession, gateway, vip_id, place_order):
    result = await place_order(vip_id, 1)
    order_id = result.order.id
    await expire_hold(db_session, order_id)

    with pytest.raises(IllegalTransitionError):
        await checkout_service.retry_payment(db_session, order_id, "user-1", gateway)

    order = await checkout_service.get_order(db_session, order_id)
    assert order.status == OrderStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_list_user_orders_and_stats(db_session: AsyncSession, event_id, vip_id, ga_id, place_order, paid_order):
    await place_order(ga_id, 1)
    paid = await paid_order(vip_id, 1)
    await place_order(ga_id, 2, user_id="someone-else")

    mine = await checkout_service.list_user_orders(db_session, "user-1")
    assert len(mine) == 2
    only_paid = await checkout_service.list_user_orders(db_session, "user-1", status="paid")
    assert [o.id for o in only_paid] == [paid.id]

    stats = await checkout_service.get_order_stats(db_session, event_id=event_id)
    assert stats["counts"]["pending_payment"] == 2
    assert stats["counts"]["paid"] == 1
    assert stats["total_orders"] == 3
    assert stats["paid_revenue_cents"] == paid.total_cents
