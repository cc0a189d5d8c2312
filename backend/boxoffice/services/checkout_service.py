"""
Checkout: turns a cart into a held order with a payment intent.

FLOW
====
  1. Validate the cart (one published event, positive quantities, limits)
  2. Advisory availability check for a friendly error
  3. Price the cart from current category prices (snapshot into items)
  4. One transaction: claim capacity per category (ascending id), insert the
     order as `created` with a hold window, insert the items, commit.
     A version conflict on any category rolls the whole attempt back and
     retries up to CHECKOUT_MAX_RETRIES.
  5. Open a payment intent. On success the order moves to
     `pending_payment`; on failure it is cancelled (compensation) so no
     orphan order keeps holding inventory.
  6. Retrying payment opens a new intent and supersedes the old one. Every
     intent is kept in `payment_attempts`, and the old one is cancelled at
     the provider best-effort; if it is captured anyway the webhook still
     finds the order.

Categories are always claimed in ascending id order so two carts touching
the same categories contend on them in the same sequence.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.config import get_settings
from boxoffice.core.errors import (
    ExternalDependencyError,
    IllegalTransitionError,
    InsufficientInventoryError,
    InvalidCartError,
)
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import capacity_guard_retries, checkout_latency, record_checkout
from boxoffice.db.base import utcnow
from boxoffice.models.event import Event, TicketCategory
from boxoffice.models.order import Order, OrderItem, OrderStatus, PaymentAttempt
from boxoffice.schemas.order import CartItem, CustomerDetails
from boxoffice.services import inventory_service
from boxoffice.services.interfaces.payment_gateway import CustomerContact, PaymentGateway, PaymentIntent
from boxoffice.services.order_state import load_order, transition

logger = get_logger(__name__)


@dataclass
class CheckoutResult:
    order: Order
    intent: PaymentIntent


def calculate_fees(subtotal_cents: int, fee_percent: int | None = None) -> int:
    """Service fee in minor units, rounded half-up."""
    if fee_percent is None:
        fee_percent = get_settings().SERVICE_FEE_PERCENT
    fees = Decimal(subtotal_cents) * Decimal(fee_percent) / Decimal(100)
    return int(fees.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _merge_lines(cart: list[CartItem]) -> "OrderedDict[int, int]":
    if not cart:
        raise InvalidCartError("Cart is empty")

    merged: OrderedDict[int, int] = OrderedDict()
    for line in cart:
        if line.quantity <= 0:
            raise InvalidCartError(
                "Quantity must be positive",
                category_id=line.category_id,
                quantity=line.quantity,
            )
        merged[line.category_id] = merged.get(line.category_id, 0) + line.quantity
    return OrderedDict(sorted(merged.items()))


async def _validate_cart(db: AsyncSession, cart: list[CartItem]) -> tuple[OrderedDict, list[TicketCategory]]:
    lines = _merge_lines(cart)
    settings = get_settings()

    total_quantity = sum(lines.values())
    if total_quantity > settings.MAX_TICKETS_PER_ORDER:
        raise InvalidCartError(
            f"At most {settings.MAX_TICKETS_PER_ORDER} tickets per order",
            requested=total_quantity,
        )

    categories = [await inventory_service.get_category(db, category_id) for category_id in lines]

    event_ids = {category.event_id for category in categories}
    if len(event_ids) > 1:
        raise InvalidCartError("All items must belong to the same event", event_ids=sorted(event_ids))

    event = await db.get(Event, categories[0].event_id)
    if event.status != "published":
        raise InvalidCartError("Event is not on sale", event_id=event.id, status=event.status)

    for category in categories:
        if lines[category.id] > category.max_per_order:
            raise InvalidCartError(
                f"At most {category.max_per_order} tickets of {category.name} per order",
                category_id=category.id,
                requested=lines[category.id],
            )
    return lines, categories


async def _reserve(
    db: AsyncSession,
    user_id: str,
    event_id: int,
    lines: "OrderedDict[int, int]",
    customer: CustomerDetails,
) -> Order:
    """Claim capacity and persist the order atomically, retrying on version conflicts."""
    settings = get_settings()
    max_attempts = settings.CHECKOUT_MAX_RETRIES

    for attempt in range(1, max_attempts + 1):
        now = utcnow()
        conflict = False
        prices: dict[int, int] = {}
        currency = settings.DEFAULT_CURRENCY

        for category_id, quantity in lines.items():
            claimed, result = await inventory_service.claim_capacity(db, category_id, quantity, now=now)
            if not result.ok:
                await db.rollback()
                raise InsufficientInventoryError(
                    category_id, quantity, result.remaining, result.reason.value
                )
            if not claimed:
                conflict = True
                break
            category = await inventory_service.get_category(db, category_id)
            prices[category_id] = category.price_cents
            currency = category.currency or currency

        if conflict:
            await db.rollback()
            capacity_guard_retries.inc()
            logger.info("checkout_retry", user_id=user_id, attempt=attempt, reason="version_conflict")
            continue

        subtotal = sum(prices[category_id] * quantity for category_id, quantity in lines.items())
        fees = calculate_fees(subtotal)

        order = Order(
            user_id=user_id,
            event_id=event_id,
            status=OrderStatus.CREATED.value,
            subtotal_cents=subtotal,
            fees_cents=fees,
            total_cents=subtotal + fees,
            currency=currency,
            expires_at=now + timedelta(minutes=settings.ORDER_HOLD_MINUTES),
            customer_email=customer.email,
            customer_name=customer.name,
            billing_address=customer.billing_address,
        )
        db.add(order)
        await db.flush()
        db.add_all([
            OrderItem(
                order_id=order.id,
                category_id=category_id,
                quantity=quantity,
                unit_price_cents=prices[category_id],
            )
            for category_id, quantity in lines.items()
        ])
        await db.commit()

        logger.info(
            "order_created",
            order_id=order.id,
            user_id=user_id,
            event_id=event_id,
            total_cents=order.total_cents,
            attempt=attempt,
        )
        return order

    raise InsufficientInventoryError(
        next(iter(lines)),
        lines[next(iter(lines))],
        0,
        "contention",
    )


async def create_order(
    db: AsyncSession,
    user_id: str,
    cart: list[CartItem],
    customer: CustomerDetails,
    gateway: PaymentGateway,
) -> CheckoutResult:
    """
    Reserve a cart and open a payment intent.

    Raises:
        InvalidCartError: cart is empty, spans events, or breaks a limit
        InsufficientInventoryError: a category cannot cover its quantity
        ExternalDependencyError: payment provider failed (order is cancelled)
    """
    start = time.perf_counter()
    try:
        try:
            lines, categories = await _validate_cart(db, cart)
        except InvalidCartError:
            record_checkout("invalid")
            raise
        event_id = categories[0].event_id

        results = await inventory_service.check_batch(db, list(lines.items()))
        for category_id, result in results.items():
            if not result.ok:
                record_checkout("insufficient")
                logger.warning(
                    "checkout_insufficient_inventory",
                    category_id=category_id,
                    requested=result.requested,
                    remaining=result.remaining,
                    reason=result.reason.value,
                )
                raise InsufficientInventoryError(
                    category_id, result.requested, result.remaining, result.reason.value
                )

        try:
            order = await _reserve(db, user_id, event_id, lines, customer)
        except InsufficientInventoryError:
            record_checkout("insufficient")
            raise

        try:
            intent = await gateway.create_intent(
                order.id,
                order.total_cents,
                order.currency,
                CustomerContact(email=customer.email, name=customer.name),
            )
        except Exception as e:
            logger.error("checkout_payment_intent_failed", order_id=order.id, error=str(e))
            await transition(db, order, OrderStatus.CANCELLED)
            await db.commit()
            record_checkout("gateway_error")
            if isinstance(e, ExternalDependencyError):
                raise
            raise ExternalDependencyError("payment", "Could not create payment intent") from e

        await transition(
            db,
            order,
            OrderStatus.PENDING_PAYMENT,
            payment_reference=intent.intent_id,
            payment_method=gateway.name,
        )
        db.add(PaymentAttempt(order_id=order.id, intent_id=intent.intent_id, amount_cents=order.total_cents))
        await db.commit()

        record_checkout("created")
        return CheckoutResult(order=await load_order(db, order.id), intent=intent)
    finally:
        checkout_latency.observe(time.perf_counter() - start)


async def retry_payment(
    db: AsyncSession,
    order_id: int,
    user_id: str,
    gateway: PaymentGateway,
    now: datetime | None = None,
) -> CheckoutResult:
    """Open a fresh payment intent for a still-held order."""
    now = now or utcnow()
    order = await load_order(db, order_id, user_id=user_id)

    if order.status != OrderStatus.PENDING_PAYMENT.value:
        raise IllegalTransitionError(
            order.status,
            OrderStatus.PENDING_PAYMENT.value,
            reason=f"Cannot retry payment for a {order.status} order",
        )

    if order.expires_at is not None and order.expires_at <= now:
        await transition(db, order, OrderStatus.EXPIRED, now=now)
        await db.commit()
        raise IllegalTransitionError(
            OrderStatus.EXPIRED.value,
            OrderStatus.PENDING_PAYMENT.value,
            reason="Order hold has expired",
        )

    attempts = (
        await db.execute(
            select(PaymentAttempt)
            .where(PaymentAttempt.order_id == order.id)
            .order_by(PaymentAttempt.id)
        )
    ).scalars().all()

    try:
        intent = await gateway.create_intent(
            order.id,
            order.total_cents,
            order.currency,
            CustomerContact(email=order.customer_email or "", name=order.customer_name or ""),
            attempt=len(attempts) + 1,
        )
    except ExternalDependencyError:
        raise
    except Exception as e:
        raise ExternalDependencyError("payment", "Could not create payment intent") from e

    # The old intent stays resolvable: a capture on it still pays this order
    previous = order.payment_reference
    for prior in attempts:
        if prior.superseded_at is None:
            prior.superseded_at = now
    db.add(PaymentAttempt(order_id=order.id, intent_id=intent.intent_id, amount_cents=order.total_cents))
    order.payment_reference = intent.intent_id
    await db.commit()

    logger.info("payment_retried", order_id=order.id, previous_reference=previous, reference=intent.intent_id)

    if previous:
        try:
            await gateway.cancel_intent(previous)
        except Exception as e:
            logger.warning("payment_intent_cancel_failed", order_id=order.id, intent_id=previous, error=str(e))
    return CheckoutResult(order=await load_order(db, order.id), intent=intent)


async def cancel_order(db: AsyncSession, order_id: int, user_id: str) -> Order:
    """Customer cancellation. Paid orders must be refunded instead."""
    order = await load_order(db, order_id, user_id=user_id)
    if order.status == OrderStatus.PAID.value:
        raise IllegalTransitionError(
            order.status,
            OrderStatus.CANCELLED.value,
            reason="Paid orders cannot be cancelled; request a refund",
        )
    order = await transition(db, order, OrderStatus.CANCELLED)
    logger.info("order_cancelled", order_id=order.id, user_id=user_id)
    return order


async def get_order(db: AsyncSession, order_id: int, user_id: Optional[str] = None) -> Order:
    return await load_order(db, order_id, user_id=user_id)


async def list_user_orders(db: AsyncSession, user_id: str, status: Optional[str] = None) -> list[Order]:
    query = select(Order).where(Order.user_id == user_id)
    if status:
        query = query.where(Order.status == OrderStatus(status).value)
    result = await db.execute(query.order_by(Order.created_at.desc(), Order.id.desc()))
    return list(result.scalars().all())


async def get_order_stats(db: AsyncSession, event_id: Optional[int] = None) -> dict:
    """Per-status order counts and paid revenue."""
    query = select(Order.status, func.count(Order.id)).group_by(Order.status)
    revenue_query = select(func.coalesce(func.sum(Order.total_cents), 0)).where(
        Order.status == OrderStatus.PAID.value
    )
    if event_id is not None:
        query = query.where(Order.event_id == event_id)
        revenue_query = revenue_query.where(Order.event_id == event_id)

    counts = {status.value: 0 for status in OrderStatus}
    for status, count in (await db.execute(query)).all():
        counts[status] = count

    revenue = int((await db.execute(revenue_query)).scalar_one())
    return {
        "counts": counts,
        "total_orders": sum(counts.values()),
        "paid_revenue_cents": revenue,
    }
