"""
Payment bridge: applies payment provider events and refunds to orders.

Provider events are at-least-once and may arrive out of order, so every
handler is idempotent:

  succeeded  -> paid + tickets, once. A replay re-runs ticket issuance
                (itself idempotent) and reports already_processed.
  failed     -> no state change; the hold stays so the customer can retry.
  canceled   -> cancelled, unless the order is already paid or terminal, or
                the intent was superseded by a payment retry.

Events for intents superseded by a retry still resolve to their order. A
capture on an old intent pays a pending order; once the order is paid, a
capture on any other intent is refunded.

A success for an order whose hold lapsed but was not swept yet re-claims its
units through the category version guard. If they are gone the order is
expired and the captured payment refunded.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.config import get_settings
from boxoffice.core.errors import (
    AlreadyProcessedError,
    DomainError,
    ExternalDependencyError,
    IllegalTransitionError,
    InvalidAmountError,
)
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import capacity_guard_retries, record_payment_event
from boxoffice.db.base import utcnow
from boxoffice.models.order import Order, OrderStatus, PaymentAttempt
from boxoffice.models.ticket import UNUSED_STATUSES
from boxoffice.services import inventory_service, notification_service, ticket_service
from boxoffice.services.interfaces.notifier import Notifier
from boxoffice.services.interfaces.payment_gateway import PaymentGateway
from boxoffice.services.order_state import is_terminal, load_order, transition

logger = get_logger(__name__)


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class WebhookResult:
    outcome: WebhookOutcome
    order_id: Optional[int] = None


@dataclass(frozen=True)
class RefundResult:
    order: Order
    refund_reference: str
    refunded_cents: int
    tickets_voided: int


@dataclass(frozen=True)
class PaymentEvent:
    kind: str  # succeeded, failed, canceled, or the raw type when unrecognised
    intent_id: Optional[str]
    amount: Optional[int]
    event_id: Optional[str]


def parse_event(event: dict) -> PaymentEvent:
    """
    Normalise a provider event.

    Accepts {"id", "type", "data": {"object": {...}}} as well as the short
    form {"type", "object": {...}}.
    """
    event_type = str(event.get("type", ""))
    obj = (event.get("data") or {}).get("object") or event.get("object") or {}

    suffix = event_type.rsplit(".", 1)[-1]
    if suffix == "succeeded":
        kind = "succeeded"
    elif suffix in ("payment_failed", "failed"):
        kind = "failed"
    elif suffix in ("canceled", "cancelled"):
        kind = "canceled"
    else:
        kind = event_type or "unknown"

    amount = obj.get("amount")
    return PaymentEvent(
        kind=kind,
        intent_id=obj.get("id"),
        amount=int(amount) if amount is not None else None,
        event_id=event.get("id"),
    )


async def _find_by_reference(db: AsyncSession, intent_id: Optional[str]) -> Optional[Order]:
    """Resolve an intent to its order, including intents superseded by a retry."""
    if not intent_id:
        return None
    result = await db.execute(
        select(Order)
        .where(Order.payment_reference == intent_id)
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is not None:
        return order
    result = await db.execute(
        select(Order)
        .join(PaymentAttempt, PaymentAttempt.order_id == Order.id)
        .where(PaymentAttempt.intent_id == intent_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _result(kind: str, outcome: WebhookOutcome, order_id: Optional[int] = None) -> WebhookResult:
    record_payment_event(kind, outcome.value)
    return WebhookResult(outcome=outcome, order_id=order_id)


async def _reclaim_lapsed_hold(db: AsyncSession, order_id: int, items: list[tuple[int, int]], now: datetime) -> bool:
    """
    Take a lapsed order's units back through the category version guard.

    Returns False when the units are gone, or when every attempt lost the
    version race. A lost race rolls back, which expires loaded instances;
    the caller reloads the order afterwards.
    """
    max_attempts = get_settings().CHECKOUT_MAX_RETRIES
    for attempt in range(1, max_attempts + 1):
        conflict = False
        for category_id, quantity in sorted(items):
            claimed, result = await inventory_service.claim_capacity(
                db, category_id, quantity, now=now, exclude_order_id=order_id
            )
            if not result.ok:
                return False
            if not claimed:
                conflict = True
                break
        if not conflict:
            return True
        await db.rollback()
        capacity_guard_retries.inc()
        logger.info("late_payment_claim_conflict", order_id=order_id, attempt=attempt)
    logger.warning("late_payment_claim_exhausted", order_id=order_id, attempts=max_attempts)
    return False


async def _notify_paid(db: AsyncSession, notifier: Optional[Notifier], order_id: int) -> None:
    if notifier is None:
        return
    await notification_service.send_order_confirmation(db, notifier, order_id)
    await notification_service.send_ticket_delivery(db, notifier, order_id)


def _refund_key(order: Order, intent_id: Optional[str]) -> str:
    # One refund per captured intent; the current intent keeps the plain key
    if intent_id is None or intent_id == order.payment_reference:
        return f"refund-{order.id}"
    return f"refund-{order.id}-{intent_id}"


async def _refund_unfulfilled(
    gateway: PaymentGateway, order: Order, event: PaymentEvent, reason: str = "late_payment"
) -> str:
    """Return a captured payment for an order that will not be fulfilled."""
    refund_reference = await gateway.refund(
        event.intent_id, event.amount or order.total_cents, _refund_key(order, event.intent_id)
    )
    logger.warning(
        "unfulfilled_payment_refunded",
        order_id=order.id,
        intent_id=event.intent_id,
        status=order.status,
        reason=reason,
        refund_reference=refund_reference,
    )
    return refund_reference


async def _cancel_quietly(gateway: PaymentGateway, order_id: int, intent_id: str) -> None:
    try:
        await gateway.cancel_intent(intent_id)
    except Exception as e:
        logger.warning("payment_intent_cancel_failed", order_id=order_id, intent_id=intent_id, error=str(e))


async def _handle_succeeded(
    db: AsyncSession,
    event: PaymentEvent,
    gateway: PaymentGateway,
    notifier: Optional[Notifier],
    now: datetime,
) -> WebhookResult:
    order = await _find_by_reference(db, event.intent_id)
    if not order:
        logger.warning("payment_order_not_found", intent_id=event.intent_id, kind=event.kind)
        return _result(event.kind, WebhookOutcome.IGNORED)

    if event.amount is not None and event.amount != order.total_cents:
        logger.warning(
            "payment_amount_mismatch",
            order_id=order.id,
            expected=order.total_cents,
            received=event.amount,
        )
        return _result(event.kind, WebhookOutcome.IGNORED, order.id)

    current_intent = event.intent_id == order.payment_reference

    if order.status == OrderStatus.PAID.value:
        if not current_intent:
            # A second intent for the same order was captured
            await _refund_unfulfilled(gateway, order, event, reason="duplicate_capture")
            return _result(event.kind, WebhookOutcome.IGNORED, order.id)
        await ticket_service.issue_tickets(db, order.id)
        logger.info("payment_event_duplicate", order_id=order.id, event_id=event.event_id)
        return _result(event.kind, WebhookOutcome.ALREADY_PROCESSED, order.id)

    if order.status in (OrderStatus.EXPIRED.value, OrderStatus.CANCELLED.value):
        await _refund_unfulfilled(gateway, order, event)
        return _result(event.kind, WebhookOutcome.IGNORED, order.id)

    if order.status != OrderStatus.PENDING_PAYMENT.value:
        logger.warning("payment_event_ignored", order_id=order.id, status=order.status, kind=event.kind)
        return _result(event.kind, WebhookOutcome.IGNORED, order.id)

    if order.expires_at is not None and order.expires_at <= now:
        order_id = order.id
        items = [(item.category_id, item.quantity) for item in order.items]
        reclaimed = await _reclaim_lapsed_hold(db, order_id, items, now)
        order = await load_order(db, order_id)
        if order.status != OrderStatus.PENDING_PAYMENT.value:
            # Moved while the claim was retried; apply the event to the new state
            return await _handle_succeeded(db, event, gateway, notifier, now)
        if not reclaimed:
            await transition(db, order, OrderStatus.EXPIRED, now=now)
            await _refund_unfulfilled(gateway, order, event)
            await db.commit()
            return _result(event.kind, WebhookOutcome.IGNORED, order.id)
        logger.info("late_payment_accepted", order_id=order.id)

    values = {}
    replaced_intent = None
    if event.intent_id != order.payment_reference:
        values["payment_reference"] = event.intent_id
        replaced_intent = order.payment_reference

    try:
        await transition(db, order, OrderStatus.PAID, now=now, **values)
    except AlreadyProcessedError:
        await ticket_service.issue_tickets(db, order.id)
        return _result(event.kind, WebhookOutcome.ALREADY_PROCESSED, order.id)

    if replaced_intent is not None:
        await db.execute(
            update(PaymentAttempt)
            .where(
                PaymentAttempt.order_id == order.id,
                PaymentAttempt.intent_id != event.intent_id,
                PaymentAttempt.superseded_at.is_(None),
            )
            .values(superseded_at=now)
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "payment_on_superseded_intent",
            order_id=order.id,
            intent_id=event.intent_id,
            replaced_intent=replaced_intent,
        )

    await ticket_service.issue_tickets(db, order.id)
    await db.commit()
    logger.info("payment_succeeded", order_id=order.id, amount=order.total_cents)

    if replaced_intent is not None:
        await _cancel_quietly(gateway, order.id, replaced_intent)
    await _notify_paid(db, notifier, order.id)
    return _result(event.kind, WebhookOutcome.PROCESSED, order.id)


async def _handle_canceled(db: AsyncSession, event: PaymentEvent) -> WebhookResult:
    order = await _find_by_reference(db, event.intent_id)
    if not order:
        logger.warning("payment_order_not_found", intent_id=event.intent_id, kind=event.kind)
        return _result(event.kind, WebhookOutcome.IGNORED)

    if event.intent_id != order.payment_reference:
        # Cancelling a superseded intent leaves the order on its current one
        logger.info("payment_event_superseded", order_id=order.id, intent_id=event.intent_id, kind=event.kind)
        return _result(event.kind, WebhookOutcome.IGNORED, order.id)

    if order.status == OrderStatus.CANCELLED.value:
        return _result(event.kind, WebhookOutcome.ALREADY_PROCESSED, order.id)
    if order.status == OrderStatus.PAID.value or is_terminal(order.status):
        logger.info("payment_event_ignored", order_id=order.id, status=order.status, kind=event.kind)
        return _result(event.kind, WebhookOutcome.IGNORED, order.id)

    try:
        await transition(db, order, OrderStatus.CANCELLED)
    except AlreadyProcessedError:
        return _result(event.kind, WebhookOutcome.ALREADY_PROCESSED, order.id)
    except IllegalTransitionError:
        return _result(event.kind, WebhookOutcome.IGNORED, order.id)
    await db.commit()
    return _result(event.kind, WebhookOutcome.PROCESSED, order.id)


async def handle_event(
    db: AsyncSession,
    event: dict,
    gateway: PaymentGateway,
    notifier: Optional[Notifier] = None,
    now: datetime | None = None,
) -> WebhookResult:
    """Apply one verified provider event."""
    now = now or utcnow()
    parsed = parse_event(event)
    logger.info("payment_event_received", kind=parsed.kind, intent_id=parsed.intent_id, event_id=parsed.event_id)

    if parsed.kind == "succeeded":
        return await _handle_succeeded(db, parsed, gateway, notifier, now)

    if parsed.kind == "failed":
        order = await _find_by_reference(db, parsed.intent_id)
        logger.info(
            "payment_failed",
            intent_id=parsed.intent_id,
            order_id=order.id if order else None,
        )
        return _result(parsed.kind, WebhookOutcome.IGNORED, order.id if order else None)

    if parsed.kind == "canceled":
        return await _handle_canceled(db, parsed)

    logger.info("payment_event_unhandled", type=parsed.kind)
    return _result(parsed.kind, WebhookOutcome.IGNORED)


async def process_refund(
    db: AsyncSession,
    order_id: int,
    gateway: PaymentGateway,
    amount: Optional[int] = None,
) -> RefundResult:
    """
    Refund a paid order through the gateway, then mark it refunded.

    The gateway call carries idempotency key `refund-<order_id>`, so a retry
    after a lost response never refunds twice. Unused tickets are voided by
    the transition; used tickets stay used.
    """
    order = await load_order(db, order_id)
    if order.status != OrderStatus.PAID.value:
        raise IllegalTransitionError(
            order.status,
            OrderStatus.REFUNDED.value,
            reason=f"Only paid orders can be refunded (order is {order.status})",
        )

    amount = order.total_cents if amount is None else amount
    if amount <= 0 or amount > order.total_cents:
        raise InvalidAmountError(
            f"Refund amount must be between 1 and {order.total_cents}",
            order_id=order.id,
            amount=amount,
        )

    try:
        refund_reference = await gateway.refund(order.payment_reference, amount, f"refund-{order.id}")
    except DomainError:
        raise
    except Exception as e:
        logger.error("refund_failed", order_id=order.id, error=str(e))
        raise ExternalDependencyError("payment", "Refund could not be processed") from e

    unused_before = sum(1 for t in order.tickets if t.status in UNUSED_STATUSES)

    order = await transition(
        db,
        order,
        OrderStatus.REFUNDED,
        refund_reference=refund_reference,
        refunded_cents=amount,
    )
    await db.commit()

    logger.info(
        "order_refunded",
        order_id=order.id,
        amount=amount,
        refund_reference=refund_reference,
        tickets_voided=unused_before,
    )
    return RefundResult(
        order=await load_order(db, order.id),
        refund_reference=refund_reference,
        refunded_cents=amount,
        tickets_voided=unused_before,
    )


PAYMENT_STATUS_MAP = {
    OrderStatus.CREATED.value: "pending",
    OrderStatus.PENDING_PAYMENT.value: "pending",
    OrderStatus.PAID.value: "paid",
    OrderStatus.REFUNDED.value: "refunded",
    OrderStatus.EXPIRED.value: "failed",
    OrderStatus.CANCELLED.value: "cancelled",
}


async def get_payment_status(db: AsyncSession, order_id: int, user_id: Optional[str] = None) -> dict:
    order = await load_order(db, order_id, user_id=user_id)
    return {
        "order_id": order.id,
        "status": PAYMENT_STATUS_MAP[order.status],
        "order_status": order.status,
        "amount_cents": order.total_cents,
        "currency": order.currency,
        "payment_reference": order.payment_reference,
        "paid_at": order.paid_at,
    }
