"""
Ticket issuance, validation and one-time redemption.

ISSUANCE
  Only for PAID orders, one ticket per unit per order item. Idempotent: an
  order that already has tickets gets the same tickets back. The order row is
  locked (SELECT ... FOR UPDATE) for the duration, so two concurrent payment
  events cannot both find "no tickets yet".

  Codes and ticket numbers are random with a unique constraint behind them.
  A collision rolls back the savepoint and the batch is regenerated.

REDEMPTION
  Re-validates on every call, then flips the ticket with a conditional update:

    UPDATE tickets SET status = 'used', used_at = :now, used_gate_id = :gate
    WHERE id = :ticket_id AND status IN ('issued', 'active')

  Zero rows means another gate won; the caller gets ALREADY_USED with the
  original timestamp, never an overwrite.
"""

import base64
import json
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from boxoffice.core.config import get_settings
from boxoffice.core.errors import IllegalTransitionError, NotFoundError
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import record_redemption, redemption_latency, tickets_issued
from boxoffice.db.base import utcnow
from boxoffice.models.event import Event
from boxoffice.models.order import Order, OrderStatus
from boxoffice.models.ticket import UNUSED_STATUSES, Ticket, TicketStatus

logger = get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
BASE36 = string.digits + string.ascii_uppercase


class ValidationReason(str, Enum):
    VALID = "valid"
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    VOID = "void"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TicketContext:
    """What a gate operator sees next to a scanned ticket."""

    event_id: int
    event_title: str
    venue: Optional[str]
    starts_at: datetime
    ends_at: datetime
    category_name: str
    order_id: int
    order_status: str
    customer_name: Optional[str]
    customer_email: Optional[str]
    total_cents: int
    currency: str


@dataclass
class TicketValidation:
    valid: bool
    reason: ValidationReason
    message: str
    ticket: Optional[Ticket] = None
    used_at: Optional[datetime] = None
    context: Optional[TicketContext] = None


# ----------------------------
# Credential generation
# ----------------------------
def _base36(number: int) -> str:
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_ticket_number(event: Event) -> str:
    letters = "".join(ch for ch in event.title.upper() if ch.isalnum())[:3] or "EVT"
    timestamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(4))
    return f"{letters}{event.id}-{timestamp}-{suffix}"


def validity_window(event: Event) -> tuple[datetime, datetime]:
    grace = timedelta(hours=get_settings().TICKET_GRACE_HOURS)
    return event.starts_at, event.ends_at + grace


def build_qr_payload(code: str, event: Event) -> str:
    """Verification URL carrying the code and its validity window."""
    valid_from, valid_until = validity_window(event)
    data = json.dumps(
        {
            "code": code,
            "event_id": event.id,
            "valid_from": valid_from.isoformat(),
            "valid_until": valid_until.isoformat(),
        },
        separators=(",", ":"),
    )
    encoded = base64.urlsafe_b64encode(data.encode()).decode()
    return f"{get_settings().TICKET_VERIFY_BASE_URL}/{code}?data={encoded}"


def decode_qr_payload(payload: str) -> dict:
    _, _, encoded = payload.partition("?data=")
    if not encoded:
        raise ValueError("QR payload carries no data segment")
    return json.loads(base64.urlsafe_b64decode(encoded.encode()).decode())


def _build_tickets(order: Order) -> list[Ticket]:
    settings = get_settings()
    codes: set[str] = set()
    numbers: set[str] = set()
    tickets = []
    for item in order.items:
        for _ in range(item.quantity):
            code = generate_code(settings.TICKET_CODE_LENGTH)
            while code in codes:
                code = generate_code(settings.TICKET_CODE_LENGTH)
            number = generate_ticket_number(order.event)
            while number in numbers:
                number = generate_ticket_number(order.event)
            codes.add(code)
            numbers.add(number)
            tickets.append(
                Ticket(
                    order_id=order.id,
                    category_id=item.category_id,
                    event_id=order.event_id,
                    user_id=order.user_id,
                    ticket_number=number,
                    code=code,
                    qr_payload=build_qr_payload(code, order.event),
                    status=TicketStatus.ACTIVE.value,
                    issued_at=utcnow(),
                )
            )
    return tickets


# ----------------------------
# Issuance
# ----------------------------
async def _lock_order(db: AsyncSession, order_id: int) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise NotFoundError("Order", order_id)
    return order


async def issue_tickets(db: AsyncSession, order_id: int) -> list[Ticket]:
    """Issue tickets for a paid order; returns the existing set if already issued."""
    order = await _lock_order(db, order_id)

    if order.status != OrderStatus.PAID.value:
        raise IllegalTransitionError(
            order.status,
            OrderStatus.PAID.value,
            reason="Tickets can only be issued for paid orders",
        )

    if order.tickets:
        logger.info("tickets_already_issued", order_id=order_id, count=len(order.tickets))
        return list(order.tickets)

    max_attempts = get_settings().TICKET_CODE_MAX_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        tickets = _build_tickets(order)
        try:
            async with db.begin_nested():
                db.add_all(tickets)
        except IntegrityError:
            logger.warning("ticket_credential_collision", order_id=order_id, attempt=attempt)
            if attempt == max_attempts:
                raise
            continue
        break

    tickets_issued.inc(len(tickets))
    logger.info("tickets_issued", order_id=order_id, count=len(tickets))

    order = await _lock_order(db, order_id)
    return list(order.tickets)


# ----------------------------
# Validation & redemption
# ----------------------------
async def _find_by_code(db: AsyncSession, code: str) -> Optional[Ticket]:
    result = await db.execute(
        select(Ticket)
        .where(Ticket.code == code.strip().upper())
        .options(selectinload(Ticket.order))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _context(ticket: Ticket) -> TicketContext:
    event, order = ticket.event, ticket.order
    return TicketContext(
        event_id=event.id,
        event_title=event.title,
        venue=event.venue,
        starts_at=event.starts_at,
        ends_at=event.ends_at,
        category_name=ticket.category.name,
        order_id=order.id,
        order_status=order.status,
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        total_cents=order.total_cents,
        currency=order.currency,
    )


async def validate(db: AsyncSession, code: str, now: datetime | None = None) -> TicketValidation:
    """Report whether a code would be admitted right now, and why not if it wouldn't."""
    now = now or utcnow()
    ticket = await _find_by_code(db, code)

    if not ticket:
        return TicketValidation(False, ValidationReason.NOT_FOUND, "Ticket not found or invalid code")
    context = _context(ticket)

    if ticket.status == TicketStatus.USED.value:
        return TicketValidation(
            False,
            ValidationReason.ALREADY_USED,
            "Ticket has already been used",
            ticket=ticket,
            used_at=ticket.used_at,
            context=context,
        )

    if ticket.status == TicketStatus.VOID.value:
        return TicketValidation(
            False,
            ValidationReason.VOID,
            "Ticket is void (order was refunded or cancelled)",
            ticket=ticket,
            context=context,
        )

    _, valid_until = validity_window(ticket.event)
    if now > valid_until:
        return TicketValidation(
            False,
            ValidationReason.EXPIRED,
            "Ticket has expired (event has ended)",
            ticket=ticket,
            context=context,
        )

    return TicketValidation(True, ValidationReason.VALID, "Ticket is valid", ticket=ticket, context=context)


async def redeem(
    db: AsyncSession,
    code: str,
    gate_id: str | None = None,
    now: datetime | None = None,
) -> TicketValidation:
    """Admit a ticket exactly once."""
    with redemption_latency.time():
        now = now or utcnow()
        validation = await validate(db, code, now=now)
        if not validation.valid:
            record_redemption(validation.reason.value)
            logger.info("ticket_redeem_rejected", code=code, reason=validation.reason.value)
            return validation

        ticket = validation.ticket
        result = await db.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.status.in_(UNUSED_STATUSES))
            .values(status=TicketStatus.USED.value, used_at=now, used_gate_id=gate_id)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(ticket, attribute_names=["status", "used_at", "used_gate_id"])

        if result.rowcount == 0:
            if ticket.status == TicketStatus.USED.value:
                record_redemption(ValidationReason.ALREADY_USED.value)
                logger.warning("ticket_redeem_lost_race", ticket_id=ticket.id, used_at=str(ticket.used_at))
                return TicketValidation(
                    False,
                    ValidationReason.ALREADY_USED,
                    "Ticket has already been used",
                    ticket=ticket,
                    used_at=ticket.used_at,
                    context=validation.context,
                )
            record_redemption(ValidationReason.VOID.value)
            return TicketValidation(
                False,
                ValidationReason.VOID,
                "Ticket is void (order was refunded or cancelled)",
                ticket=ticket,
                context=validation.context,
            )

        record_redemption("redeemed")
        logger.info("ticket_redeemed", ticket_id=ticket.id, gate_id=gate_id)
        return TicketValidation(
            True,
            ValidationReason.VALID,
            "Ticket successfully used",
            ticket=ticket,
            used_at=ticket.used_at,
            context=validation.context,
        )


async def void_by_order(db: AsyncSession, order_id: int) -> int:
    """Void every unused ticket of an order. Used tickets are left as they are."""
    result = await db.execute(
        update(Ticket)
        .where(Ticket.order_id == order_id, Ticket.status.in_(UNUSED_STATUSES))
        .values(status=TicketStatus.VOID.value)
        .execution_options(synchronize_session=False)
    )
    logger.info("tickets_voided", order_id=order_id, count=result.rowcount)
    return result.rowcount


# ----------------------------
# Queries
# ----------------------------
async def get_ticket(db: AsyncSession, ticket_id: int, user_id: str | None = None) -> Ticket:
    query = select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
    if user_id is not None:
        query = query.where(Ticket.user_id == user_id)
    ticket = (await db.execute(query)).scalar_one_or_none()
    if not ticket:
        raise NotFoundError("Ticket", ticket_id)
    return ticket


async def get_order_tickets(db: AsyncSession, order_id: int) -> list[Ticket]:
    result = await db.execute(
        select(Ticket)
        .where(Ticket.order_id == order_id)
        .order_by(Ticket.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_user_tickets(db: AsyncSession, user_id: str) -> list[Ticket]:
    result = await db.execute(
        select(Ticket)
        .where(Ticket.user_id == user_id)
        .order_by(Ticket.issued_at.desc(), Ticket.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_ticket_stats(db: AsyncSession, event_id: int) -> dict:
    result = await db.execute(
        select(Ticket.status, func.count())
        .where(Ticket.event_id == event_id)
        .group_by(Ticket.status)
    )
    counts = {status: count for status, count in result.all()}
    total = sum(counts.values())
    used = counts.get(TicketStatus.USED.value, 0)
    return {
        "total": total,
        "active": counts.get(TicketStatus.ACTIVE.value, 0) + counts.get(TicketStatus.ISSUED.value, 0),
        "used": used,
        "void": counts.get(TicketStatus.VOID.value, 0),
        "usage_rate": round(used / total * 100, 2) if total else 0.0,
    }
