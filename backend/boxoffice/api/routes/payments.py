"""
Payment provider webhook, payment status and refunds.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.session import get_db
from boxoffice.schemas.payment import PaymentStatusResponse, RefundRequest, RefundResponse, WebhookAck
from boxoffice.services import payment_service
from boxoffice.services.collaborator_factory import get_notifier, get_payment_gateway
from boxoffice.services.interfaces.notifier import Notifier
from boxoffice.services.interfaces.payment_gateway import PaymentGateway
from boxoffice.core.security import get_current_user_id, require_admin

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Signed provider events. Safe to replay: duplicates are acknowledged with
    outcome `already_processed` and change nothing.
    """
    payload = await request.body()
    event = gateway.verify_webhook(payload, dict(request.headers))
    result = await payment_service.handle_event(db, event, gateway, notifier)
    return WebhookAck(outcome=result.outcome.value, order_id=result.order_id)


@router.get("/{order_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    order_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await payment_service.get_payment_status(db, order_id, user_id=user_id)


@router.post("/{order_id}/refund", response_model=RefundResponse)
async def refund_order(
    order_id: int,
    refund: RefundRequest,
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Refund a paid order and void its unused tickets. Admin only."""
    result = await payment_service.process_refund(db, order_id, gateway, amount=refund.amount_cents)
    return RefundResponse(
        order_id=result.order.id,
        status=result.order.status,
        refund_reference=result.refund_reference,
        refunded_cents=result.refunded_cents,
        tickets_voided=result.tickets_voided,
    )
