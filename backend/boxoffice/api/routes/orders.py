"""
Checkout and order endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.session import get_db
from boxoffice.schemas.order import CheckoutResponse, OrderCreate, OrderResponse, PaymentHandle
from boxoffice.schemas.ticket import TicketResponse
from boxoffice.services import checkout_service, ticket_service
from boxoffice.services.collaborator_factory import get_payment_gateway
from boxoffice.services.interfaces.payment_gateway import PaymentGateway
from boxoffice.core.security import get_current_user_id

router = APIRouter(prefix="/orders", tags=["Orders"])


def _checkout_response(result: checkout_service.CheckoutResult) -> CheckoutResponse:
    return CheckoutResponse(
        order=OrderResponse.model_validate(result.order),
        payment=PaymentHandle(
            intent_id=result.intent.intent_id,
            client_secret=result.intent.client_secret,
        ),
    )


@router.post("/", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_order_endpoint(
    order_data: OrderCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Reserve a cart and open a payment intent.

    The order holds its tickets for ORDER_HOLD_MINUTES. Concurrent checkouts
    of the same category are serialized by the category version guard and
    retried; a cart that can no longer be covered gets 409
    INSUFFICIENT_INVENTORY.
    """
    result = await checkout_service.create_order(
        db, user_id, order_data.items, order_data.customer, gateway
    )
    return _checkout_response(result)


@router.get("/", response_model=list[OrderResponse])
async def list_orders(
    status_filter: Optional[str] = Query(
        None,
        alias="status",
        pattern="^(created|pending_payment|paid|cancelled|expired|refunded)$",
    ),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await checkout_service.list_user_orders(db, user_id, status=status_filter)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await checkout_service.get_order(db, order_id, user_id=user_id)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await checkout_service.cancel_order(db, order_id, user_id)


@router.post("/{order_id}/retry-payment", response_model=CheckoutResponse)
async def retry_payment(
    order_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    result = await checkout_service.retry_payment(db, order_id, user_id, gateway)
    return _checkout_response(result)


@router.get("/{order_id}/tickets", response_model=list[TicketResponse])
async def list_order_tickets(
    order_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    # Ownership check first; another user's order is a 404
    await checkout_service.get_order(db, order_id, user_id=user_id)
    return await ticket_service.get_order_tickets(db, order_id)
