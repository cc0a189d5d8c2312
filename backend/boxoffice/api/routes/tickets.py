"""
Ticket endpoints: the holder's tickets and gate operations.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.session import get_db
from boxoffice.schemas.ticket import (
    TicketCodeRequest,
    TicketContextResponse,
    TicketResponse,
    TicketValidationResponse,
)
from boxoffice.services import ticket_service
from boxoffice.core.security import get_current_user_id, require_gate_staff

router = APIRouter(prefix="/tickets", tags=["Tickets"])


def _validation_response(result: ticket_service.TicketValidation) -> TicketValidationResponse:
    return TicketValidationResponse(
        valid=result.valid,
        reason=result.reason.value,
        message=result.message,
        ticket=TicketResponse.model_validate(result.ticket) if result.ticket else None,
        used_at=result.used_at,
        context=TicketContextResponse.model_validate(result.context) if result.context else None,
    )


@router.get("/", response_model=list[TicketResponse])
async def list_my_tickets(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await ticket_service.get_user_tickets(db, user_id)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await ticket_service.get_ticket(db, ticket_id, user_id=user_id)


@router.post("/validate", response_model=TicketValidationResponse)
async def validate_ticket(
    request: TicketCodeRequest,
    staff_id: str = Depends(require_gate_staff),
    db: AsyncSession = Depends(get_db),
):
    """Read-only check; nothing is marked used."""
    return _validation_response(await ticket_service.validate(db, request.code))


@router.post("/redeem", response_model=TicketValidationResponse)
async def redeem_ticket(
    request: TicketCodeRequest,
    staff_id: str = Depends(require_gate_staff),
    db: AsyncSession = Depends(get_db),
):
    """Admit a ticket. Exactly one of any number of concurrent scans succeeds."""
    return _validation_response(await ticket_service.redeem(db, request.code, gate_id=request.gate_id))
