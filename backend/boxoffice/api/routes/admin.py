"""
Operational endpoints: on-demand sweep, event reminders and lifecycle
statistics.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.session import get_db
from boxoffice.services import (
    checkout_service,
    inventory_service,
    notification_service,
    sweep_service,
    ticket_service,
)
from boxoffice.services.cache_service import get_cache_stats
from boxoffice.services.collaborator_factory import get_notifier
from boxoffice.services.interfaces.notifier import Notifier
from boxoffice.core.security import require_admin

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/sweep")
async def trigger_sweep(
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Run one expiry sweep and reminder pass now."""
    return await sweep_service.run_sweep(db, notifier)


@router.post("/events/{event_id}/reminders")
async def send_event_reminders(
    event_id: int,
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Remind every paid order of an event that it is coming up."""
    sent = await notification_service.send_event_reminder(db, notifier, event_id)
    return {"event_id": event_id, "sent": sent}


@router.get("/stats")
async def get_stats(
    event_id: Optional[int] = Query(None),
    low_stock_threshold: int = Query(10, ge=1),
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    stats = {
        "orders": await checkout_service.get_order_stats(db, event_id=event_id),
        "cache": await get_cache_stats(),
    }
    if event_id is not None:
        stats["tickets"] = await ticket_service.get_ticket_stats(db, event_id)
        stats["low_stock"] = [
            asdict(s) for s in await inventory_service.get_low_stock(db, event_id, low_stock_threshold)
        ]
        stats["sold_out"] = [asdict(s) for s in await inventory_service.get_sold_out(db, event_id)]
    return stats
