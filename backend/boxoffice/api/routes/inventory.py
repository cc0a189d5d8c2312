"""
Inventory checks and category administration.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.session import get_db
from boxoffice.schemas.event import CategoryResponse
from boxoffice.schemas.inventory import (
    AvailabilityCheckRequest,
    AvailabilityCheckResponse,
    AvailabilityResultResponse,
    CategoryUpdate,
)
from boxoffice.services import inventory_service
from boxoffice.services.cache_service import invalidate_inventory_cache
from boxoffice.core.security import require_admin

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.post("/check", response_model=AvailabilityCheckResponse)
async def check_inventory(
    request: AvailabilityCheckRequest,
    db: AsyncSession = Depends(get_db),
):
    """Advisory batch check. A positive answer reserves nothing."""
    results = await inventory_service.check_batch(
        db, [(item.category_id, item.quantity) for item in request.items]
    )
    items = [
        AvailabilityResultResponse(
            category_id=r.category_id,
            requested=r.requested,
            remaining=r.remaining,
            reason=r.reason.value,
            available=r.ok,
            message=r.message,
        )
        for r in results.values()
    ]
    return AvailabilityCheckResponse(all_available=all(i.available for i in items), results=items)


@router.patch("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: int,
    update: CategoryUpdate,
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Change capacity (never below sold) and/or toggle sales. Admin only."""
    category = await inventory_service.get_category(db, category_id)
    if update.capacity is not None:
        category = await inventory_service.update_capacity(db, category_id, update.capacity)
    if update.is_available is not None:
        category = await inventory_service.set_availability(db, category_id, update.is_available)
    await invalidate_inventory_cache(category.event_id)
    return category
