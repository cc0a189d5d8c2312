"""
Tests for availability evaluation and the optimistic capacity guard.
"""

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.errors import CapacityConflictError, InsufficientInventoryError, NotFoundError
from boxoffice.models.event import TicketCategory
from boxoffice.services import inventory_service
from boxoffice.services.inventory_service import AvailabilityReason
from conftest import expire_hold


@pytest.mark.asyncio
async def test_fresh_category_is_fully_available(db_session: AsyncSession, vip_id):
    status = await inventory_service.get_inventory_status(db_session, vip_id)
    assert status.capacity == 10
    assert status.sold == 0
    assert status.held == 0
    assert status.available == 10
    assert status.is_available is True
    assert status.is_sold_out is False


@pytest.mark.asyncio
async def test_unknown_category_not_found(db_session: AsyncSession, test_event):
    with pytest.raises(NotFoundError):
        await inventory_service.check_availability(db_session, 999999, 1)


@pytest.mark.asyncio
async def test_holding_order_counts_as_held(db_session: AsyncSession, vip_id, place_order):
    await place_order(vip_id, 4)

    status = await inventory_service.get_inventory_status(db_session, vip_id)
    assert status.held == 4
    assert status.sold == 0
    assert status.available == 6


@pytest.mark.asyncio
async def test_paid_order_counts_as_sold(db_session: AsyncSession, vip_id, paid_order):
    await paid_order(vip_id, 3)

    status = await inventory_service.get_inventory_status(db_session, vip_id)
    assert status.sold == 3
    assert status.held == 0
    assert status.available == 7


@pytest.mark.asyncio
async def test_overlapping_holds_never_exceed_capacity(db_session: AsyncSession, vip_id, place_order):
    """
    Capacity 10, two buyers of 6: the second is refused with 4 remaining.

    The buyers run one after the other here. Truly parallel checkouts are
    exercised by the `contention` scenario in locust/locustfile.py; the
    interleaving that matters is pinned down by the version race test below.
    """
    await place_order(vip_id, 6, user_id="buyer-a")

    check = await inventory_service.check_availability(db_session, vip_id, 6)
    assert check.reason is AvailabilityReason.INSUFFICIENT
    assert check.remaining == 4

    with pytest.raises(InsufficientInventoryError) as exc_info:
        await place_order(vip_id, 6, user_id="buyer-b")
    assert exc_info.value.remaining == 4

    status = await inventory_service.get_inventory_status(db_session, vip_id)
    assert status.sold + status.held <= status.capacity
    assert status.held == 6


@pytest.mark.asyncio
async def test_interleaved_claim_loses_version_race(db_session: AsyncSession, vip_id, monkeypatch):
    """A rival claim commits between our read and our write: ours must not land."""
    original_count_held = inventory_service.count_held

    async def rival_claims_meanwhile(db, category_id, now=None, exclude_order_id=None):
        held = await original_count_held(db, category_id, now=now, exclude_order_id=exclude_order_id)
        await db.execute(
            update(TicketCategory)
            .where(TicketCategory.id == category_id)
            .values(version=TicketCategory.version + 1)
            .execution_options(synchronize_session=False)
        )
        return held

    monkeypatch.setattr(inventory_service, "count_held", rival_claims_meanwhile)

    claimed, result = await inventory_service.claim_capacity(db_session, vip_id, 6)
    assert result.ok
    assert claimed is False


@pytest.mark.asyncio
async def test_lapsed_hold_is_not_counted_before_sweep(db_session: AsyncSession, vip_id, place_order):
    """An unswept pending order past expires_at releases its units immediately."""
    result = await place_order(vip_id, 6)
    order_id = result.order.id
    await expire_hold(db_session, order_id)

    status = await inventory_service.get_inventory_status(db_session, vip_id)
    assert status.held == 0
    assert status.available == 10

    check = await inventory_service.check_availability(db_session, vip_id, 10)
    assert check.ok


@pytest.mark.asyncio
async def test_disabled_category_reports_disabled(db_session: AsyncSession, vip_id):
    await inventory_service.set_availability(db_session, vip_id, False)

    check = await inventory_service.check_availability(db_session, vip_id, 1)
    assert check.reason is AvailabilityReason.DISABLED
    assert not check.ok
    assert check.remaining == 0


@pytest.mark.asyncio
async def test_sold_out_category(db_session: AsyncSession, event_id, vip_id, paid_order):
    await paid_order(vip_id, 10)

    check = await inventory_service.check_availability(db_session, vip_id, 1)
    assert check.reason is AvailabilityReason.SOLD_OUT
    assert check.message == "Ticket category is sold out"

    sold_out = await inventory_service.get_sold_out(db_session, event_id)
    assert [s.category_id for s in sold_out] == [vip_id]


@pytest.mark.asyncio
async def test_check_batch_evaluates_each_item(db_session: AsyncSession, vip_id, ga_id):
    results = await inventory_service.check_batch(db_session, [(vip_id, 11), (ga_id, 5)])
    assert results[vip_id].reason is AvailabilityReason.INSUFFICIENT
    assert results[ga_id].ok


@pytest.mark.asyncio
async def test_claim_capacity_bumps_version(db_session: AsyncSession, vip_id):
    before = (await inventory_service.get_category(db_session, vip_id)).version

    claimed, result = await inventory_service.claim_capacity(db_session, vip_id, 2)
    assert claimed is True
    assert result.ok

    after = (await inventory_service.get_category(db_session, vip_id)).version
    assert after == before + 1


@pytest.mark.asyncio
async def test_claim_capacity_detects_concurrent_version_change(db_session: AsyncSession, vip_id, monkeypatch):
    """A version bump between read and update makes the claim report a conflict."""
    original_count_held = inventory_service.count_held

    async def count_held_then_race(db, category_id, now=None, exclude_order_id=None):
        await db.execute(
            update(TicketCategory)
            .where(TicketCategory.id == category_id)
            .values(version=TicketCategory.version + 1)
        )
        return await original_count_held(db, category_id, now=now, exclude_order_id=exclude_order_id)

    monkeypatch.setattr(inventory_service, "count_held", count_held_then_race)

    claimed, result = await inventory_service.claim_capacity(db_session, vip_id, 1)
    assert claimed is False
    assert result.ok


@pytest.mark.asyncio
async def test_claim_capacity_refuses_insufficient(db_session: AsyncSession, vip_id):
    claimed, result = await inventory_service.claim_capacity(db_session, vip_id, 11)
    assert claimed is False
    assert result.reason is AvailabilityReason.INSUFFICIENT


@pytest.mark.asyncio
async def test_update_capacity_cannot_drop_below_sold(db_session: AsyncSession, vip_id, paid_order):
    await paid_order(vip_id, 5)

    with pytest.raises(CapacityConflictError):
        await inventory_service.update_capacity(db_session, vip_id, 4)

    category = await inventory_service.update_capacity(db_session, vip_id, 5)
    assert category.capacity == 5
    status = await inventory_service.get_inventory_status(db_session, vip_id)
    assert status.is_sold_out


@pytest.mark.asyncio
async def test_low_stock_threshold(db_session: AsyncSession, event_id, vip_id, ga_id, place_order):
    await place_order(vip_id, 8)

    low = await inventory_service.get_low_stock(db_session, event_id, threshold=5)
    assert [s.category_id for s in low] == [vip_id]
    assert low[0].available == 2
