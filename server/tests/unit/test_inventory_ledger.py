"""Unit tests for the inventory ledger."""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from reservation_core.core import clock
from reservation_core.models.booking import BookingStatus
from reservation_core.models.inventory import CapacitySlot, HoldStatus, ItemKind
from reservation_core.services.inventory_ledger import (
    CapacityExceededError,
    HoldNotActiveError,
    InvalidWindowError,
    InventoryLedger,
    UnknownItemError,
    window_days,
)


async def reserved_by_day(session, item_id):
    rows = (await session.execute(
        select(CapacitySlot.slot_date, CapacitySlot.capacity_reserved)
        .where(CapacitySlot.item_id == item_id)
        .execution_options(populate_existing=True)
    )).all()
    return {row.slot_date: row.capacity_reserved for row in rows}


@pytest.mark.asyncio
async def test_reserve_takes_capacity_on_every_day_of_window(test_session, make_item, window):
    item = await make_item(capacity_total=5)
    start, end = window(nights=3)
    ledger = InventoryLedger(test_session)

    hold = await ledger.reserve(item.id, 2, start, end)
    await test_session.commit()

    assert hold.status == HoldStatus.ACTIVE
    reserved = await reserved_by_day(test_session, item.id)
    for day in window_days(start, end):
        assert reserved[day] == 2
    assert reserved[end] == 0
    assert (await ledger.availability(item.id, start, end)).available == 3


@pytest.mark.asyncio
async def test_reserve_rejects_when_any_day_is_short(test_session, make_item, window):
    item = await make_item(capacity_total=3)
    item_id = item.id
    ledger = InventoryLedger(test_session)

    first_start, first_end = window(start_in_days=10, nights=1)
    await ledger.reserve(item_id, 3, first_start, first_end)
    await test_session.commit()

    # Overlaps the sold-out night on its first day only
    start, end = window(start_in_days=10, nights=3)
    with pytest.raises(CapacityExceededError) as exc_info:
        await ledger.reserve(item_id, 1, start, end)

    assert exc_info.value.available == 0
    reserved = await reserved_by_day(test_session, item_id)
    assert reserved[start + timedelta(days=1)] == 0
    assert reserved[start + timedelta(days=2)] == 0


@pytest.mark.asyncio
async def test_rejected_reserve_leaves_callers_objects_loaded(test_session, make_item, make_booking, window):
    item = await make_item(capacity_total=1)
    booking = await make_booking(item)
    ledger = InventoryLedger(test_session)

    start, end = window()
    with pytest.raises(CapacityExceededError):
        await ledger.reserve(item.id, 1, start, end)

    assert booking.status == BookingStatus.PENDING_PAYMENT
    assert item.capacity_total == 1
    hold = await ledger.get_hold(booking.hold_id)
    assert hold.status == HoldStatus.ACTIVE
    assert (await reserved_by_day(test_session, item.id))[start] == 1


@pytest.mark.asyncio
async def test_reserve_non_dated_item_uses_single_slot(test_session, make_item):
    item = await make_item(kind=ItemKind.VEHICLE, capacity_total=2)
    item_id = item.id
    ledger = InventoryLedger(test_session)

    await ledger.reserve(item_id, 2)
    await test_session.commit()

    with pytest.raises(CapacityExceededError):
        await ledger.reserve(item_id, 1)
    assert (await reserved_by_day(test_session, item_id)) == {None: 2}


@pytest.mark.asyncio
async def test_reserve_validates_window(test_session, make_item, window):
    item = await make_item(window_days=30)
    ledger = InventoryLedger(test_session)
    start, end = window()

    with pytest.raises(InvalidWindowError):
        await ledger.reserve(item.id, 1)
    with pytest.raises(InvalidWindowError):
        await ledger.reserve(item.id, 1, end, start)
    with pytest.raises(InvalidWindowError):
        await ledger.reserve(item.id, 1, start, start + timedelta(days=90))
    with pytest.raises(UnknownItemError):
        await ledger.reserve(uuid4(), 1, start, end)


@pytest.mark.asyncio
async def test_commit_is_idempotent_and_rejects_released(test_session, make_item, window):
    item = await make_item()
    ledger = InventoryLedger(test_session)
    start, end = window()

    hold = await ledger.reserve(item.id, 1, start, end)
    committed = await ledger.commit(hold.id)
    again = await ledger.commit(hold.id)
    assert committed.status == again.status == HoldStatus.COMMITTED

    other = await ledger.reserve(item.id, 1, start, end)
    assert await ledger.release(other.id) is True
    with pytest.raises(HoldNotActiveError):
        await ledger.commit(other.id)


@pytest.mark.asyncio
async def test_release_returns_capacity_once(test_session, make_item, window):
    item = await make_item(capacity_total=4)
    ledger = InventoryLedger(test_session)
    start, end = window(nights=2)

    hold = await ledger.reserve(item.id, 3, start, end)
    await test_session.commit()

    assert await ledger.release(hold.id) is True
    assert await ledger.release(hold.id) is False
    await test_session.commit()

    assert set((await reserved_by_day(test_session, item.id)).values()) == {0}


@pytest.mark.asyncio
async def test_expire_due_only_touches_lapsed_active_tokens(test_session, make_item, window):
    item = await make_item(capacity_total=10)
    ledger = InventoryLedger(test_session)
    start, end = window()

    lapsed = await ledger.reserve(item.id, 2, start, end, ttl_seconds=60)
    fresh = await ledger.reserve(item.id, 3, start, end, ttl_seconds=3600)
    committed = await ledger.reserve(item.id, 1, start, end, ttl_seconds=60)
    await ledger.commit(committed.id)
    await test_session.commit()

    expired = await ledger.expire_due(clock.utcnow() + timedelta(seconds=120))
    await test_session.commit()

    assert [h.id for h in expired] == [lapsed.id]
    assert (await ledger.get_hold(lapsed.id)).status == HoldStatus.EXPIRED
    assert (await ledger.get_hold(fresh.id)).status == HoldStatus.ACTIVE
    assert (await ledger.availability(item.id, start, end)).reserved == 4
