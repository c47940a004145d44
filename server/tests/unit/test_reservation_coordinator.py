"""Unit tests for the reservation coordinator."""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from reservation_core.core import clock
from reservation_core.core.config import settings
from reservation_core.core.exceptions import InsufficientAvailabilityError, NotFoundError, ValidationError
from reservation_core.models.booking import BookingStatus, PaymentStatus
from reservation_core.models.inventory import HoldStatus, InventoryHold, ItemKind
from reservation_core.schemas.booking import CreateBookingRequest
from reservation_core.schemas.inventory import AddonSpec
from reservation_core.services.booking_store import BookingStore
from reservation_core.services.inventory_ledger import InventoryLedger
from reservation_core.services.reservation_service import ReservationCoordinator


class FailingStore(BookingStore):
    async def add(self, booking):
        raise RuntimeError("disk full")


def request_for(item, quantity=1, window=None, **overrides):
    start, end = window or (None, None)
    data = dict(
        item_kind=item.kind,
        item_id=item.id,
        quantity=quantity,
        window_start=start,
        window_end=end,
    )
    data.update(overrides)
    return CreateBookingRequest(**data)


async def holds(session):
    result = await session.execute(select(InventoryHold).execution_options(populate_existing=True))
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_create_booking_reserves_and_prices(test_session, make_item, window):
    item = await make_item(
        capacity_total=5,
        unit_price=1500000,
        addons={"breakfast": AddonSpec(type="fixed", amount=250000, per_day=True, per_unit=True)},
    )
    start, end = window(nights=2)

    booking = await ReservationCoordinator(test_session).create_booking(
        request_for(item, 2, (start, end), addons=["breakfast"]), "user-1"
    )

    assert booking.status == BookingStatus.PENDING_PAYMENT
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.amount == 1500000 * 2 * 2 + 250000 * 2 * 2
    assert booking.currency == "LKR"
    assert len(booking.code) == 8
    assert booking.price_breakdown["surcharges"] == {"breakfast": 1000000}

    hold = await InventoryLedger(test_session).get_hold(booking.hold_id)
    assert hold.status == HoldStatus.ACTIVE
    assert hold.quantity == 2
    assert (await InventoryLedger(test_session).availability(item.id, start, end)).available == 3


@pytest.mark.asyncio
async def test_hold_expiry_follows_configured_ttl(test_session, make_item, window):
    item = await make_item()
    before = clock.utcnow()

    booking = await ReservationCoordinator(test_session, hold_ttl_seconds=120).create_booking(
        request_for(item, 1, window()), "user-1"
    )

    hold = await InventoryLedger(test_session).get_hold(booking.hold_id)
    assert before + timedelta(seconds=119) <= hold.expires_at <= clock.utcnow() + timedelta(seconds=121)


@pytest.mark.asyncio
async def test_insufficient_availability_reports_remaining(test_session, make_item, window):
    item = await make_item(capacity_total=2)

    with pytest.raises(InsufficientAvailabilityError) as exc_info:
        await ReservationCoordinator(test_session).create_booking(request_for(item, 3, window()), "user-1")

    assert exc_info.value.problem_details["detail"] == "Only 2 slots available"
    assert exc_info.value.status_code == 409
    assert await holds(test_session) == []


@pytest.mark.asyncio
async def test_vehicle_booking_needs_no_window(test_session, make_item):
    item = await make_item(kind=ItemKind.VEHICLE, capacity_total=1, unit_price=800000)

    booking = await ReservationCoordinator(test_session).create_booking(request_for(item, 1), "user-1")
    assert booking.amount == 800000

    with pytest.raises(InsufficientAvailabilityError):
        await ReservationCoordinator(test_session).create_booking(request_for(item, 1), "user-2")


@pytest.mark.asyncio
async def test_validation_rejects_before_reserving(test_session, make_item, window):
    item = await make_item(max_quantity=4, window_days=30)
    coordinator = ReservationCoordinator(test_session)
    today = clock.today()

    invalid = [
        request_for(item, 1, window(), item_kind=ItemKind.TOUR),
        request_for(item, 0, window()),
        request_for(item, 5, window()),
        request_for(item, 1),
        request_for(item, 1, (today, today + timedelta(days=2))),
        request_for(item, 1, window(start_in_days=5, nights=0)),
        request_for(item, 1, window(start_in_days=25, nights=10)),
        request_for(item, 1, window(), addons=["spa"]),
    ]
    for request in invalid:
        with pytest.raises(ValidationError):
            await coordinator.create_booking(request, "user-1")

    assert await holds(test_session) == []


@pytest.mark.asyncio
async def test_unknown_item(test_session, window):
    request = CreateBookingRequest(item_kind=ItemKind.HOTEL, item_id=uuid4(), quantity=1,
                                   window_start=window()[0], window_end=window()[1])
    with pytest.raises(NotFoundError):
        await ReservationCoordinator(test_session).create_booking(request, "user-1")


@pytest.mark.asyncio
async def test_failed_booking_write_releases_token(test_session, make_item, window):
    item = await make_item(capacity_total=3)
    item_id = item.id
    start, end = window()

    coordinator = ReservationCoordinator(test_session, store=FailingStore(test_session))
    with pytest.raises(RuntimeError, match="disk full"):
        await coordinator.create_booking(request_for(item, 2, (start, end)), "user-1")

    [hold] = await holds(test_session)
    assert hold.status == HoldStatus.RELEASED
    assert (await InventoryLedger(test_session).availability(item_id, start, end)).available == 3


@pytest.mark.asyncio
async def test_unreleasable_token_raises_alert_and_keeps_original_error(
    test_session, make_item, window, monkeypatch
):
    item = await make_item(capacity_total=3)
    monkeypatch.setattr(settings, "compensation_base_delay_seconds", 0)
    attempts = []

    async def broken_release(self, hold_id, reason="released"):
        attempts.append(hold_id)
        raise OperationalError("UPDATE inventory_holds", {}, Exception("connection reset"))

    monkeypatch.setattr(InventoryLedger, "release", broken_release)

    coordinator = ReservationCoordinator(test_session, store=FailingStore(test_session))
    with pytest.raises(RuntimeError, match="disk full"):
        await coordinator.create_booking(request_for(item, 1, window()), "user-1")

    assert len(attempts) == settings.compensation_max_attempts
    [hold] = await holds(test_session)
    # Left for the expiry sweep
    assert hold.status == HoldStatus.ACTIVE
