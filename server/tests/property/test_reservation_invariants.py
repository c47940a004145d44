"""Property-based tests for reservation invariants."""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from hypothesis import HealthCheck, assume, given, settings
from hypothesis import strategies as st
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from reservation_core import models  # noqa: F401
from reservation_core.core.database import Base
from reservation_core.models.booking import Booking, BookingStatus, PaymentStatus
from reservation_core.models.inventory import ItemKind
from reservation_core.schemas.inventory import RegisterItemRequest
from reservation_core.services.cancellation_service import CancellationPath, CancellationPolicyEngine
from reservation_core.services.inventory_ledger import CapacityExceededError, InventoryLedger, window_days
from reservation_core.services.inventory_service import InventoryService
from reservation_core.services.pricing import (
    CatalogEntry,
    PricingError,
    major_to_minor,
    minor_to_major,
    policy_for,
    quote,
)

# Strategies for generating test data
kinds = st.sampled_from(list(ItemKind))
quantities = st.integers(min_value=1, max_value=50)
unit_prices = st.integers(min_value=0, max_value=10_000_000)
start_dates = st.dates(min_value=date(2026, 1, 1), max_value=date(2030, 12, 31))
currencies = st.sampled_from(["LKR", "USD", "EUR", "JPY"])


@given(start=start_dates, length=st.integers(min_value=0, max_value=60))
def test_window_days_are_consecutive_and_half_open(start, length):
    """Each day of the window appears exactly once and the end day is excluded."""
    end = start + timedelta(days=length)
    days = window_days(start, end)

    assert len(days) == length
    assert end not in days
    if days:
        assert days[0] == start
        assert all(b - a == timedelta(days=1) for a, b in zip(days, days[1:]))


@given(
    kind=kinds,
    quantity=quantities,
    unit_price=unit_prices,
    start=start_dates,
    nights=st.integers(min_value=1, max_value=30),
    fixed=st.integers(min_value=0, max_value=500_000),
    rate=st.decimals(min_value=0, max_value=1, places=2),
)
def test_quote_total_is_base_plus_surcharges(kind, quantity, unit_price, start, nights, fixed, rate):
    """Quotes are non-negative and always add up."""
    entry = CatalogEntry(
        item_id="item-1",
        kind=kind,
        unit_price=unit_price,
        currency="LKR",
        max_quantity=50,
        addons={
            "transfer": {"type": "fixed", "amount": fixed},
            "insurance": {"type": "percentage", "rate": str(rate)},
        },
    )
    result = quote(entry, quantity, start, start + timedelta(days=nights), ["transfer", "insurance"])

    assert result.total == result.base + sum(result.surcharges.values())
    assert result.total >= result.base >= 0
    assert result.surcharges["transfer"] == fixed
    assert result.surcharges["insurance"] <= result.base

    policy = policy_for(kind)
    expected_base = unit_price
    if policy.per_unit:
        expected_base *= quantity
    if policy.per_day:
        expected_base *= nights
    assert result.base == expected_base


@given(kind=kinds, quantity=st.integers(max_value=0))
def test_quote_rejects_non_positive_quantity(kind, quantity):
    entry = CatalogEntry(item_id="item-1", kind=kind, unit_price=1000, currency="LKR", max_quantity=10)
    with pytest.raises(PricingError):
        quote(entry, quantity)


@given(amount=st.integers(min_value=0, max_value=10**12), currency=currencies)
def test_minor_major_conversion_is_lossless(amount, currency):
    major = minor_to_major(amount, currency)

    assert isinstance(major, Decimal)
    assert major_to_minor(major, currency) == amount
    assert major_to_minor(str(major), currency) == amount


@given(status=st.sampled_from(list(BookingStatus)), payment_status=st.sampled_from(list(PaymentStatus)))
def test_cancellation_path_follows_payment_state(status, payment_status):
    """Only paid bookings need a review and finished bookings are never cancellable."""
    path = CancellationPolicyEngine.decide(Booking(status=status, payment_status=payment_status))

    if status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
        assert path == CancellationPath.NOT_CANCELLABLE
    elif payment_status == PaymentStatus.PAID:
        assert path == CancellationPath.REVIEW
    elif payment_status in (PaymentStatus.PENDING, PaymentStatus.FAILED):
        assert path == CancellationPath.IMMEDIATE
    else:
        assert path == CancellationPath.NOT_CANCELLABLE


@pytest.mark.asyncio
@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(
    capacity=st.integers(min_value=1, max_value=20),
    requests=st.lists(st.tuples(st.integers(min_value=1, max_value=6), st.integers(min_value=0, max_value=4)),
                      min_size=1, max_size=15),
)
async def test_reserved_never_exceeds_capacity(capacity, requests):
    """Accepted reservations never take more than capacity on any day."""
    assume(sum(q for q, _ in requests) > capacity)

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        async with async_sessionmaker(engine, expire_on_commit=False)() as db:
            start = date.today() + timedelta(days=1)
            item = await InventoryService(db).register_item(
                RegisterItemRequest(
                    kind=ItemKind.HOTEL,
                    name="Property Test Hotel",
                    capacity_total=capacity,
                    window_start=start,
                    window_end=start + timedelta(days=7),
                    unit_price=1000,
                )
            )
            item_id = item.id
            ledger = InventoryLedger(db)

            held = {start + timedelta(days=i): 0 for i in range(7)}
            for quantity, offset in requests:
                window_start = start + timedelta(days=offset)
                window_end = window_start + timedelta(days=3)
                try:
                    await ledger.reserve(item_id, quantity, window_start, window_end)
                    await db.commit()
                except CapacityExceededError:
                    continue
                for day in window_days(window_start, window_end):
                    held[day] += quantity

            assert all(reserved <= capacity for reserved in held.values())
            for day, reserved in held.items():
                availability = await ledger.availability(item_id, day, day + timedelta(days=1))
                assert availability.reserved == reserved
                assert availability.available == capacity - reserved
    finally:
        await engine.dispose()
