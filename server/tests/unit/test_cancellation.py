"""Unit tests for the cancellation policy engine."""

from datetime import timedelta
from uuid import uuid4

import pytest

from reservation_core.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicateRequestError,
    NotFoundError,
    ValidationError,
)
from reservation_core.models.booking import Booking, BookingStatus, PaymentStatus
from reservation_core.models.cancellation import CancellationPriority, CancellationStatus, RefundMethod
from reservation_core.models.inventory import HoldStatus, ItemKind
from reservation_core.services.booking_store import BookingStore
from reservation_core.services.cancellation_service import CancellationPath, CancellationPolicyEngine
from reservation_core.services.inventory_ledger import InventoryLedger


@pytest.mark.parametrize(
    "status,payment_status,expected",
    [
        (BookingStatus.PENDING_PAYMENT, PaymentStatus.PENDING, CancellationPath.IMMEDIATE),
        (BookingStatus.PENDING_PAYMENT, PaymentStatus.FAILED, CancellationPath.IMMEDIATE),
        (BookingStatus.CONFIRMED, PaymentStatus.PAID, CancellationPath.REVIEW),
        (BookingStatus.IN_PROGRESS, PaymentStatus.PAID, CancellationPath.REVIEW),
        (BookingStatus.COMPLETED, PaymentStatus.PAID, CancellationPath.NOT_CANCELLABLE),
        (BookingStatus.CANCELLED, PaymentStatus.PENDING, CancellationPath.NOT_CANCELLABLE),
        (BookingStatus.CANCELLED, PaymentStatus.REFUNDED, CancellationPath.NOT_CANCELLABLE),
    ],
)
def test_decide(status, payment_status, expected):
    booking = Booking(status=status, payment_status=payment_status)
    assert CancellationPolicyEngine.decide(booking) == expected


@pytest.mark.asyncio
async def test_unpaid_booking_is_cancelled_immediately(test_session, make_item, make_booking, window):
    item = await make_item(capacity_total=2)
    booking = await make_booking(item, quantity=2)

    outcome = await CancellationPolicyEngine(test_session).request_cancellation(booking.id, "user-1", "Change of plans")

    assert outcome.outcome == "immediately_cancelled"
    assert outcome.message == "Your booking has been cancelled"
    assert outcome.request is None
    assert outcome.booking.status == BookingStatus.CANCELLED
    assert outcome.booking.cancellation_reason == "Change of plans"
    assert outcome.booking.cancelled_at is not None
    assert (await InventoryLedger(test_session).get_hold(booking.hold_id)).status == HoldStatus.RELEASED
    start, end = window()
    assert (await InventoryLedger(test_session).availability(item.id, start, end)).available == 2


@pytest.mark.asyncio
async def test_paid_booking_goes_to_review(test_session, make_item, make_confirmed_booking):
    item = await make_item()
    booking = await make_confirmed_booking(item)

    outcome = await CancellationPolicyEngine(test_session).request_cancellation(
        booking.id, "user-1", "Family emergency", CancellationPriority.URGENT
    )

    assert outcome.outcome == "pending_review"
    assert outcome.message == "Your cancellation request has been submitted for review"
    assert outcome.request.status == CancellationStatus.PENDING
    assert outcome.request.priority == CancellationPriority.URGENT
    assert (await BookingStore(test_session).get(booking.id, refresh=True)).status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_only_one_pending_request_per_booking(test_session, make_item, make_confirmed_booking):
    item = await make_item()
    booking = await make_confirmed_booking(item)
    engine = CancellationPolicyEngine(test_session)

    first = await engine.request_cancellation(booking.id, "user-1", "Sick")
    with pytest.raises(DuplicateRequestError) as exc_info:
        await engine.request_cancellation(booking.id, "user-1", "Still sick")

    conflict = exc_info.value.problem_details["conflicting_resource"]
    assert conflict["request_id"] == str(first.request.id)


@pytest.mark.asyncio
async def test_cannot_cancel_someone_elses_booking(test_session, make_item, make_booking):
    item = await make_item()
    booking = await make_booking(item, requester_id="user-1")

    with pytest.raises(AuthorizationError):
        await CancellationPolicyEngine(test_session).request_cancellation(booking.id, "user-2", "Mine now")


@pytest.mark.asyncio
async def test_cancelled_booking_is_not_cancellable(test_session, make_item, make_booking):
    item = await make_item()
    booking = await make_booking(item)
    engine = CancellationPolicyEngine(test_session)
    await engine.request_cancellation(booking.id, "user-1", "First")

    with pytest.raises(ConflictError):
        await engine.request_cancellation(booking.id, "user-1", "Again")


@pytest.mark.asyncio
async def test_approval_cancels_and_returns_capacity(test_session, make_item, make_confirmed_booking, window):
    item = await make_item(capacity_total=1)
    booking = await make_confirmed_booking(item)
    engine = CancellationPolicyEngine(test_session)
    submitted = await engine.request_cancellation(booking.id, "user-1", "Flight cancelled")

    outcome = await engine.review(
        submitted.request.id, "ops-1", CancellationStatus.APPROVED,
        refund_amount=booking.amount // 2, refund_method=RefundMethod.BANK_TRANSFER, reviewer_notes="Half refund",
    )

    assert outcome.outcome == "approved"
    assert outcome.message == "Cancellation approved"
    assert outcome.booking.status == BookingStatus.CANCELLED
    assert outcome.booking.refund_amount == booking.amount // 2
    assert outcome.booking.cancellation_reason == "Flight cancelled"
    assert outcome.request.refund_method == RefundMethod.BANK_TRANSFER
    assert outcome.request.reviewer_id == "ops-1"
    assert outcome.request.reviewed_at is not None
    start, end = window()
    assert (await InventoryLedger(test_session).availability(item.id, start, end)).available == 1


@pytest.mark.asyncio
async def test_approval_defaults_to_full_refund(test_session, make_item, make_confirmed_booking):
    item = await make_item()
    booking = await make_confirmed_booking(item)
    engine = CancellationPolicyEngine(test_session)
    submitted = await engine.request_cancellation(booking.id, "user-1", "Weather")

    outcome = await engine.review(submitted.request.id, "ops-1", CancellationStatus.APPROVED)

    assert outcome.request.refund_amount == booking.amount
    assert outcome.request.refund_method == RefundMethod.ORIGINAL_PAYMENT


@pytest.mark.asyncio
async def test_rejection_leaves_booking_confirmed(test_session, make_item, make_confirmed_booking):
    item = await make_item()
    booking = await make_confirmed_booking(item)
    engine = CancellationPolicyEngine(test_session)
    submitted = await engine.request_cancellation(booking.id, "user-1", "Changed my mind")

    outcome = await engine.review(submitted.request.id, "ops-1", CancellationStatus.REJECTED, reviewer_notes="Too late")

    assert outcome.outcome == "rejected"
    assert outcome.message == "Cancellation rejected"
    assert outcome.booking.status == BookingStatus.CONFIRMED
    assert outcome.request.refund_amount is None
    assert (await InventoryLedger(test_session).get_hold(booking.hold_id)).status == HoldStatus.COMMITTED

    # A rejected request does not block a new one
    again = await engine.request_cancellation(booking.id, "user-1", "Really need to cancel")
    assert again.outcome == "pending_review"


@pytest.mark.asyncio
async def test_review_rules(test_session, make_item, make_confirmed_booking):
    item = await make_item()
    booking = await make_confirmed_booking(item)
    engine = CancellationPolicyEngine(test_session)
    submitted = await engine.request_cancellation(booking.id, "user-1", "Work trip moved")
    request_id = submitted.request.id

    with pytest.raises(ValidationError):
        await engine.review(request_id, "ops-1", CancellationStatus.PENDING)
    with pytest.raises(ValidationError):
        await engine.review(request_id, "ops-1", CancellationStatus.APPROVED, refund_amount=booking.amount + 1)
    with pytest.raises(ValidationError):
        await engine.review(request_id, "ops-1", CancellationStatus.APPROVED, refund_amount=-1)

    await engine.review(request_id, "ops-1", CancellationStatus.REJECTED)
    with pytest.raises(ConflictError):
        await engine.review(request_id, "ops-2", CancellationStatus.APPROVED)


@pytest.mark.asyncio
async def test_unknown_request(test_session):
    with pytest.raises(NotFoundError):
        await CancellationPolicyEngine(test_session).review(uuid4(), "ops-1", CancellationStatus.APPROVED)


@pytest.mark.asyncio
async def test_pending_queue_orders_by_priority_then_age(test_session, make_item, make_confirmed_booking):
    item = await make_item(kind=ItemKind.TOUR, capacity_total=10)
    engine = CancellationPolicyEngine(test_session)

    low = await make_confirmed_booking(item, requester_id="user-1")
    urgent = await make_confirmed_booking(item, requester_id="user-2")
    medium = await make_confirmed_booking(item, requester_id="user-3")

    low_request = (await engine.request_cancellation(low.id, "user-1", "a", CancellationPriority.LOW)).request
    medium_request = (await engine.request_cancellation(medium.id, "user-3", "c")).request
    urgent_request = (await engine.request_cancellation(urgent.id, "user-2", "b", CancellationPriority.URGENT)).request
    medium_request.created_at = medium_request.created_at - timedelta(minutes=5)
    await test_session.commit()

    pending = await engine.list_pending()
    assert [r.id for r in pending] == [urgent_request.id, medium_request.id, low_request.id]

    mine = await engine.list_for_requester("user-3")
    assert [r.id for r in mine] == [medium_request.id]
