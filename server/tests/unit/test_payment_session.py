"""Unit tests for opening payment sessions."""

import pytest
from sqlalchemy import func, select

from reservation_core.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InsufficientAvailabilityError,
    PaymentGatewayUnavailableError,
    ValidationError,
    VerificationFailedError,
)
from reservation_core.models.booking import PaymentStatus
from reservation_core.models.inventory import HoldStatus
from reservation_core.models.payment import PaymentSession, PaymentSessionStatus
from reservation_core.services.inventory_ledger import InventoryLedger
from reservation_core.services.payment_service import PaymentSessionService
from reservation_core.services.reconciliation_service import ReconciliationService


@pytest.mark.asyncio
async def test_open_session_records_expected_amount(test_session, make_item, make_booking, gateways, stub_gateway):
    item = await make_item(unit_price=1200000)
    booking = await make_booking(item, quantity=2)

    updated, session = await PaymentSessionService(test_session, gateways).open_session(booking.id, "user-1")

    assert session.provider == "stub"
    assert session.client_handle == f"{session.reference}_secret"
    assert updated.payment_reference == session.reference
    assert updated.payment_provider == "stub"
    assert stub_gateway.payments[session.reference].amount == booking.amount

    record = await PaymentSessionService(test_session, gateways).get_by_reference(session.reference)
    assert record.booking_id == booking.id
    assert record.expected_amount == booking.amount
    assert record.currency == "LKR"
    assert record.status == PaymentSessionStatus.OPEN


@pytest.mark.asyncio
async def test_reopening_reuses_gateway_session(test_session, make_item, make_booking, gateways):
    item = await make_item()
    booking = await make_booking(item)
    service = PaymentSessionService(test_session, gateways)

    _, first = await service.open_session(booking.id, "user-1")
    _, second = await service.open_session(booking.id, "user-1")

    assert first.reference == second.reference
    count = await test_session.scalar(select(func.count()).select_from(PaymentSession))
    assert count == 1


@pytest.mark.asyncio
async def test_only_owner_can_pay(test_session, make_item, make_booking, gateways):
    item = await make_item()
    booking = await make_booking(item, requester_id="user-1")

    with pytest.raises(AuthorizationError):
        await PaymentSessionService(test_session, gateways).open_session(booking.id, "user-2")


@pytest.mark.asyncio
async def test_unknown_provider_is_rejected(test_session, make_item, make_booking, gateways):
    item = await make_item()
    booking = await make_booking(item)

    with pytest.raises(ValidationError):
        await PaymentSessionService(test_session, gateways).open_session(booking.id, "user-1", provider="paypal")


@pytest.mark.asyncio
async def test_gateway_outage_is_retryable(test_session, make_item, make_booking, gateways, stub_gateway):
    item = await make_item()
    booking = await make_booking(item)
    stub_gateway.unavailable = True

    with pytest.raises(PaymentGatewayUnavailableError) as exc_info:
        await PaymentSessionService(test_session, gateways).open_session(booking.id, "user-1")

    assert exc_info.value.status_code == 503
    assert exc_info.value.headers["Retry-After"] == "30"
    assert exc_info.value.problem_details["retryable"] is True


@pytest.mark.asyncio
async def test_confirmed_booking_cannot_open_new_session(
    test_session, make_item, make_booking, gateways, stub_gateway, notifier
):
    item = await make_item()
    booking = await make_booking(item)
    service = PaymentSessionService(test_session, gateways)
    _, session = await service.open_session(booking.id, "user-1")
    stub_gateway.mark_succeeded(session.reference)
    await ReconciliationService(test_session, gateways, notifier).confirm(booking.id, session.reference)

    with pytest.raises(ConflictError):
        await service.open_session(booking.id, "user-1")


@pytest.mark.asyncio
async def test_retry_after_failed_payment_takes_new_token(
    test_session, make_item, make_booking, gateways, stub_gateway, notifier
):
    item = await make_item(capacity_total=2)
    booking = await make_booking(item)
    first_hold_id = booking.hold_id
    service = PaymentSessionService(test_session, gateways)
    reconciliation = ReconciliationService(test_session, gateways, notifier)

    _, first = await service.open_session(booking.id, "user-1")
    stub_gateway.mark_failed(first.reference)
    with pytest.raises(VerificationFailedError):
        await reconciliation.confirm(booking.id, first.reference)

    updated, second = await service.open_session(booking.id, "user-1")

    assert second.reference != first.reference
    assert updated.hold_id != first_hold_id
    assert updated.payment_status == PaymentStatus.PENDING
    assert (await InventoryLedger(test_session).get_hold(updated.hold_id)).status == HoldStatus.ACTIVE


@pytest.mark.asyncio
async def test_retry_fails_when_capacity_was_taken(
    test_session, make_item, make_booking, gateways, stub_gateway, notifier
):
    item = await make_item(capacity_total=1)
    booking = await make_booking(item, requester_id="user-1")
    booking_id = booking.id
    service = PaymentSessionService(test_session, gateways)

    _, session = await service.open_session(booking_id, "user-1")
    stub_gateway.mark_failed(session.reference)
    with pytest.raises(VerificationFailedError):
        await ReconciliationService(test_session, gateways, notifier).confirm(booking_id, session.reference)

    await make_booking(item, requester_id="user-2")

    with pytest.raises(InsufficientAvailabilityError):
        await service.open_session(booking_id, "user-1")
