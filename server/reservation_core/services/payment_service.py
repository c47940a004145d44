"""Opening payment sessions with a gateway."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import (
    AuthorizationError,
    ConflictError,
    InsufficientAvailabilityError,
    PaymentGatewayUnavailableError,
    ValidationError,
)
from ..gateways import GatewayError, GatewayRegistry, GatewaySession
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..models.inventory import HoldStatus
from ..models.payment import PaymentSession, PaymentSessionStatus
from .booking_store import BookingStore
from .inventory_ledger import CapacityExceededError, InventoryLedger

logger = logging.getLogger(__name__)


class PaymentSessionService:
    """Open checkout sessions for bookings awaiting payment."""

    def __init__(self, db: AsyncSession, gateways: GatewayRegistry, hold_ttl_seconds: Optional[int] = None):
        self.db = db
        self.gateways = gateways
        self.store = BookingStore(db)
        self.ledger = InventoryLedger(db)
        self.hold_ttl_seconds = hold_ttl_seconds or settings.hold_ttl_seconds

    async def get_by_reference(self, reference: str) -> Optional[PaymentSession]:
        result = await self.db.execute(
            select(PaymentSession)
            .where(PaymentSession.gateway_reference == reference)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _ensure_active_hold(self, booking: Booking) -> None:
        """Take capacity again if the booking's token lapsed after a failed or abandoned payment."""
        if booking.hold_id is not None:
            hold = await self.ledger.get_hold(booking.hold_id)
            if hold is not None and hold.status == HoldStatus.ACTIVE:
                return

        booking_id, item_id, quantity = booking.id, booking.item_id, booking.quantity
        try:
            hold = await self.ledger.reserve(
                item_id, quantity, booking.window_start, booking.window_end, ttl_seconds=self.hold_ttl_seconds
            )
        except CapacityExceededError as e:
            logger.info(
                "Payment retry rejected - capacity no longer available",
                extra={"booking_id": str(booking_id), "available": e.available}
            )
            raise InsufficientAvailabilityError(str(item_id), quantity, e.available)

        booking.hold_id = hold.id
        booking.payment_status = PaymentStatus.PENDING
        await self.store.save(booking)

        logger.info(
            "Reservation token renewed for payment retry",
            extra={"booking_id": str(booking_id), "hold_id": str(hold.id)}
        )

    async def open_session(
        self,
        booking_id: UUID,
        requester_id: str,
        provider: Optional[str] = None,
    ) -> tuple[Booking, GatewaySession]:
        """
        Open a checkout session for a booking in ``pending_payment``.

        The gateway is called with no database transaction open. Its
        idempotency key is derived from the booking and its current
        reservation token, so every payment attempt gets its own gateway
        session and reopening an attempt reuses it.

        Raises:
            NotFoundError: Unknown booking
            AuthorizationError: Booking belongs to someone else
            ConflictError: Booking is paid, cancelled or otherwise not payable
            ValidationError: Provider not configured
            InsufficientAvailabilityError: Token lapsed and capacity is gone
            PaymentGatewayUnavailableError: Gateway call failed
        """
        booking = await self.store.get_or_raise(booking_id, refresh=True)
        if booking.requester_id != requester_id:
            raise AuthorizationError(detail="You can only pay for your own bookings")
        if booking.status != BookingStatus.PENDING_PAYMENT or booking.payment_status == PaymentStatus.PAID:
            raise ConflictError(
                detail=f"Booking is not awaiting payment (status: {booking.status.value}, "
                       f"payment: {booking.payment_status.value})"
            )

        gateway = self.gateways.get(provider)
        if gateway is None:
            raise ValidationError(
                detail=f"Payment provider '{provider}' is not available",
                errors={"provider": self.gateways.providers},
            )

        await self._ensure_active_hold(booking)

        amount, currency, hold_id, code = booking.amount, booking.currency, booking.hold_id, booking.code
        await self.db.commit()

        try:
            session = await gateway.create_session(
                booking_id=str(booking_id),
                amount=amount,
                currency=currency,
                metadata={"booking_code": code, "description": f"Booking {code}"},
                idempotency_key=f"{booking_id}:{hold_id}",
            )
        except GatewayError as e:
            logger.error(
                "Payment session could not be opened",
                extra={"booking_id": str(booking_id), "provider": gateway.name, "error": str(e)}
            )
            raise PaymentGatewayUnavailableError(gateway.name, retry_after=30 if e.retryable else None) from e

        record = await self.get_by_reference(session.reference)
        if record is None:
            self.db.add(PaymentSession(
                booking_id=booking_id,
                provider=gateway.name,
                gateway_reference=session.reference,
                expected_amount=amount,
                currency=currency,
                status=PaymentSessionStatus.OPEN,
            ))
        elif record.status != PaymentSessionStatus.OPEN:
            raise ConflictError(
                detail="Payment attempt already finished, open a new session",
                conflicting_resource={"reference": session.reference, "status": record.status.value},
            )

        booking.payment_reference = session.reference
        booking.payment_provider = gateway.name
        await self.store.save(booking)

        logger.info(
            "Payment session opened",
            extra={
                "booking_id": str(booking_id),
                "provider": gateway.name,
                "reference": session.reference,
                "amount": amount,
                "currency": currency,
            }
        )
        return booking, session
