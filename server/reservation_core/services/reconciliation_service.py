"""Payment reconciliation: the only path that moves a booking to confirmed.

Client confirmations, gateway webhooks and the hold-expiry sweep all funnel
into this module. A booking is confirmed only after the gateway itself
reports the payment as succeeded for the booking's exact amount and currency.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..core import clock
from ..core.config import settings
from ..core.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    InsufficientAvailabilityError,
    NotFoundError,
    PaymentGatewayUnavailableError,
    ValidationError,
    VerificationFailedError,
)
from ..core.observability import metrics_collector
from ..gateways import GatewayError, GatewayPayment, GatewayRegistry, PaymentGateway, PaymentOutcome, WebhookVerificationError
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..models.payment import PaymentSession, PaymentSessionStatus
from .booking_store import BookingStore
from .inventory_ledger import CapacityExceededError, HoldNotActiveError, InventoryLedger
from .notification_service import LoggingNotifier, Notifier, dispatch_confirmation

logger = logging.getLogger(__name__)

SETTLED_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED)


@dataclass(frozen=True)
class WebhookOutcome:
    outcome: str
    booking_id: Optional[str] = None


class ReconciliationService:
    """Verify payments with the gateway and apply the result to bookings."""

    def __init__(
        self,
        db: AsyncSession,
        gateways: GatewayRegistry,
        notifier: Optional[Notifier] = None,
    ):
        self.db = db
        self.gateways = gateways
        self.notifier = notifier or LoggingNotifier()
        self.store = BookingStore(db)
        self.ledger = InventoryLedger(db)

    async def _get_session(self, reference: str) -> Optional[PaymentSession]:
        result = await self.db.execute(
            select(PaymentSession)
            .where(PaymentSession.gateway_reference == reference)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def confirm(self, booking_id: UUID, reference: str) -> Booking:
        """
        Confirm a booking against a gateway payment reference.

        Safe to call any number of times with the same reference.

        Raises:
            NotFoundError: Unknown booking
            ConflictError: Booking is cancelled or settled by another payment
            VerificationFailedError: Payment is not (yet) a verified success
            InsufficientAvailabilityError: Payment succeeded after the token
                lapsed and the capacity is gone
        """
        booking = await self.store.get_or_raise(booking_id, refresh=True)

        settled = self._settled_result(booking, reference)
        if settled is not None:
            return settled

        session = await self._get_session(reference)
        if session is None or session.booking_id != booking.id:
            logger.warning(
                "Confirmation with unknown payment reference",
                extra={"booking_id": str(booking_id), "reference": reference}
            )
            raise VerificationFailedError(str(booking_id), reason="unknown_reference", retryable=False)

        gateway = self.gateways.get(session.provider)
        if gateway is None:
            raise VerificationFailedError(str(booking_id), reason="provider_unavailable")
        if not gateway.verify_is_authoritative:
            raise VerificationFailedError(
                str(booking_id),
                reason="awaiting_provider_notification",
                detail="Payment is still being processed, please try again shortly",
            )

        # No transaction stays open across the gateway call
        await self.db.commit()
        payment = await self._verify(gateway, reference, booking_id)
        return await self._apply(booking, session, payment, gateway.name)

    def _settled_result(self, booking: Booking, reference: str) -> Optional[Booking]:
        if booking.status in SETTLED_STATUSES:
            if booking.payment_reference == reference:
                logger.info(
                    "Booking already confirmed for this payment",
                    extra={"booking_id": str(booking.id), "reference": reference}
                )
                return booking
            raise ConflictError(
                detail="Booking is already confirmed with a different payment",
                conflicting_resource={"booking_id": str(booking.id)},
            )
        if booking.status == BookingStatus.CANCELLED:
            raise ConflictError(detail="Booking has been cancelled")
        return None

    async def _verify(self, gateway: PaymentGateway, reference: str, booking_id: UUID) -> GatewayPayment:
        try:
            return await gateway.verify(reference)
        except GatewayError as e:
            logger.warning(
                "Gateway verification unavailable",
                extra={"booking_id": str(booking_id), "reference": reference, "error": str(e)}
            )
            raise VerificationFailedError(str(booking_id), reason="gateway_unavailable") from e

    async def _apply(
        self, booking: Booking, session: PaymentSession, payment: GatewayPayment, provider: str
    ) -> Booking:
        if payment.status == PaymentOutcome.PENDING:
            raise VerificationFailedError(str(booking.id), reason="payment_pending")

        amount_matches = (
            payment.amount == booking.amount
            and payment.currency.upper() == booking.currency.upper()
        )
        if payment.status == PaymentOutcome.SUCCEEDED and amount_matches:
            return await self._mark_confirmed(booking, session, payment.reference, provider)

        if payment.status == PaymentOutcome.SUCCEEDED:
            reason = "amount_mismatch"
            logger.error(
                "Gateway amount does not match booking",
                extra={
                    "booking_id": str(booking.id),
                    "reference": payment.reference,
                    "expected_amount": booking.amount,
                    "expected_currency": booking.currency,
                    "gateway_amount": payment.amount,
                    "gateway_currency": payment.currency,
                }
            )
        else:
            reason = payment.failure_reason or "payment_failed"

        if self._superseded(booking, session):
            # The booking's current attempt and its token are left alone
            if payment.status == PaymentOutcome.SUCCEEDED:
                await self._flag_refund(session.id, reason)
            logger.info(
                "Outcome of a superseded payment attempt ignored",
                extra={
                    "booking_id": str(booking.id),
                    "reference": session.gateway_reference,
                    "session_status": session.status.value,
                    "reason": reason,
                }
            )
            raise VerificationFailedError(str(booking.id), reason="superseded_attempt", retryable=False)

        await self._mark_failed(booking, session, reason, provider, refund_needed=payment.status == PaymentOutcome.SUCCEEDED)
        raise VerificationFailedError(str(booking.id), reason=reason, retryable=reason != "amount_mismatch")

    @staticmethod
    def _superseded(booking: Booking, session: PaymentSession) -> bool:
        return (
            session.status != PaymentSessionStatus.OPEN
            or booking.payment_reference != session.gateway_reference
        )

    async def _secure_capacity(self, booking: Booking) -> None:
        """Commit the booking's token, or take capacity again if it lapsed."""
        if booking.hold_id is not None:
            try:
                await self.ledger.commit(booking.hold_id)
                return
            except HoldNotActiveError:
                logger.info(
                    "Payment succeeded after reservation token lapsed",
                    extra={"booking_id": str(booking.id), "hold_id": str(booking.hold_id)}
                )

        item_id, quantity = booking.item_id, booking.quantity
        try:
            hold = await self.ledger.reserve(
                item_id, quantity, booking.window_start, booking.window_end,
                ttl_seconds=settings.hold_ttl_seconds,
            )
        except CapacityExceededError as e:
            raise InsufficientAvailabilityError(str(item_id), quantity, e.available) from e
        await self.ledger.commit(hold.id)
        booking.hold_id = hold.id

    async def _mark_confirmed(
        self, booking: Booking, session: PaymentSession, reference: str, provider: str
    ) -> Booking:
        booking_id, session_id = booking.id, session.id
        try:
            await self._secure_capacity(booking)
        except InsufficientAvailabilityError:
            await self._flag_refund(session_id, "capacity_lost")
            logger.error(
                "Paid booking could not be confirmed - capacity lost, refund required",
                extra={"booking_id": str(booking_id), "reference": reference}
            )
            raise

        now = clock.utcnow()
        booking.status = BookingStatus.CONFIRMED
        booking.payment_status = PaymentStatus.PAID
        booking.payment_reference = reference
        booking.payment_provider = provider
        booking.confirmed_at = now
        session.status = PaymentSessionStatus.SUCCEEDED
        session.verified_at = now

        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            current = await self.store.get_or_raise(booking_id, refresh=True)
            if current.status in SETTLED_STATUSES and current.payment_reference == reference:
                return current
            raise ConcurrentModificationError(str(booking_id))

        metrics_collector.record_booking_confirmed(provider)
        logger.info(
            "Booking confirmed",
            extra={
                "booking_id": str(booking_id),
                "booking_code": booking.code,
                "reference": reference,
                "provider": provider,
                "amount": booking.amount,
                "currency": booking.currency,
            }
        )

        await dispatch_confirmation(self.notifier, booking)
        return booking

    async def _flag_refund(self, session_id: UUID, reason: str) -> None:
        await self.db.execute(
            update(PaymentSession)
            .where(PaymentSession.id == session_id)
            .values(status=PaymentSessionStatus.REQUIRES_REFUND, failure_reason=reason, verified_at=clock.utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def _mark_failed(
        self, booking: Booking, session: PaymentSession, reason: str, provider: str, refund_needed: bool = False
    ) -> None:
        booking_id = booking.id
        booking.payment_status = PaymentStatus.FAILED
        if booking.hold_id is not None:
            await self.ledger.release(booking.hold_id, reason="payment_failed")

        session.status = PaymentSessionStatus.REQUIRES_REFUND if refund_needed else PaymentSessionStatus.FAILED
        session.failure_reason = reason
        session.verified_at = clock.utcnow()

        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise ConcurrentModificationError(str(booking_id))

        metrics_collector.record_payment_failed(provider, "amount_mismatch" if reason == "amount_mismatch" else "declined")
        logger.warning(
            "Payment verification failed",
            extra={"booking_id": str(booking_id), "reason": reason, "provider": provider}
        )

    async def handle_webhook(self, provider: str, payload: bytes, headers: Mapping[str, str]) -> WebhookOutcome:
        """
        Apply a gateway notification.

        The outcome is always acknowledged unless the signature is invalid or
        the gateway cannot be reached for re-verification.

        Raises:
            NotFoundError: Unknown provider
            ValidationError: Signature verification failed
            PaymentGatewayUnavailableError: Re-verification failed; the
                provider should redeliver
        """
        gateway = self.gateways.get(provider)
        if gateway is None:
            raise NotFoundError(resource_type="payment provider", resource_id=provider)

        try:
            event = await gateway.parse_webhook(payload, headers)
        except WebhookVerificationError as e:
            logger.warning("Webhook rejected", extra={"provider": provider, "error": str(e)})
            raise ValidationError(detail="Webhook signature verification failed")

        if event.payment is None or event.reference is None:
            logger.info("Webhook event ignored", extra={"provider": provider, "event_type": event.event_type})
            return WebhookOutcome("ignored")

        session = await self._get_session(event.reference)
        if session is None:
            logger.warning(
                "Webhook for unknown payment reference",
                extra={"provider": provider, "reference": event.reference, "event_id": event.event_id}
            )
            return WebhookOutcome("ignored")

        booking = await self.store.get_or_raise(session.booking_id, refresh=True)
        booking_id = str(booking.id)

        try:
            if self._settled_result(booking, event.reference) is not None:
                return WebhookOutcome("already_confirmed", booking_id)
        except ConflictError:
            logger.warning(
                "Webhook for a booking that cannot take this payment",
                extra={"booking_id": booking_id, "reference": event.reference, "status": booking.status.value}
            )
            await self._flag_refund(session.id, "booking_not_payable")
            return WebhookOutcome("requires_refund", booking_id)

        if gateway.verify_is_authoritative:
            await self.db.commit()
            try:
                payment = await self._verify(gateway, event.reference, booking.id)
            except VerificationFailedError as e:
                raise PaymentGatewayUnavailableError(provider, retry_after=60) from e
        else:
            payment = event.payment

        try:
            await self._apply(booking, session, payment, gateway.name)
        except VerificationFailedError as e:
            if e.reason == "superseded_attempt":
                return WebhookOutcome("ignored", booking_id)
            outcome = "pending" if e.reason == "payment_pending" else "payment_failed"
            return WebhookOutcome(outcome, booking_id)
        except InsufficientAvailabilityError:
            return WebhookOutcome("requires_refund", booking_id)

        return WebhookOutcome("confirmed", booking_id)

    async def expire_lapsed_holds(self, now: Optional[datetime] = None, batch_size: Optional[int] = None) -> int:
        """
        Expire lapsed reservation tokens and fail the bookings they backed.

        Returns:
            Number of tokens expired
        """
        now = now or clock.utcnow()
        expired = await self.ledger.expire_due(now, batch_size or settings.hold_sweep_batch_size)

        for hold in expired:
            booking = await self.store.get_by_hold(hold.id)
            if booking is None or booking.status != BookingStatus.PENDING_PAYMENT:
                continue
            if booking.payment_status == PaymentStatus.PENDING:
                booking.payment_status = PaymentStatus.FAILED
            await self.db.execute(
                update(PaymentSession)
                .where(PaymentSession.booking_id == booking.id, PaymentSession.status == PaymentSessionStatus.OPEN)
                .values(status=PaymentSessionStatus.EXPIRED, failure_reason="reservation_expired", updated_at=now)
                .execution_options(synchronize_session=False)
            )
            metrics_collector.record_payment_failed(booking.payment_provider or "none", "timeout")

        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            logger.warning("Hold sweep lost a race with a booking update, will retry next run")
            return 0

        return len(expired)
