"""Cancellation policy: immediate cancellation or staff review."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..core import clock
from ..core.exceptions import (
    AuthorizationError,
    ConcurrentModificationError,
    ConflictError,
    DuplicateRequestError,
    NotFoundError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..models.cancellation import (
    PRIORITY_RANK,
    CancellationPriority,
    CancellationRequest,
    CancellationStatus,
    RefundMethod,
)
from .booking_store import BookingStore
from .inventory_ledger import InventoryLedger

logger = logging.getLogger(__name__)


class CancellationPath(str, Enum):
    IMMEDIATE = "immediate"
    REVIEW = "review"
    NOT_CANCELLABLE = "not_cancellable"


@dataclass
class CancellationOutcome:
    """Result of a cancellation request as shown to the requester."""
    outcome: str
    message: str
    booking: Booking
    request: Optional[CancellationRequest] = None


class CancellationPolicyEngine:
    """Decide how a booking may be cancelled and carry the decision out."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = BookingStore(db)
        self.ledger = InventoryLedger(db)

    @staticmethod
    def decide(booking: Booking) -> CancellationPath:
        if booking.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
            return CancellationPath.NOT_CANCELLABLE
        if booking.payment_status in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            return CancellationPath.IMMEDIATE
        if booking.payment_status == PaymentStatus.PAID:
            return CancellationPath.REVIEW
        return CancellationPath.NOT_CANCELLABLE

    async def _pending_for_booking(self, booking_id: UUID) -> Optional[CancellationRequest]:
        result = await self.db.execute(
            select(CancellationRequest).where(
                CancellationRequest.booking_id == booking_id,
                CancellationRequest.status == CancellationStatus.PENDING,
            )
        )
        return result.scalar_one_or_none()

    async def request_cancellation(
        self,
        booking_id: UUID,
        requester_id: str,
        reason: str,
        priority: CancellationPriority = CancellationPriority.MEDIUM,
    ) -> CancellationOutcome:
        """
        Cancel an unpaid booking now, or queue a paid one for review.

        Raises:
            NotFoundError: Unknown booking
            AuthorizationError: Booking belongs to someone else
            ConflictError: Booking is already cancelled or completed
            DuplicateRequestError: A pending request already exists
        """
        booking = await self.store.get_or_raise(booking_id, refresh=True)
        if booking.requester_id != requester_id:
            raise AuthorizationError(detail="You can only cancel your own bookings")

        path = self.decide(booking)
        if path == CancellationPath.NOT_CANCELLABLE:
            raise ConflictError(
                detail=f"Booking cannot be cancelled (status: {booking.status.value}, "
                       f"payment: {booking.payment_status.value})"
            )

        if path == CancellationPath.IMMEDIATE:
            return await self._cancel_now(booking, reason)

        existing = await self._pending_for_booking(booking_id)
        if existing is not None:
            raise DuplicateRequestError(str(booking_id), str(existing.id))

        request = CancellationRequest(
            booking_id=booking_id,
            requester_id=requester_id,
            reason=reason,
            priority=priority,
            status=CancellationStatus.PENDING,
        )
        self.db.add(request)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateRequestError(str(booking_id))

        metrics_collector.record_cancellation_request("submitted")
        logger.info(
            "Cancellation request submitted for review",
            extra={
                "booking_id": str(booking_id),
                "request_id": str(request.id),
                "priority": priority.value,
            }
        )
        return CancellationOutcome(
            outcome="pending_review",
            message="Your cancellation request has been submitted for review",
            booking=booking,
            request=request,
        )

    async def _cancel_now(self, booking: Booking, reason: str) -> CancellationOutcome:
        booking_id = booking.id
        booking.status = BookingStatus.CANCELLED
        booking.cancellation_reason = reason
        booking.cancelled_at = clock.utcnow()
        if booking.hold_id is not None:
            await self.ledger.release(booking.hold_id, reason="cancelled")
        await self.store.save(booking)

        metrics_collector.record_booking_cancelled(CancellationPath.IMMEDIATE.value)
        logger.info("Booking cancelled", extra={"booking_id": str(booking_id), "path": "immediate"})
        return CancellationOutcome(
            outcome="immediately_cancelled",
            message="Your booking has been cancelled",
            booking=booking,
        )

    async def get_request(self, request_id: UUID) -> CancellationRequest:
        result = await self.db.execute(
            select(CancellationRequest)
            .where(CancellationRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError(resource_type="cancellation request", resource_id=str(request_id))
        return request

    async def review(
        self,
        request_id: UUID,
        reviewer_id: str,
        decision: CancellationStatus,
        refund_amount: Optional[int] = None,
        refund_method: Optional[RefundMethod] = None,
        reviewer_notes: Optional[str] = None,
    ) -> CancellationOutcome:
        """
        Approve or reject a pending cancellation request.

        Approval cancels the booking, returns its capacity and records the
        refund instructions. Rejection leaves the booking untouched.
        """
        if decision not in (CancellationStatus.APPROVED, CancellationStatus.REJECTED):
            raise ValidationError(
                detail="Decision must be approved or rejected",
                errors={"decision": decision.value},
            )

        request = await self.get_request(request_id)
        if request.is_terminal:
            raise ConflictError(detail=f"Cancellation request already {request.status.value}")

        booking = await self.store.get_or_raise(request.booking_id, refresh=True)
        now = clock.utcnow()

        if decision == CancellationStatus.APPROVED:
            refund = booking.amount if refund_amount is None else refund_amount
            if refund < 0 or refund > booking.amount:
                raise ValidationError(
                    detail="Refund amount must be between 0 and the booking amount",
                    errors={"refund_amount": refund, "booking_amount": booking.amount},
                )
            if booking.status == BookingStatus.CANCELLED:
                raise ConflictError(detail="Booking has already been cancelled")

            booking.status = BookingStatus.CANCELLED
            booking.cancellation_reason = request.reason
            booking.cancelled_at = now
            booking.refund_amount = refund
            if booking.hold_id is not None:
                await self.ledger.release(booking.hold_id, reason="cancelled")
            request.refund_amount = refund
            request.refund_method = refund_method or RefundMethod.ORIGINAL_PAYMENT

        request.status = decision
        request.reviewer_id = reviewer_id
        request.reviewer_notes = reviewer_notes
        request.reviewed_at = now

        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise ConcurrentModificationError(str(request.booking_id))

        metrics_collector.record_cancellation_request(decision.value)
        if decision == CancellationStatus.APPROVED:
            metrics_collector.record_booking_cancelled(CancellationPath.REVIEW.value)
            message = "Cancellation approved"
        else:
            message = "Cancellation rejected"

        logger.info(
            "Cancellation request reviewed",
            extra={
                "request_id": str(request_id),
                "booking_id": str(booking.id),
                "decision": decision.value,
                "reviewer_id": reviewer_id,
                "refund_amount": request.refund_amount,
            }
        )
        return CancellationOutcome(outcome=decision.value, message=message, booking=booking, request=request)

    async def list_pending(self) -> list[CancellationRequest]:
        """Pending requests, most urgent first, then oldest first."""
        result = await self.db.execute(
            select(CancellationRequest).where(CancellationRequest.status == CancellationStatus.PENDING)
        )
        requests = sorted(
            result.scalars().all(),
            key=lambda r: (-PRIORITY_RANK[r.priority], r.created_at),
        )
        metrics_collector.set_pending_reviews(len(requests))
        return requests

    async def list_for_requester(self, requester_id: str) -> list[CancellationRequest]:
        result = await self.db.execute(
            select(CancellationRequest)
            .where(CancellationRequest.requester_id == requester_id)
            .order_by(CancellationRequest.created_at.desc())
        )
        return list(result.scalars().all())
