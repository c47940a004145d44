"""Booking aggregate store."""

import logging
import secrets
import string
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..core import clock
from ..core.exceptions import ConcurrentModificationError, ConflictError, NotFoundError
from ..models.booking import Booking, BookingStatus
from .inventory_ledger import InventoryLedger
from .pricing import policy_for

logger = logging.getLogger(__name__)


class BookingStore:
    """Persistence and lifecycle transitions for bookings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _generate_booking_code(self, length: int = 8) -> str:
        """Generate a random booking confirmation code."""
        alphabet = string.ascii_uppercase + string.digits
        return ''.join(secrets.choice(alphabet) for _ in range(length))

    async def new_code(self) -> str:
        code = self._generate_booking_code()
        while await self.get_by_code(code):
            code = self._generate_booking_code()
        return code

    async def add(self, booking: Booking) -> Booking:
        """Insert a booking and flush it; the caller commits."""
        if not booking.code:
            booking.code = await self.new_code()
        self.db.add(booking)
        await self.db.flush()
        return booking

    async def get(self, booking_id: UUID, refresh: bool = False) -> Optional[Booking]:
        stmt = select(Booking).where(Booking.id == booking_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_raise(self, booking_id: UUID, refresh: bool = False) -> Booking:
        booking = await self.get(booking_id, refresh=refresh)
        if booking is None:
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def get_by_code(self, code: str) -> Optional[Booking]:
        result = await self.db.execute(select(Booking).where(Booking.code == code))
        return result.scalar_one_or_none()

    async def get_by_hold(self, hold_id: UUID) -> Optional[Booking]:
        result = await self.db.execute(select(Booking).where(Booking.hold_id == hold_id))
        return result.scalar_one_or_none()

    async def list_for_requester(
        self, requester_id: str, status: Optional[BookingStatus] = None
    ) -> list[Booking]:
        stmt = select(Booking).where(Booking.requester_id == requester_id)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        result = await self.db.execute(stmt.order_by(Booking.created_at.desc()))
        return list(result.scalars().all())

    async def save(self, booking: Booking) -> Booking:
        """
        Commit pending changes to a booking.

        Raises:
            ConcurrentModificationError: Another writer updated the booking first
        """
        booking_id = booking.id
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            logger.warning("Booking version conflict", extra={"booking_id": str(booking_id)})
            raise ConcurrentModificationError(str(booking_id))
        return booking

    async def start(self, booking_id: UUID) -> Booking:
        """Move a confirmed booking to in_progress."""
        booking = await self.get_or_raise(booking_id)
        if booking.status != BookingStatus.CONFIRMED:
            raise ConflictError(
                detail=f"Only confirmed bookings can start (status: {booking.status.value})"
            )
        booking.status = BookingStatus.IN_PROGRESS
        await self.save(booking)

        logger.info("Booking started", extra={"booking_id": str(booking_id)})
        return booking

    async def complete(self, booking_id: UUID) -> Booking:
        """
        Move an in-progress booking to completed.

        Non-dated inventory such as a rented vehicle goes back into the pool
        when the booking completes.
        """
        booking = await self.get_or_raise(booking_id)
        if booking.status != BookingStatus.IN_PROGRESS:
            raise ConflictError(
                detail=f"Only in-progress bookings can be completed (status: {booking.status.value})"
            )

        booking.status = BookingStatus.COMPLETED
        if booking.hold_id is not None and not policy_for(booking.item_kind).dated:
            await InventoryLedger(self.db).release(booking.hold_id, reason="completed")
        await self.save(booking)

        logger.info(
            "Booking completed",
            extra={"booking_id": str(booking_id), "completed_at": clock.utcnow().isoformat()}
        )
        return booking
