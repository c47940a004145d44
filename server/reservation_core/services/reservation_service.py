"""Reservation coordinator: turns a booking request into a pending booking."""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import clock
from ..core.config import settings
from ..core.exceptions import InsufficientAvailabilityError, NotFoundError, ValidationError
from ..core.observability import get_logger, metrics_collector
from ..core.retry import retry_async
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..schemas.booking import CreateBookingRequest
from .booking_store import BookingStore
from .catalog import CatalogProvider, DatabaseCatalog
from .inventory_ledger import CapacityExceededError, InvalidWindowError, InventoryLedger, UnknownItemError
from .pricing import CatalogEntry, PricingError, Quote, policy_for, quote

logger = logging.getLogger(__name__)
alerts = get_logger("reservation_core.alerts")


class ReservationCoordinator:
    """
    Validate, reserve, persist.

    Capacity is taken from the ledger and committed before the booking is
    written. If the booking write fails the reservation token is released
    again with bounded retries; a token that still cannot be released is
    reported as an operational alert.
    """

    def __init__(
        self,
        db: AsyncSession,
        catalog: Optional[CatalogProvider] = None,
        store: Optional[BookingStore] = None,
        hold_ttl_seconds: Optional[int] = None,
    ):
        self.db = db
        self.catalog = catalog or DatabaseCatalog(db)
        self.store = store or BookingStore(db)
        self.ledger = InventoryLedger(db)
        self.hold_ttl_seconds = hold_ttl_seconds or settings.hold_ttl_seconds

    def validate(self, request: CreateBookingRequest, entry: CatalogEntry) -> Quote:
        """
        Check a request against the catalog and price it.

        Raises:
            ValidationError: Any rule is violated; nothing has been reserved
        """
        if entry.kind != request.item_kind:
            raise ValidationError(
                detail=f"Item {entry.item_id} is a {entry.kind.value}, not a {request.item_kind.value}",
                errors={"item_kind": "mismatch"},
            )

        if request.quantity < 1:
            raise ValidationError(detail="quantity must be at least 1", errors={"quantity": "too_small"})
        if request.quantity > entry.max_quantity:
            raise ValidationError(
                detail=f"quantity may not exceed {entry.max_quantity}",
                errors={"quantity": "too_large"},
            )

        policy = policy_for(entry.kind)
        start, end = request.window_start, request.window_end

        if policy.dated and (start is None or end is None):
            raise ValidationError(
                detail=f"{entry.kind.value} bookings require window_start and window_end",
                errors={"window": "required"},
            )
        if (start is None) != (end is None):
            raise ValidationError(detail="window_start and window_end go together", errors={"window": "partial"})

        if start is not None:
            if start >= end:
                raise ValidationError(detail="window_start must be before window_end", errors={"window": "unordered"})
            if start <= clock.today():
                raise ValidationError(detail="window_start must be in the future", errors={"window_start": "past"})
            if policy.dated and (start < entry.window_start or end > entry.window_end):
                raise ValidationError(
                    detail=(
                        f"Window must fall between {entry.window_start.isoformat()} "
                        f"and {entry.window_end.isoformat()}"
                    ),
                    errors={"window": "out_of_range"},
                )

        try:
            return quote(entry, request.quantity, start, end, request.addons)
        except PricingError as e:
            raise ValidationError(detail=str(e), errors={"addons": "invalid"})

    async def create_booking(self, request: CreateBookingRequest, requester_id: str) -> Booking:
        """
        Create a booking in ``pending_payment`` backed by a reservation token.

        Raises:
            NotFoundError: Unknown item
            ValidationError: Request rejected before touching inventory
            InsufficientAvailabilityError: Not enough capacity for the window
        """
        entry = await self.catalog.get_entry(request.item_id)
        if entry is None:
            raise NotFoundError(resource_type="inventory item", resource_id=str(request.item_id))

        price = self.validate(request, entry)

        try:
            hold = await self.ledger.reserve(
                request.item_id,
                request.quantity,
                request.window_start,
                request.window_end,
                ttl_seconds=self.hold_ttl_seconds,
            )
        except CapacityExceededError as e:
            raise InsufficientAvailabilityError(str(request.item_id), request.quantity, e.available)
        except InvalidWindowError as e:
            raise ValidationError(detail=str(e), errors={"window": "invalid"})
        except UnknownItemError:
            raise NotFoundError(resource_type="inventory item", resource_id=str(request.item_id))

        hold_id = hold.id
        await self.db.commit()

        try:
            booking = Booking(
                item_kind=entry.kind,
                item_id=request.item_id,
                requester_id=requester_id,
                quantity=request.quantity,
                window_start=request.window_start,
                window_end=request.window_end,
                addons=list(dict.fromkeys(request.addons)),
                price_breakdown=price.as_dict(),
                amount=price.total,
                currency=price.currency,
                status=BookingStatus.PENDING_PAYMENT,
                payment_status=PaymentStatus.PENDING,
                hold_id=hold_id,
            )
            await self.store.add(booking)
            await self.db.commit()
        except Exception as exc:
            await self.db.rollback()
            await self._compensate(hold_id, exc)
            raise

        metrics_collector.record_booking_created(entry.kind.value)
        logger.info(
            "Booking created",
            extra={
                "booking_id": str(booking.id),
                "booking_code": booking.code,
                "item_id": str(request.item_id),
                "quantity": request.quantity,
                "amount": booking.amount,
                "currency": booking.currency,
                "hold_id": str(hold_id),
                "requester_id": requester_id,
            }
        )
        return booking

    async def _compensate(self, hold_id, cause: Exception) -> None:
        """Release a token whose booking write failed."""

        async def release() -> bool:
            try:
                released = await self.ledger.release(hold_id, reason="compensation")
                await self.db.commit()
                return released
            except Exception:
                await self.db.rollback()
                raise

        try:
            await retry_async(
                release,
                max_attempts=settings.compensation_max_attempts,
                base_delay=settings.compensation_base_delay_seconds,
                retry_on=(SQLAlchemyError, OSError),
                operation="release_reservation_token",
            )
            logger.warning(
                "Booking write failed, reservation token released",
                extra={"hold_id": str(hold_id), "error": str(cause)}
            )
        except Exception as e:
            metrics_collector.record_compensation_failure()
            alerts.critical(
                "reservation_token_release_failed",
                hold_id=str(hold_id),
                booking_error=repr(cause),
                release_error=repr(e),
                action="release the token manually or wait for the expiry sweep",
            )
