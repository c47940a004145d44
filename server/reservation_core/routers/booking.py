"""Booking router for booking operations."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_current_user, get_db, is_staff, require_staff
from ..core.exceptions import AuthorizationError, ProblemDetailsException
from ..schemas.booking import (
    Booking,
    BookingLifecycleRequest,
    BookingList,
    CreateBookingRequest,
    GetBookingRequest,
    ListBookingsRequest,
)
from ..schemas.common import PROBLEM_RESPONSES, Money
from ..services.booking_store import BookingStore
from ..services.reservation_service import ReservationCoordinator
from .idempotency import IDEMPOTENCY_KEY_DEPENDENCY, handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/booking", tags=["booking"], responses=PROBLEM_RESPONSES)

DB_DEPENDENCY = Depends(get_db)
USER_DEPENDENCY = Depends(get_current_user)
STAFF_DEPENDENCY = Depends(require_staff)


def booking_to_schema(booking_model) -> Booking:
    """Convert booking model to schema."""
    return Booking(
        id=str(booking_model.id),
        code=booking_model.code,
        item_kind=booking_model.item_kind,
        item_id=str(booking_model.item_id),
        requester_id=booking_model.requester_id,
        quantity=booking_model.quantity,
        window_start=booking_model.window_start,
        window_end=booking_model.window_end,
        addons=booking_model.addons or [],
        price=Money(amount=booking_model.amount, currency=booking_model.currency),
        price_breakdown=booking_model.price_breakdown or {},
        status=booking_model.status,
        payment_status=booking_model.payment_status,
        payment_provider=booking_model.payment_provider,
        payment_reference=booking_model.payment_reference,
        reservation_token=str(booking_model.hold_id) if booking_model.hold_id else None,
        refund_amount=booking_model.refund_amount,
        cancellation_reason=booking_model.cancellation_reason,
        created_at=booking_model.created_at,
        confirmed_at=booking_model.confirmed_at,
        cancelled_at=booking_model.cancelled_at,
    )


@router.post("/create", response_model=Booking, status_code=201)
async def create_booking(
    request: CreateBookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = USER_DEPENDENCY,
    idempotency_key: str = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Reserve capacity and create a booking awaiting payment.

    This operation is idempotent based on the Idempotency-Key header.
    """
    coordinator = ReservationCoordinator(db)
    requester_id = current_user["user_id"]

    async def operation():
        booking = await coordinator.create_booking(request, requester_id)
        response_data = booking_to_schema(booking)

        logger.info(
            "Booking created successfully",
            extra={
                "booking_id": str(booking.id),
                "booking_code": booking.code,
                "item_id": str(request.item_id),
                "quantity": request.quantity,
                "idempotency_key": idempotency_key
            }
        )
        return response_data.model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method="booking/create",
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            principal=requester_id,
            operation_func=operation,
            db=db,
            status_code=201,
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking creation",
            extra={
                "item_id": str(request.item_id),
                "quantity": request.quantity,
                "idempotency_key": idempotency_key,
                "error": str(e)
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/get", response_model=Booking)
async def get_booking(
    request: GetBookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = USER_DEPENDENCY,
) -> JSONResponse:
    """
    Get booking details.

    Requesters see their own bookings; staff see all.
    """
    booking = await BookingStore(db).get_or_raise(request.booking_id)
    if booking.requester_id != current_user["user_id"] and not is_staff(current_user):
        raise AuthorizationError(detail="You can only view your own bookings")

    return JSONResponse(status_code=200, content=booking_to_schema(booking).model_dump(mode="json"))


@router.post("/list", response_model=BookingList)
async def list_bookings(
    request: ListBookingsRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = USER_DEPENDENCY,
) -> JSONResponse:
    """List the caller's bookings, newest first."""
    bookings = await BookingStore(db).list_for_requester(current_user["user_id"], request.status)
    response_data = BookingList(bookings=[booking_to_schema(b) for b in bookings])
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/start", response_model=Booking)
async def start_booking(
    request: BookingLifecycleRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = STAFF_DEPENDENCY,
) -> JSONResponse:
    """Mark a confirmed booking as in progress."""
    booking = await BookingStore(db).start(request.booking_id)
    return JSONResponse(status_code=200, content=booking_to_schema(booking).model_dump(mode="json"))


@router.post("/complete", response_model=Booking)
async def complete_booking(
    request: BookingLifecycleRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = STAFF_DEPENDENCY,
) -> JSONResponse:
    """Mark an in-progress booking as completed."""
    booking = await BookingStore(db).complete(request.booking_id)
    return JSONResponse(status_code=200, content=booking_to_schema(booking).model_dump(mode="json"))
