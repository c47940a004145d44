"""Booking-related Pydantic schemas."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.booking import BookingStatus, PaymentStatus
from ..models.inventory import ItemKind
from .common import Money


class CreateBookingRequest(BaseModel):
    """Request schema for creating a booking."""

    item_kind: ItemKind = Field(..., description="Kind of inventory being booked")
    item_id: UUID = Field(..., description="Inventory item to book")
    quantity: int = Field(..., description="Rooms, participants, vehicles or travellers")
    window_start: Optional[date] = Field(None, description="First day of the stay, tour or rental")
    window_end: Optional[date] = Field(None, description="Day after the last day (exclusive)")
    addons: list[str] = Field(default_factory=list, description="Add-ons to include")


class GetBookingRequest(BaseModel):
    """Request schema for getting a booking."""

    booking_id: UUID = Field(..., description="Booking to retrieve")


class ListBookingsRequest(BaseModel):
    """Request schema for listing the caller's bookings."""

    status: Optional[BookingStatus] = Field(None, description="Only return bookings in this status")


class BookingLifecycleRequest(BaseModel):
    """Request schema for staff lifecycle transitions."""

    booking_id: UUID = Field(..., description="Booking to transition")


class Booking(BaseModel):
    """Booking response schema."""

    id: str = Field(..., description="Unique booking ID")
    code: str = Field(..., description="Booking confirmation code")
    item_kind: ItemKind
    item_id: str
    requester_id: str
    quantity: int = Field(..., ge=1)
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    addons: list[str] = Field(default_factory=list)
    price: Money
    price_breakdown: dict = Field(default_factory=dict)
    status: BookingStatus
    payment_status: PaymentStatus
    payment_provider: Optional[str] = None
    payment_reference: Optional[str] = None
    reservation_token: Optional[str] = Field(None, description="Reservation token backing this booking")
    refund_amount: Optional[int] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class BookingList(BaseModel):
    bookings: list[Booking]
