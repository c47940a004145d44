"""Cancellation-related Pydantic schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.cancellation import CancellationPriority, CancellationStatus, RefundMethod
from .booking import Booking


class RequestCancellationRequest(BaseModel):
    """Request schema for asking to cancel a booking."""

    booking_id: UUID = Field(..., description="Booking to cancel")
    reason: str = Field(..., min_length=1, max_length=1000, description="Why the booking should be cancelled")
    priority: CancellationPriority = Field(CancellationPriority.MEDIUM, description="Review priority")


class ReviewCancellationRequest(BaseModel):
    """Request schema for a staff review decision."""

    request_id: UUID = Field(..., description="Cancellation request to decide")
    decision: CancellationStatus = Field(..., description="approved or rejected")
    refund_amount: Optional[int] = Field(None, ge=0, description="Refund in minor units; full amount when omitted")
    refund_method: Optional[RefundMethod] = Field(None, description="How the refund is paid out")
    reviewer_notes: Optional[str] = Field(None, max_length=500)


class CancellationRequest(BaseModel):
    """Cancellation request response schema."""

    id: str
    booking_id: str
    requester_id: str
    reason: str
    priority: CancellationPriority
    status: CancellationStatus
    refund_amount: Optional[int] = None
    refund_method: Optional[RefundMethod] = None
    reviewer_id: Optional[str] = None
    reviewer_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime


class CancellationOutcome(BaseModel):
    """Result of a cancellation request."""

    outcome: str = Field(..., description="immediately_cancelled or pending_review")
    message: str
    booking: Booking
    request: Optional[CancellationRequest] = None


class CancellationRequestList(BaseModel):
    requests: list[CancellationRequest]
