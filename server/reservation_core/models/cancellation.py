"""Cancellation request model."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from ..core import clock
from ..core.database import Base
from .types import str_enum


class CancellationStatus(str, Enum):
    """Review status of a cancellation request."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CancellationPriority(str, Enum):
    """Review queue priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RefundMethod(str, Enum):
    """How an approved refund is paid out."""
    ORIGINAL_PAYMENT = "original_payment"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CREDIT = "credit"


# Review queue ordering, most urgent first
PRIORITY_RANK = {
    CancellationPriority.URGENT: 4,
    CancellationPriority.HIGH: 3,
    CancellationPriority.MEDIUM: 2,
    CancellationPriority.LOW: 1,
}


class CancellationRequest(Base):
    """A requester's ask to cancel a paid booking, pending staff review."""

    __tablename__ = "cancellation_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    booking_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    requester_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    priority: Mapped[CancellationPriority] = mapped_column(
        str_enum(CancellationPriority), nullable=False, default=CancellationPriority.MEDIUM
    )
    status: Mapped[CancellationStatus] = mapped_column(
        str_enum(CancellationStatus), nullable=False, default=CancellationStatus.PENDING, index=True
    )

    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refund_method: Mapped[RefundMethod | None] = mapped_column(str_enum(RefundMethod), nullable=True)
    reviewer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reviewer_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=clock.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=clock.utcnow, onupdate=clock.utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("length(reason) > 0", name="ck_cancellation_reason_not_empty"),
        CheckConstraint("refund_amount IS NULL OR refund_amount >= 0", name="ck_cancellation_refund_non_negative"),
        # At most one open request per booking
        Index(
            "uq_cancellation_pending_booking",
            "booking_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != CancellationStatus.PENDING

    def __repr__(self) -> str:
        return (
            f"<CancellationRequest(id={self.id}, booking_id={self.booking_id}, "
            f"status={self.status}, priority={self.priority})>"
        )
