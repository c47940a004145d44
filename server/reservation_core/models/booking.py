"""Booking aggregate model."""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core import clock
from ..core.database import Base
from .inventory import ItemKind
from .types import str_enum


class BookingStatus(str, Enum):
    """Booking lifecycle status."""
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment status of a booking."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Booking(Base):
    """
    A requester's claim on inventory.

    ``status = confirmed`` implies ``payment_status = paid``. Updates go
    through the ``version`` column so two writers cannot both win.
    """

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True, index=True)

    item_kind: Mapped[ItemKind] = mapped_column(str_enum(ItemKind), nullable=False)
    item_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False
    )
    requester_id: Mapped[str] = mapped_column(String(128), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    window_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    window_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    addons: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    price_breakdown: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Money in minor units
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[BookingStatus] = mapped_column(
        str_enum(BookingStatus), nullable=False, default=BookingStatus.PENDING_PAYMENT
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        str_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    payment_provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    hold_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("inventory_holds.id", ondelete="SET NULL"), nullable=True, index=True
    )

    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=clock.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=clock.utcnow, onupdate=clock.utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_booking_quantity_positive"),
        CheckConstraint("amount >= 0", name="ck_booking_amount_non_negative"),
        CheckConstraint("length(requester_id) > 0", name="ck_booking_requester_not_empty"),
        CheckConstraint(
            "status != 'confirmed' OR payment_status = 'paid'",
            name="ck_booking_confirmed_requires_paid",
        ),
        CheckConstraint(
            "refund_amount IS NULL OR (refund_amount >= 0 AND refund_amount <= amount)",
            name="ck_booking_refund_within_amount",
        ),
        Index("ix_bookings_requester_status", "requester_id", "status"),
        Index("ix_bookings_item_window", "item_id", "window_start", "window_end"),
    )

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, code='{self.code}', status={self.status}, "
            f"payment_status={self.payment_status}, version={self.version})>"
        )
