"""Payment session audit model."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core import clock
from ..core.database import Base
from .types import str_enum


class PaymentSessionStatus(str, Enum):
    """Lifecycle of one gateway checkout session."""
    OPEN = "open"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"
    REQUIRES_REFUND = "requires_refund"


class PaymentSession(Base):
    """One checkout session opened with a payment gateway for a booking."""

    __tablename__ = "payment_sessions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    booking_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    gateway_reference: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    expected_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[PaymentSessionStatus] = mapped_column(
        str_enum(PaymentSessionStatus), nullable=False, default=PaymentSessionStatus.OPEN, index=True
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=clock.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=clock.utcnow, onupdate=clock.utcnow
    )

    __table_args__ = (
        CheckConstraint("expected_amount >= 0", name="ck_payment_session_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentSession(id={self.id}, booking_id={self.booking_id}, provider={self.provider}, "
            f"reference='{self.gateway_reference}', status={self.status})>"
        )
