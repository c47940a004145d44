"""Booking notifications and receipts."""

import logging
from typing import Protocol

from ..models.booking import Booking
from .pricing import minor_to_major

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def booking_confirmed(self, booking: Booking) -> None:
        ...


def receipt_lines(booking: Booking) -> dict:
    """Receipt payload for a confirmed booking."""
    breakdown = booking.price_breakdown or {}
    return {
        "booking_code": booking.code,
        "item_kind": booking.item_kind.value,
        "quantity": booking.quantity,
        "window_start": booking.window_start.isoformat() if booking.window_start else None,
        "window_end": booking.window_end.isoformat() if booking.window_end else None,
        "base": breakdown.get("base"),
        "surcharges": breakdown.get("surcharges", {}),
        "total": f"{minor_to_major(booking.amount, booking.currency)} {booking.currency}",
        "payment_reference": booking.payment_reference,
    }


class LoggingNotifier:
    """Notifier that writes receipts to the application log."""

    async def booking_confirmed(self, booking: Booking) -> None:
        logger.info(
            "Booking confirmation receipt",
            extra={
                "booking_id": str(booking.id),
                "requester_id": booking.requester_id,
                "receipt": receipt_lines(booking),
            }
        )


async def dispatch_confirmation(notifier: Notifier, booking: Booking) -> None:
    """Send a confirmation; failures are logged and never propagate."""
    try:
        await notifier.booking_confirmed(booking)
    except Exception:
        logger.exception(
            "Booking confirmation notification failed",
            extra={"booking_id": str(booking.id)}
        )
