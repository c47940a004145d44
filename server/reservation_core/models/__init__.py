"""Models module exporting all database models."""

from .booking import Booking, BookingStatus, PaymentStatus
from .cancellation import CancellationPriority, CancellationRequest, CancellationStatus, RefundMethod
from .idempotency import IdempotencyRecord
from .inventory import CapacitySlot, HoldStatus, InventoryAdjustment, InventoryHold, InventoryItem, ItemKind
from .payment import PaymentSession, PaymentSessionStatus

__all__ = [
    # Inventory
    "ItemKind",
    "InventoryItem",
    "CapacitySlot",
    "InventoryHold",
    "HoldStatus",
    "InventoryAdjustment",

    # Booking aggregate
    "Booking",
    "BookingStatus",
    "PaymentStatus",

    # Payments
    "PaymentSession",
    "PaymentSessionStatus",

    # Cancellations
    "CancellationRequest",
    "CancellationStatus",
    "CancellationPriority",
    "RefundMethod",

    # Idempotency
    "IdempotencyRecord",
]
