"""Inventory, capacity slot and reservation token models."""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core import clock
from ..core.database import Base
from .types import str_enum


class ItemKind(str, Enum):
    """Kinds of bookable inventory."""
    HOTEL = "hotel"
    TOUR = "tour"
    VEHICLE = "vehicle"
    GUIDE = "guide"
    CUSTOM_TRIP = "custom_trip"


class HoldStatus(str, Enum):
    """Reservation token status enumeration."""
    ACTIVE = "active"
    COMMITTED = "committed"
    RELEASED = "released"
    EXPIRED = "expired"


class InventoryItem(Base):
    """A bookable unit (hotel room type, tour, vehicle, guide or custom trip)."""

    __tablename__ = "inventory_items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    kind: Mapped[ItemKind] = mapped_column(str_enum(ItemKind), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    capacity_total: Mapped[int] = mapped_column(Integer, nullable=False)

    # Bookable window for dated kinds; NULL for vehicles and custom trips
    window_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    window_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Price in minor units per pricing unit of the kind
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    max_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    addons: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=clock.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=clock.utcnow, onupdate=clock.utcnow
    )

    __table_args__ = (
        CheckConstraint("capacity_total >= 0", name="ck_item_capacity_non_negative"),
        CheckConstraint("unit_price >= 0", name="ck_item_price_non_negative"),
        CheckConstraint("max_quantity > 0", name="ck_item_max_quantity_positive"),
        CheckConstraint(
            "window_start IS NULL OR window_end IS NULL OR window_start < window_end",
            name="ck_item_window_ordered",
        ),
    )

    slots: Mapped[list["CapacitySlot"]] = relationship(
        "CapacitySlot", back_populates="item", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<InventoryItem(id={self.id}, kind={self.kind}, name='{self.name}')>"


class CapacitySlot(Base):
    """
    Capacity for one item on one day.

    Non-dated items have a single slot with ``slot_date`` NULL.
    """

    __tablename__ = "capacity_slots"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    item_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False
    )
    slot_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    capacity_total: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("item_id", "slot_date", name="uq_capacity_slot_item_date"),
        CheckConstraint("capacity_reserved >= 0", name="ck_slot_reserved_non_negative"),
        CheckConstraint("capacity_reserved <= capacity_total", name="ck_slot_reserved_within_total"),
        Index("ix_capacity_slots_item_date", "item_id", "slot_date"),
    )

    item: Mapped["InventoryItem"] = relationship("InventoryItem", back_populates="slots")

    @property
    def capacity_available(self) -> int:
        return self.capacity_total - self.capacity_reserved


class InventoryHold(Base):
    """Reservation token: capacity taken from the ledger for a window."""

    __tablename__ = "inventory_holds"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    item_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    window_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    window_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[HoldStatus] = mapped_column(
        str_enum(HoldStatus), nullable=False, default=HoldStatus.ACTIVE, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    committed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=clock.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=clock.utcnow, onupdate=clock.utcnow
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_hold_quantity_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryHold(id={self.id}, item_id={self.item_id}, "
            f"quantity={self.quantity}, status={self.status}, expires_at={self.expires_at})>"
        )


class InventoryAdjustment(Base):
    """Audit record for staff capacity changes."""

    __tablename__ = "inventory_adjustments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    item_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    actor: Mapped[str] = mapped_column(String(128), nullable=False)
    capacity_total_before: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity_total_after: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=clock.utcnow)

    __table_args__ = (
        CheckConstraint("delta != 0", name="ck_adjustment_delta_nonzero"),
        CheckConstraint("length(reason) > 0", name="ck_adjustment_reason_not_empty"),
        CheckConstraint("capacity_total_after >= 0", name="ck_adjustment_total_after_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<InventoryAdjustment(id={self.id}, item_id={self.item_id}, delta={self.delta})>"
