"""Inventory-related Pydantic schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..models.inventory import ItemKind


class AddonSpec(BaseModel):
    """Optional extra priced on top of the base price."""

    type: Literal["fixed", "percentage"] = Field("fixed", description="Fixed amount or percentage of base price")
    amount: Optional[int] = Field(None, ge=0, description="Fixed amount in minor units")
    rate: Optional[Decimal] = Field(None, ge=0, le=1, description="Fraction of the base price")
    per_day: bool = Field(False, description="Multiply a fixed amount by billable days")
    per_unit: bool = Field(False, description="Multiply a fixed amount by quantity")

    @model_validator(mode="after")
    def check_value(self) -> "AddonSpec":
        if self.type == "fixed" and self.amount is None:
            raise ValueError("fixed add-ons require an amount")
        if self.type == "percentage" and self.rate is None:
            raise ValueError("percentage add-ons require a rate")
        return self


class RegisterItemRequest(BaseModel):
    """Request schema for registering bookable inventory."""

    kind: ItemKind = Field(..., description="Kind of inventory")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    capacity_total: int = Field(..., ge=0, description="Units available per day (or in total for non-dated kinds)")
    window_start: Optional[date] = Field(None, description="First bookable day (dated kinds)")
    window_end: Optional[date] = Field(None, description="Day after the last bookable day (dated kinds)")
    unit_price: int = Field(..., ge=0, description="Price per pricing unit in minor units")
    currency: Optional[str] = Field(None, min_length=3, max_length=3, pattern=r"^[A-Z]{3}$")
    max_quantity: int = Field(20, ge=1, le=1000, description="Largest quantity one booking may request")
    addons: dict[str, AddonSpec] = Field(default_factory=dict, description="Add-ons offered for this item")


class AdjustCapacityRequest(BaseModel):
    """Request schema for adjusting item capacity."""

    item_id: UUID = Field(..., description="Item to adjust")
    delta: int = Field(..., description="Capacity change (positive or negative)")
    reason: str = Field(..., min_length=1, max_length=500, description="Reason for adjustment")


class GetItemRequest(BaseModel):
    item_id: UUID = Field(..., description="Item to retrieve")


class AvailabilityRequest(BaseModel):
    """Request schema for checking availability."""

    item_id: UUID = Field(..., description="Item to check")
    window_start: Optional[date] = Field(None, description="Window start (inclusive)")
    window_end: Optional[date] = Field(None, description="Window end (exclusive)")


class InventoryItem(BaseModel):
    """Inventory item response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    kind: ItemKind
    name: str
    capacity_total: int
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    unit_price: int
    currency: str
    max_quantity: int
    addons: dict = Field(default_factory=dict)
    created_at: datetime


class Availability(BaseModel):
    """Availability response schema."""

    item_id: str
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    capacity_total: int
    reserved: int
    available: int


class InventoryAdjustment(BaseModel):
    """Inventory adjustment response schema."""

    id: str = Field(..., description="Unique adjustment ID")
    item_id: str = Field(..., description="Adjusted item ID")
    delta: int = Field(..., description="Capacity change (positive or negative)")
    reason: str = Field(..., description="Reason for adjustment")
    capacity_total_before: int
    capacity_total_after: int
    created_at: datetime = Field(..., description="Adjustment time (ISO 8601)")
    actor: str = Field(..., description="User who made the adjustment")


class InventoryAdjustmentList(BaseModel):
    adjustments: list[InventoryAdjustment]
