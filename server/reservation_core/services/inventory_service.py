"""Inventory service for item registration and capacity adjustment."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..models.inventory import CapacitySlot, InventoryAdjustment, InventoryItem
from ..schemas.inventory import AvailabilityRequest, RegisterItemRequest
from .inventory_ledger import Availability, InvalidWindowError, InventoryLedger, UnknownItemError, window_days
from .pricing import policy_for

logger = logging.getLogger(__name__)

# Longest dated window one item may span
MAX_WINDOW_DAYS = 731


class CapacityConflictError(ConflictError):
    """Exception when a capacity reduction would undercut reserved capacity."""

    def __init__(self, item_id: str, requested_delta: int, reserved: int, current_total: int):
        super().__init__(
            detail=f"Cannot reduce capacity by {abs(requested_delta)}. "
                   f"Item {item_id} has {reserved} units reserved and total capacity {current_total}",
            conflicting_resource={
                "item_id": item_id,
                "requested_delta": requested_delta,
                "reserved": reserved,
                "current_total_capacity": current_total
            }
        )
        self.problem_details.update({
            "code": "CAPACITY_CONFLICT",
            "retryable": False
        })


class InventoryService:
    """Service for inventory administration."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = InventoryLedger(db)

    async def register_item(self, request: RegisterItemRequest) -> InventoryItem:
        """
        Register a bookable item and create its capacity slots.

        Dated kinds get one slot per day of their window; other kinds get a
        single undated slot.

        Raises:
            ValidationError: Window missing, unordered or too long for a dated kind
        """
        policy = policy_for(request.kind)
        window_start, window_end = request.window_start, request.window_end

        if policy.dated:
            if window_start is None or window_end is None:
                raise ValidationError(
                    detail=f"{request.kind.value} items require window_start and window_end",
                    errors={"window": "required"},
                )
            if window_start >= window_end:
                raise ValidationError(
                    detail="window_start must be before window_end",
                    errors={"window": "unordered"},
                )
            if (window_end - window_start).days > MAX_WINDOW_DAYS:
                raise ValidationError(
                    detail=f"Bookable window may not exceed {MAX_WINDOW_DAYS} days",
                    errors={"window": "too_long"},
                )
        else:
            window_start = window_end = None

        item = InventoryItem(
            kind=request.kind,
            name=request.name,
            capacity_total=request.capacity_total,
            window_start=window_start,
            window_end=window_end,
            unit_price=request.unit_price,
            currency=request.currency or settings.default_currency,
            max_quantity=request.max_quantity,
            addons={
                name: spec.model_dump(mode="json", exclude_none=True)
                for name, spec in request.addons.items()
            },
        )
        self.db.add(item)
        await self.db.flush()

        days = window_days(window_start, window_end) if policy.dated else [None]
        self.db.add_all([
            CapacitySlot(item_id=item.id, slot_date=day, capacity_total=request.capacity_total, capacity_reserved=0)
            for day in days
        ])

        await self.db.commit()

        logger.info(
            "Inventory item registered",
            extra={
                "item_id": str(item.id),
                "kind": item.kind.value,
                "capacity_total": item.capacity_total,
                "slots": len(days),
            }
        )
        return item

    async def get_item(self, item_id: UUID) -> InventoryItem:
        item = await self.db.get(InventoryItem, item_id)
        if item is None:
            raise NotFoundError(resource_type="inventory item", resource_id=str(item_id))
        return item

    async def availability(self, request: AvailabilityRequest) -> Availability:
        try:
            return await self.ledger.availability(request.item_id, request.window_start, request.window_end)
        except UnknownItemError:
            raise NotFoundError(resource_type="inventory item", resource_id=str(request.item_id))
        except InvalidWindowError as e:
            raise ValidationError(detail=str(e), errors={"window": "invalid"})

    async def adjust_capacity(self, item_id: UUID, delta: int, reason: str, actor: str) -> InventoryAdjustment:
        """
        Change an item's total capacity on every slot.

        A slot's total never drops below what is already reserved on it.

        Raises:
            NotFoundError: Item not found
            ValidationError: Zero delta
            CapacityConflictError: Reduction would undercut reserved capacity
        """
        if delta == 0:
            raise ValidationError(detail="delta must be non-zero", errors={"delta": "zero"})

        item = await self.get_item(item_id)
        capacity_total_before = item.capacity_total
        new_total = capacity_total_before + delta

        if new_total < 0:
            raise CapacityConflictError(str(item_id), delta, 0, capacity_total_before)

        slot_count = await self.db.scalar(
            select(func.count()).select_from(CapacitySlot).where(CapacitySlot.item_id == item_id)
        )
        result = await self.db.execute(
            update(CapacitySlot)
            .where(
                CapacitySlot.item_id == item_id,
                CapacitySlot.capacity_total + delta >= CapacitySlot.capacity_reserved,
            )
            .values(capacity_total=CapacitySlot.capacity_total + delta)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != slot_count:
            await self.db.rollback()
            reserved = await self.db.scalar(
                select(func.max(CapacitySlot.capacity_reserved)).where(CapacitySlot.item_id == item_id)
            )
            logger.warning(
                "Capacity adjustment failed - would undercut reserved capacity",
                extra={
                    "item_id": str(item_id),
                    "requested_delta": delta,
                    "reserved": reserved,
                    "actor": actor
                }
            )
            raise CapacityConflictError(str(item_id), delta, reserved or 0, capacity_total_before)

        item.capacity_total = new_total
        adjustment = InventoryAdjustment(
            item_id=item_id,
            delta=delta,
            reason=reason,
            actor=actor,
            capacity_total_before=capacity_total_before,
            capacity_total_after=new_total,
        )
        self.db.add(adjustment)
        await self.db.commit()

        logger.info(
            "Inventory adjustment completed",
            extra={
                "adjustment_id": str(adjustment.id),
                "item_id": str(item_id),
                "delta": delta,
                "capacity_total_before": capacity_total_before,
                "capacity_total_after": new_total,
                "actor": actor
            }
        )
        return adjustment

    async def list_adjustments(self, item_id: UUID, limit: Optional[int] = 50) -> list[InventoryAdjustment]:
        result = await self.db.execute(
            select(InventoryAdjustment)
            .where(InventoryAdjustment.item_id == item_id)
            .order_by(InventoryAdjustment.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
