"""Inventory ledger: the single authority over reserved capacity.

Capacity is kept per item per day in ``capacity_slots``. Every change is a
conditional UPDATE evaluated by the database, so the capacity invariant holds
across processes without any application-level lock. The ledger never
commits; the calling service owns the transaction.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ..core import clock
from ..core.observability import metrics_collector
from ..models.inventory import CapacitySlot, HoldStatus, InventoryHold, InventoryItem

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for ledger failures."""


class UnknownItemError(LedgerError):
    def __init__(self, item_id: UUID):
        super().__init__(f"Inventory item {item_id} does not exist")
        self.item_id = item_id


class InvalidWindowError(LedgerError):
    def __init__(self, message: str):
        super().__init__(message)


class CapacityExceededError(LedgerError):
    def __init__(self, item_id: UUID, requested: int, available: int):
        super().__init__(f"Requested {requested} but only {available} available for item {item_id}")
        self.item_id = item_id
        self.requested = requested
        self.available = available


class HoldNotActiveError(LedgerError):
    def __init__(self, hold_id: UUID, status: Optional[HoldStatus]):
        super().__init__(f"Reservation token {hold_id} is not active (status: {status})")
        self.hold_id = hold_id
        self.status = status


@dataclass(frozen=True)
class Availability:
    """Capacity picture of one item over one window."""
    capacity_total: int
    reserved: int

    @property
    def available(self) -> int:
        return max(self.capacity_total - self.reserved, 0)


def window_days(window_start: date, window_end: date) -> list[date]:
    """Days covered by the half-open window ``[window_start, window_end)``."""
    return [window_start + timedelta(days=i) for i in range((window_end - window_start).days)]


class InventoryLedger:
    """Reserve, commit, release and expire reservation tokens."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_item(self, item_id: UUID) -> InventoryItem:
        item = await self.db.get(InventoryItem, item_id)
        if item is None:
            raise UnknownItemError(item_id)
        return item

    def _slot_window(
        self, item_id: UUID, dated: bool, window_start: Optional[date], window_end: Optional[date], slot=CapacitySlot
    ):
        """WHERE clause selecting the slots a window occupies."""
        if not dated:
            return and_(slot.item_id == item_id, slot.slot_date.is_(None))
        return and_(
            slot.item_id == item_id,
            slot.slot_date >= window_start,
            slot.slot_date < window_end,
        )

    def _check_window(self, item: InventoryItem, window_start: Optional[date], window_end: Optional[date]) -> int:
        """Validate a window and return the number of slots it must occupy."""
        if window_start is not None and window_end is not None and window_start >= window_end:
            raise InvalidWindowError("window_start must be before window_end")
        if not self.is_dated(item):
            return 1
        if window_start is None or window_end is None:
            raise InvalidWindowError(f"{item.kind.value} reservations require a date window")
        return (window_end - window_start).days

    @staticmethod
    def is_dated(item: InventoryItem) -> bool:
        return item.window_start is not None

    async def availability(
        self,
        item_id: UUID,
        window_start: Optional[date] = None,
        window_end: Optional[date] = None,
    ) -> Availability:
        """Reserved and total capacity; for a multi-day window the tightest day wins."""
        item = await self._get_item(item_id)
        expected = self._check_window(item, window_start, window_end)
        where = self._slot_window(item_id, self.is_dated(item), window_start, window_end)

        rows = (await self.db.execute(
            select(CapacitySlot.capacity_total, CapacitySlot.capacity_reserved).where(where)
        )).all()
        if len(rows) != expected:
            raise InvalidWindowError("Window is outside the bookable range of the item")

        tightest = min(rows, key=lambda r: r.capacity_total - r.capacity_reserved)
        return Availability(capacity_total=tightest.capacity_total, reserved=tightest.capacity_reserved)

    async def reserve(
        self,
        item_id: UUID,
        quantity: int,
        window_start: Optional[date] = None,
        window_end: Optional[date] = None,
        ttl_seconds: int = 900,
    ) -> InventoryHold:
        """
        Take ``quantity`` units of capacity for the window and issue a token.

        Raises:
            UnknownItemError: Item does not exist
            InvalidWindowError: Window is unordered, missing or out of range
            CapacityExceededError: Some day of the window lacks capacity; no
                slot has been changed
        """
        if quantity <= 0:
            raise InvalidWindowError("quantity must be positive")

        item = await self._get_item(item_id)
        expected = self._check_window(item, window_start, window_end)
        dated = self.is_dated(item)
        kind = item.kind.value
        where = self._slot_window(item_id, dated, window_start, window_end)

        # Lock slots in date order so overlapping reservations cannot deadlock
        slots = (await self.db.execute(
            select(CapacitySlot.id, CapacitySlot.capacity_total, CapacitySlot.capacity_reserved)
            .where(where)
            .order_by(CapacitySlot.slot_date)
            .with_for_update()
        )).all()
        if len(slots) != expected:
            raise InvalidWindowError("Window is outside the bookable range of the item")

        # All or nothing: no slot is touched while any day of the window is short
        short = aliased(CapacitySlot)
        short_day = (
            select(short.id)
            .where(
                self._slot_window(item_id, dated, window_start, window_end, slot=short),
                short.capacity_reserved + quantity > short.capacity_total,
            )
            .exists()
        )
        result = await self.db.execute(
            update(CapacitySlot)
            .where(where, ~short_day)
            .values(capacity_reserved=CapacitySlot.capacity_reserved + quantity)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != expected:
            available = await self._tightest_available(item_id, dated, window_start, window_end)
            metrics_collector.record_hold_rejected(kind)
            logger.info(
                "Reservation rejected - insufficient capacity",
                extra={
                    "item_id": str(item_id),
                    "requested": quantity,
                    "available": available,
                    "window_start": window_start.isoformat() if window_start else None,
                    "window_end": window_end.isoformat() if window_end else None,
                }
            )
            raise CapacityExceededError(item_id, quantity, available)

        hold = InventoryHold(
            item_id=item_id,
            window_start=window_start,
            window_end=window_end,
            quantity=quantity,
            status=HoldStatus.ACTIVE,
            expires_at=clock.utcnow() + timedelta(seconds=ttl_seconds),
        )
        self.db.add(hold)
        await self.db.flush()

        metrics_collector.record_hold_reserved(kind)
        logger.info(
            "Reservation token issued",
            extra={
                "hold_id": str(hold.id),
                "item_id": str(item_id),
                "quantity": quantity,
                "expires_at": hold.expires_at.isoformat(),
            }
        )
        return hold

    async def _tightest_available(
        self, item_id: UUID, dated: bool, window_start: Optional[date], window_end: Optional[date]
    ) -> int:
        where = self._slot_window(item_id, dated, window_start, window_end)
        value = await self.db.scalar(
            select(func.min(CapacitySlot.capacity_total - CapacitySlot.capacity_reserved)).where(where)
        )
        return max(value or 0, 0)

    async def get_hold(self, hold_id: UUID) -> Optional[InventoryHold]:
        result = await self.db.execute(
            select(InventoryHold)
            .where(InventoryHold.id == hold_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def commit(self, hold_id: UUID) -> InventoryHold:
        """
        Mark a token as backing a confirmed booking. Idempotent.

        Raises:
            HoldNotActiveError: Token was released or expired
        """
        result = await self.db.execute(
            update(InventoryHold)
            .where(InventoryHold.id == hold_id, InventoryHold.status == HoldStatus.ACTIVE)
            .values(status=HoldStatus.COMMITTED, committed_at=clock.utcnow(), updated_at=clock.utcnow())
            .execution_options(synchronize_session=False)
        )
        hold = await self.get_hold(hold_id)
        if result.rowcount == 1:
            logger.info("Reservation token committed", extra={"hold_id": str(hold_id)})
            return hold
        if hold is not None and hold.status == HoldStatus.COMMITTED:
            return hold
        raise HoldNotActiveError(hold_id, hold.status if hold else None)

    async def release(self, hold_id: UUID, reason: str = "released") -> bool:
        """
        Return a token's capacity. Idempotent.

        Returns:
            True if this call released the token, False if it was already
            released or expired
        """
        result = await self.db.execute(
            update(InventoryHold)
            .where(
                InventoryHold.id == hold_id,
                InventoryHold.status.in_([HoldStatus.ACTIVE, HoldStatus.COMMITTED]),
            )
            .values(status=HoldStatus.RELEASED, released_at=clock.utcnow(), updated_at=clock.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.debug("Reservation token already inactive", extra={"hold_id": str(hold_id)})
            return False

        hold = await self.get_hold(hold_id)
        await self._return_capacity(hold)

        metrics_collector.record_hold_released(reason)
        logger.info(
            "Reservation token released",
            extra={"hold_id": str(hold_id), "quantity": hold.quantity, "reason": reason}
        )
        return True

    async def expire_due(self, now: Optional[datetime] = None, batch_size: int = 500) -> list[InventoryHold]:
        """Expire active tokens whose TTL has passed and return their capacity."""
        now = now or clock.utcnow()
        due_ids = (await self.db.execute(
            select(InventoryHold.id)
            .where(InventoryHold.status == HoldStatus.ACTIVE, InventoryHold.expires_at <= now)
            .order_by(InventoryHold.expires_at)
            .limit(batch_size)
        )).scalars().all()

        expired = []
        for hold_id in due_ids:
            result = await self.db.execute(
                update(InventoryHold)
                .where(InventoryHold.id == hold_id, InventoryHold.status == HoldStatus.ACTIVE)
                .values(status=HoldStatus.EXPIRED, released_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Committed or released since the scan
                continue
            hold = await self.get_hold(hold_id)
            await self._return_capacity(hold)
            expired.append(hold)

        if expired:
            metrics_collector.record_holds_expired(len(expired))
            logger.info(
                "Expired reservation tokens",
                extra={"expired_count": len(expired), "timestamp": now.isoformat()}
            )
        return expired

    async def _return_capacity(self, hold: InventoryHold) -> None:
        dated = hold.window_start is not None and await self._item_is_dated(hold.item_id)
        where = self._slot_window(hold.item_id, dated, hold.window_start, hold.window_end)
        await self.db.execute(
            update(CapacitySlot)
            .where(where)
            .values(capacity_reserved=CapacitySlot.capacity_reserved - hold.quantity)
            .execution_options(synchronize_session=False)
        )

    async def _item_is_dated(self, item_id: UUID) -> bool:
        window_start = await self.db.scalar(
            select(InventoryItem.window_start).where(InventoryItem.id == item_id)
        )
        return window_start is not None
