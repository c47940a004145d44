"""Catalog lookups used for validation and pricing."""

from typing import Optional, Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.inventory import InventoryItem
from .pricing import CatalogEntry


class CatalogProvider(Protocol):
    async def get_entry(self, item_id: UUID) -> Optional[CatalogEntry]:
        ...


def entry_from_item(item: InventoryItem) -> CatalogEntry:
    return CatalogEntry(
        item_id=item.id,
        kind=item.kind,
        unit_price=item.unit_price,
        currency=item.currency,
        max_quantity=item.max_quantity,
        window_start=item.window_start,
        window_end=item.window_end,
        addons=dict(item.addons or {}),
    )


class DatabaseCatalog:
    """Catalog backed by the ``inventory_items`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_entry(self, item_id: UUID) -> Optional[CatalogEntry]:
        item = await self.db.get(InventoryItem, item_id)
        if item is None:
            return None
        return entry_from_item(item)
