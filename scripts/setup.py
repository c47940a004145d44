#!/usr/bin/env python3
"""Create the schema and seed sample inventory for local development."""

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Allow running from a checkout without installing the package
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from sqlalchemy import func, select  # noqa: E402

from reservation_core import models  # noqa: E402,F401
from reservation_core.core import clock  # noqa: E402
from reservation_core.core.database import async_session_factory, close_db, init_db  # noqa: E402
from reservation_core.models.inventory import InventoryItem, ItemKind  # noqa: E402
from reservation_core.schemas.inventory import AddonSpec, RegisterItemRequest  # noqa: E402
from reservation_core.services.inventory_service import InventoryService  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def sample_items() -> list[RegisterItemRequest]:
    start = clock.today() + timedelta(days=1)
    end = start + timedelta(days=180)
    return [
        RegisterItemRequest(
            kind=ItemKind.HOTEL,
            name="Galle Fort Hotel - Deluxe Double",
            capacity_total=12,
            window_start=start,
            window_end=end,
            unit_price=2450000,
            currency="LKR",
            max_quantity=5,
            addons={
                "breakfast": AddonSpec(type="fixed", amount=250000, per_day=True, per_unit=True),
                "service_charge": AddonSpec(type="percentage", rate="0.10"),
            },
        ),
        RegisterItemRequest(
            kind=ItemKind.TOUR,
            name="Sigiriya Sunrise Climb",
            capacity_total=25,
            window_start=start,
            window_end=end,
            unit_price=1500000,
            currency="LKR",
            max_quantity=20,
            addons={"lunch": AddonSpec(type="fixed", amount=180000, per_unit=True)},
        ),
        RegisterItemRequest(
            kind=ItemKind.GUIDE,
            name="Licensed National Guide",
            capacity_total=3,
            window_start=start,
            window_end=end,
            unit_price=1200000,
            currency="LKR",
            max_quantity=1,
        ),
        RegisterItemRequest(
            kind=ItemKind.VEHICLE,
            name="Toyota KDH Van with Driver",
            capacity_total=4,
            unit_price=1800000,
            currency="LKR",
            max_quantity=2,
        ),
        RegisterItemRequest(
            kind=ItemKind.CUSTOM_TRIP,
            name="Hill Country Custom Itinerary",
            capacity_total=10,
            unit_price=9500000,
            currency="LKR",
            max_quantity=8,
        ),
    ]


async def create_sample_data() -> None:
    async with async_session_factory() as db:
        existing = await db.scalar(select(func.count()).select_from(InventoryItem))
        if existing:
            logger.info("Sample data already exists, skipping")
            return

        inventory_service = InventoryService(db)
        for request in sample_items():
            item = await inventory_service.register_item(request)
            logger.info("Registered %s (%s): %s", item.name, item.kind.value, item.id)


async def main() -> None:
    logger.info("Setting up reservation database")
    await init_db()
    await create_sample_data()
    await close_db()
    logger.info("Setup complete. Start the API with: uvicorn reservation_core.main:app --reload --app-dir server")


if __name__ == "__main__":
    asyncio.run(main())
