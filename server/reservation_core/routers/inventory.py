"""Inventory router for item registration and capacity operations."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_current_user, get_db, require_staff
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.inventory import (
    AdjustCapacityRequest,
    Availability,
    AvailabilityRequest,
    GetItemRequest,
    InventoryAdjustment,
    InventoryAdjustmentList,
    InventoryItem,
    RegisterItemRequest,
)
from ..services.inventory_service import InventoryService
from .idempotency import IDEMPOTENCY_KEY_DEPENDENCY, handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/inventory", tags=["inventory"], responses=PROBLEM_RESPONSES)

DB_DEPENDENCY = Depends(get_db)
USER_DEPENDENCY = Depends(get_current_user)
STAFF_DEPENDENCY = Depends(require_staff)


def _convert_item_to_schema(item_model) -> InventoryItem:
    """Convert inventory item model to schema."""
    return InventoryItem(
        id=str(item_model.id),
        kind=item_model.kind,
        name=item_model.name,
        capacity_total=item_model.capacity_total,
        window_start=item_model.window_start,
        window_end=item_model.window_end,
        unit_price=item_model.unit_price,
        currency=item_model.currency,
        max_quantity=item_model.max_quantity,
        addons=item_model.addons or {},
        created_at=item_model.created_at,
    )


def _convert_adjustment_to_schema(adjustment_model) -> InventoryAdjustment:
    """Convert inventory adjustment model to schema."""
    return InventoryAdjustment(
        id=str(adjustment_model.id),
        item_id=str(adjustment_model.item_id),
        delta=adjustment_model.delta,
        reason=adjustment_model.reason,
        capacity_total_before=adjustment_model.capacity_total_before,
        capacity_total_after=adjustment_model.capacity_total_after,
        created_at=adjustment_model.created_at,
        actor=adjustment_model.actor
    )


@router.post("/register", response_model=InventoryItem)
async def register_item(
    request: RegisterItemRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = STAFF_DEPENDENCY,
) -> JSONResponse:
    """Register a bookable item with its capacity and price."""
    inventory_service = InventoryService(db)

    try:
        item = await inventory_service.register_item(request)
        logger.info(
            "Inventory item registered via API",
            extra={"item_id": str(item.id), "kind": item.kind.value, "actor": current_user["user_id"]}
        )
        return JSONResponse(
            status_code=201,
            content=_convert_item_to_schema(item).model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in item registration",
            extra={"kind": request.kind.value, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/adjust", response_model=InventoryAdjustment)
async def adjust_capacity(
    request: AdjustCapacityRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = STAFF_DEPENDENCY,
    idempotency_key: str = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Adjust an item's capacity.

    This operation is idempotent based on the Idempotency-Key header.
    """
    inventory_service = InventoryService(db)
    actor = current_user["user_id"]

    async def operation():
        adjustment = await inventory_service.adjust_capacity(
            request.item_id, request.delta, request.reason, actor
        )
        return _convert_adjustment_to_schema(adjustment).model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method="inventory/adjust",
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            principal=actor,
            operation_func=operation,
            db=db
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in inventory adjustment",
            extra={
                "item_id": str(request.item_id),
                "delta": request.delta,
                "idempotency_key": idempotency_key,
                "error": str(e)
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/get", response_model=InventoryItem)
async def get_item(
    request: GetItemRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = USER_DEPENDENCY,
) -> JSONResponse:
    """Get an inventory item."""
    item = await InventoryService(db).get_item(request.item_id)
    return JSONResponse(status_code=200, content=_convert_item_to_schema(item).model_dump(mode="json"))


@router.post("/availability", response_model=Availability)
async def check_availability(
    request: AvailabilityRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = USER_DEPENDENCY,
) -> JSONResponse:
    """
    Report remaining capacity for a window.

    For multi-day windows the most constrained day is reported.
    """
    availability = await InventoryService(db).availability(request)
    response_data = Availability(
        item_id=str(request.item_id),
        window_start=request.window_start,
        window_end=request.window_end,
        capacity_total=availability.capacity_total,
        reserved=availability.reserved,
        available=availability.available,
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/adjustments", response_model=InventoryAdjustmentList)
async def list_adjustments(
    request: GetItemRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = STAFF_DEPENDENCY,
) -> JSONResponse:
    """Capacity adjustment history of an item, newest first."""
    inventory_service = InventoryService(db)
    await inventory_service.get_item(request.item_id)
    adjustments = await inventory_service.list_adjustments(request.item_id)
    response_data = InventoryAdjustmentList(
        adjustments=[_convert_adjustment_to_schema(a) for a in adjustments]
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
