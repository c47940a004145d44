"""Cancellation router: requester requests and staff review."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_current_user, get_db, require_staff
from ..core.exceptions import ProblemDetailsException
from ..schemas.cancellation import (
    CancellationOutcome,
    CancellationRequest,
    CancellationRequestList,
    RequestCancellationRequest,
    ReviewCancellationRequest,
)
from ..schemas.common import PROBLEM_RESPONSES
from ..services.cancellation_service import CancellationPolicyEngine
from .booking import booking_to_schema
from .idempotency import IDEMPOTENCY_KEY_DEPENDENCY, handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/cancellation", tags=["cancellation"], responses=PROBLEM_RESPONSES)

DB_DEPENDENCY = Depends(get_db)
USER_DEPENDENCY = Depends(get_current_user)
STAFF_DEPENDENCY = Depends(require_staff)


def _convert_request_to_schema(request_model) -> CancellationRequest:
    """Convert cancellation request model to schema."""
    return CancellationRequest(
        id=str(request_model.id),
        booking_id=str(request_model.booking_id),
        requester_id=request_model.requester_id,
        reason=request_model.reason,
        priority=request_model.priority,
        status=request_model.status,
        refund_amount=request_model.refund_amount,
        refund_method=request_model.refund_method,
        reviewer_id=request_model.reviewer_id,
        reviewer_notes=request_model.reviewer_notes,
        reviewed_at=request_model.reviewed_at,
        created_at=request_model.created_at,
    )


def _convert_outcome_to_schema(outcome) -> CancellationOutcome:
    return CancellationOutcome(
        outcome=outcome.outcome,
        message=outcome.message,
        booking=booking_to_schema(outcome.booking),
        request=_convert_request_to_schema(outcome.request) if outcome.request else None,
    )


@router.post("/request", response_model=CancellationOutcome)
async def request_cancellation(
    request: RequestCancellationRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = USER_DEPENDENCY,
    idempotency_key: str = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Ask to cancel a booking.

    Unpaid bookings are cancelled at once; paid bookings are queued for
    staff review. This operation is idempotent based on the Idempotency-Key
    header.
    """
    engine = CancellationPolicyEngine(db)
    requester_id = current_user["user_id"]

    async def operation():
        outcome = await engine.request_cancellation(
            request.booking_id, requester_id, request.reason, request.priority
        )
        return _convert_outcome_to_schema(outcome).model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method="cancellation/request",
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            principal=requester_id,
            operation_func=operation,
            db=db
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in cancellation request",
            extra={"booking_id": str(request.booking_id), "idempotency_key": idempotency_key, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/review", response_model=CancellationOutcome)
async def review_cancellation(
    request: ReviewCancellationRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = STAFF_DEPENDENCY,
) -> JSONResponse:
    """Approve or reject a pending cancellation request."""
    outcome = await CancellationPolicyEngine(db).review(
        request.request_id,
        current_user["user_id"],
        request.decision,
        refund_amount=request.refund_amount,
        refund_method=request.refund_method,
        reviewer_notes=request.reviewer_notes,
    )
    return JSONResponse(status_code=200, content=_convert_outcome_to_schema(outcome).model_dump(mode="json"))


@router.post("/pending", response_model=CancellationRequestList)
async def list_pending(
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = STAFF_DEPENDENCY,
) -> JSONResponse:
    """Review queue, most urgent first."""
    requests = await CancellationPolicyEngine(db).list_pending()
    response_data = CancellationRequestList(requests=[_convert_request_to_schema(r) for r in requests])
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/mine", response_model=CancellationRequestList)
async def list_mine(
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = USER_DEPENDENCY,
) -> JSONResponse:
    """The caller's cancellation requests, newest first."""
    requests = await CancellationPolicyEngine(db).list_for_requester(current_user["user_id"])
    response_data = CancellationRequestList(requests=[_convert_request_to_schema(r) for r in requests])
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
