"""Idempotent execution of mutating operations."""

import logging
from typing import Any, Awaitable, Callable

from fastapi import Header
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException
from ..services.idempotency_service import IdempotencyService

logger = logging.getLogger(__name__)

IDEMPOTENCY_KEY_DEPENDENCY = Header(..., alias="Idempotency-Key", min_length=1, max_length=255)


async def handle_idempotent_operation(
    method: str,
    idempotency_key: str,
    request_body: dict[str, Any],
    principal: str,
    operation_func: Callable[[], Awaitable[dict[str, Any]]],
    db: AsyncSession,
    status_code: int = 200,
) -> JSONResponse:
    """
    Run ``operation_func`` at most once per (key, method, principal).

    Successful responses and non-retryable problems are cached and replayed;
    retryable problems are not, so the client can try again with the same key.
    """
    idempotency_service = IdempotencyService(db)

    cached_response = await idempotency_service.check_idempotency(
        idempotency_key=idempotency_key,
        method=method,
        request_body=request_body,
        principal=principal,
    )
    if cached_response:
        cached_status, response_body = cached_response
        return JSONResponse(
            status_code=cached_status,
            content=response_body,
            headers={"Idempotent-Replayed": "true"},
            media_type="application/problem+json" if cached_status >= 400 else None,
        )

    try:
        response_dict = await operation_func()
    except ProblemDetailsException as e:
        if not e.problem_details.get("retryable", False):
            await idempotency_service.store_response(
                idempotency_key=idempotency_key,
                method=method,
                request_body=request_body,
                status_code=e.status_code,
                response_body=e.problem_details,
                principal=principal,
            )
        raise

    await idempotency_service.store_response(
        idempotency_key=idempotency_key,
        method=method,
        request_body=request_body,
        status_code=status_code,
        response_body=response_dict,
        principal=principal,
    )
    return JSONResponse(status_code=status_code, content=response_dict)
