"""Idempotency service for handling duplicate requests."""

import hashlib
import json
import logging
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import clock
from ..core.config import settings
from ..core.exceptions import ProblemDetailsException
from ..models.idempotency import IdempotencyRecord

logger = logging.getLogger(__name__)


class IdempotencyMismatchError(ProblemDetailsException):
    """Exception when idempotency key is reused with different request body."""

    def __init__(self, idempotency_key: str, method: str):
        super().__init__(
            status_code=422,
            title="Idempotency Key Mismatch",
            detail=f"Idempotency key '{idempotency_key}' was already used for '{method}' with a different request body",
            type_uri="https://example.com/problems/idempotency-key-mismatch",
            extensions={
                "code": "IDEMPOTENCY_KEY_MISMATCH",
                "retryable": False,
                "idempotency_key": idempotency_key,
                "method": method,
            },
        )


class IdempotencyService:
    """Cache responses by (Idempotency-Key, operation, caller)."""

    def __init__(self, db: AsyncSession, ttl_hours: Optional[int] = None):
        self.db = db
        self.ttl_hours = ttl_hours or settings.idempotency_ttl_hours

    def _compute_request_hash(self, request_body: dict[str, Any]) -> str:
        """Compute SHA-256 hash of normalized request body."""
        normalized = json.dumps(request_body, sort_keys=True, separators=(',', ':'), default=str)
        return hashlib.sha256(normalized.encode('utf-8')).hexdigest()

    async def check_idempotency(
        self,
        idempotency_key: str,
        method: str,
        request_body: dict[str, Any],
        principal: str = "",
    ) -> tuple[int, dict[str, Any]] | None:
        """
        Return the cached response for a repeated request.

        Returns:
            Tuple of (status_code, response_body) if a live record exists,
            None if this is a new request

        Raises:
            IdempotencyMismatchError: If key exists with different request body
        """
        request_hash = self._compute_request_hash(request_body)

        result = await self.db.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.idempotency_key == idempotency_key,
                IdempotencyRecord.method == method,
                IdempotencyRecord.principal == principal,
                IdempotencyRecord.expires_at > clock.utcnow(),
            )
        )
        existing_record = result.scalar_one_or_none()

        if existing_record is None:
            return None

        if existing_record.request_body_hash != request_hash:
            logger.warning(
                "Idempotency key mismatch",
                extra={
                    "idempotency_key": idempotency_key,
                    "method": method,
                    "existing_hash": existing_record.request_body_hash[:8],
                    "new_hash": request_hash[:8]
                }
            )
            raise IdempotencyMismatchError(idempotency_key, method)

        logger.info(
            "Returning cached idempotent response",
            extra={
                "idempotency_key": idempotency_key,
                "method": method,
                "status_code": existing_record.response_status_code,
                "created_at": existing_record.created_at.isoformat()
            }
        )
        return existing_record.response_status_code, json.loads(existing_record.response_body)

    async def store_response(
        self,
        idempotency_key: str,
        method: str,
        request_body: dict[str, Any],
        status_code: int,
        response_body: dict[str, Any],
        principal: str = "",
    ) -> None:
        """Store the response of a completed idempotent operation."""
        expires_at = clock.utcnow() + timedelta(hours=self.ttl_hours)

        record = IdempotencyRecord(
            idempotency_key=idempotency_key,
            method=method,
            principal=principal,
            request_body_hash=self._compute_request_hash(request_body),
            response_status_code=status_code,
            response_body=json.dumps(response_body, sort_keys=True, separators=(',', ':')),
            expires_at=expires_at
        )

        try:
            self.db.add(record)
            await self.db.commit()
            logger.info(
                "Stored idempotency record",
                extra={
                    "idempotency_key": idempotency_key,
                    "method": method,
                    "status_code": status_code,
                    "expires_at": expires_at.isoformat()
                }
            )
        except IntegrityError as e:
            # A concurrent request with the same key stored first
            await self.db.rollback()
            logger.info(
                "Idempotency record already exists",
                extra={"idempotency_key": idempotency_key, "method": method, "error": str(e)}
            )

    async def cleanup_expired_records(self) -> int:
        """Delete expired idempotency records and return how many were removed."""
        result = await self.db.execute(
            delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= clock.utcnow())
        )
        deleted_count = result.rowcount
        await self.db.commit()

        if deleted_count > 0:
            logger.info(
                "Cleaned up expired idempotency records",
                extra={"deleted_count": deleted_count}
            )
        return deleted_count
