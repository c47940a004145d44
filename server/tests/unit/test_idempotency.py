"""Unit tests for idempotent request handling."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from reservation_core.core import clock
from reservation_core.core.exceptions import ConcurrentModificationError, ConflictError
from reservation_core.models.idempotency import IdempotencyRecord
from reservation_core.routers.idempotency import handle_idempotent_operation
from reservation_core.services.idempotency_service import IdempotencyMismatchError, IdempotencyService


@pytest.mark.asyncio
async def test_store_and_replay(test_session):
    service = IdempotencyService(test_session)
    body = {"item_id": "abc", "quantity": 2}

    assert await service.check_idempotency("key-1", "booking/create", body, "user-1") is None
    await service.store_response("key-1", "booking/create", body, 201, {"id": "b-1"}, "user-1")

    assert await service.check_idempotency("key-1", "booking/create", {"quantity": 2, "item_id": "abc"}, "user-1") == (
        201, {"id": "b-1"}
    )


@pytest.mark.asyncio
async def test_key_is_scoped_to_operation_and_caller(test_session):
    service = IdempotencyService(test_session)
    body = {"item_id": "abc"}
    await service.store_response("key-1", "booking/create", body, 201, {"id": "b-1"}, "user-1")

    assert await service.check_idempotency("key-1", "booking/create", body, "user-2") is None
    assert await service.check_idempotency("key-1", "payment/session", body, "user-1") is None


@pytest.mark.asyncio
async def test_reused_key_with_different_body(test_session):
    service = IdempotencyService(test_session)
    await service.store_response("key-1", "booking/create", {"quantity": 1}, 201, {"id": "b-1"}, "user-1")

    with pytest.raises(IdempotencyMismatchError) as exc_info:
        await service.check_idempotency("key-1", "booking/create", {"quantity": 2}, "user-1")
    assert exc_info.value.status_code == 422


@pytest.mark.asyncio
async def test_duplicate_store_is_tolerated(test_session):
    service = IdempotencyService(test_session)
    body = {"quantity": 1}
    await service.store_response("key-1", "booking/create", body, 201, {"id": "b-1"}, "user-1")
    await service.store_response("key-1", "booking/create", body, 201, {"id": "b-2"}, "user-1")

    assert await service.check_idempotency("key-1", "booking/create", body, "user-1") == (201, {"id": "b-1"})


@pytest.mark.asyncio
async def test_cleanup_removes_only_expired(test_session):
    service = IdempotencyService(test_session)
    await service.store_response("old", "booking/create", {}, 201, {"id": "b-1"})
    await service.store_response("new", "booking/create", {}, 201, {"id": "b-2"})
    await test_session.execute(
        update(IdempotencyRecord)
        .where(IdempotencyRecord.idempotency_key == "old")
        .values(expires_at=clock.utcnow() - timedelta(minutes=1))
    )
    await test_session.commit()

    assert await service.cleanup_expired_records() == 1
    assert await service.check_idempotency("new", "booking/create", {}) is not None


@pytest.mark.asyncio
async def test_operation_runs_once(test_session):
    calls = []

    async def operation():
        calls.append(1)
        return {"id": "b-1"}

    first = await handle_idempotent_operation("booking/create", "key-1", {"q": 1}, "user-1", operation, test_session, 201)
    second = await handle_idempotent_operation("booking/create", "key-1", {"q": 1}, "user-1", operation, test_session, 201)

    assert len(calls) == 1
    assert first.status_code == second.status_code == 201
    assert second.headers["Idempotent-Replayed"] == "true"
    assert second.body == first.body


@pytest.mark.asyncio
async def test_final_problems_are_replayed_retryable_ones_are_not(test_session):
    attempts = []

    async def conflicting():
        attempts.append("conflict")
        raise ConflictError(detail="Booking has been cancelled")

    for _ in range(2):
        try:
            response = await handle_idempotent_operation(
                "payment/session", "key-1", {}, "user-1", conflicting, test_session
            )
        except ConflictError:
            continue
        assert response.status_code == 409
        assert response.headers["content-type"] == "application/problem+json"
    assert attempts == ["conflict"]

    async def racing():
        attempts.append("race")
        raise ConcurrentModificationError("b-1")

    for _ in range(2):
        with pytest.raises(ConcurrentModificationError):
            await handle_idempotent_operation("payment/session", "key-2", {}, "user-1", racing, test_session)
    assert attempts == ["conflict", "race", "race"]
