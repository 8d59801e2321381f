"""
Tests for DB-backed idempotency of listing creation
"""
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from app.core.exceptions import DependencyError, IdempotencyConflictError
from app.db.database import utcnow
from app.db.models.idempotency_record import IdempotencyRecord, IdempotencyStatus
from app.domain.services.idempotency_service import IdempotencyService

RESPONSE = {"success": True, "data": {"id": "item-1", "slug": "toyota-abc12345", "status": "pending"}}


class TestIdempotencyService:
    """Insert-first claim, replay, in-flight conflict and reclaim"""

    @pytest.mark.unit
    async def test_first_request_owns_the_key(self, db_session):
        service = IdempotencyService(db_session)
        assert await service.acquire("key-1", "actor-1") is None

        row = (await db_session.execute(
            select(IdempotencyRecord).where(IdempotencyRecord.key == "key-1")
        )).scalar_one()
        assert row.status == IdempotencyStatus.PROCESSING
        assert row.expires_at > utcnow()

    @pytest.mark.unit
    async def test_completed_key_replays(self, db_session):
        service = IdempotencyService(db_session)
        await service.acquire("key-1", "actor-1")
        await service.complete("key-1", "actor-1", RESPONSE)
        await db_session.commit()

        assert await service.acquire("key-1", "actor-1") == RESPONSE

    @pytest.mark.unit
    async def test_in_flight_duplicate_conflicts(self, db_session):
        await IdempotencyService(db_session).acquire("key-1", "actor-1")

        impatient = IdempotencyService(db_session, wait_seconds=0)
        with pytest.raises(IdempotencyConflictError) as exc_info:
            await impatient.acquire("key-1", "actor-1")

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["idempotency_key"] == "key-1"

    @pytest.mark.unit
    async def test_in_flight_duplicate_waits_then_conflicts(self, db_session):
        await IdempotencyService(db_session).acquire("key-1", "actor-1")

        service = IdempotencyService(db_session, wait_seconds=0.2, poll_interval_seconds=0.05)
        with pytest.raises(IdempotencyConflictError):
            await service.acquire("key-1", "actor-1")

    @pytest.mark.unit
    async def test_keys_are_scoped_per_actor(self, db_session):
        service = IdempotencyService(db_session)
        await service.acquire("shared", "actor-1")
        await service.complete("shared", "actor-1", RESPONSE)
        await db_session.commit()

        assert await service.acquire("shared", "actor-2") is None

    @pytest.mark.unit
    async def test_expired_record_is_reclaimed(self, db_session):
        service = IdempotencyService(db_session)
        await service.acquire("key-1", "actor-1")
        await service.complete("key-1", "actor-1", RESPONSE)
        await db_session.execute(
            update(IdempotencyRecord)
            .where(IdempotencyRecord.key == "key-1")
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )
        await db_session.commit()

        assert await service.acquire("key-1", "actor-1") is None

        row = (await db_session.execute(
            select(IdempotencyRecord).where(IdempotencyRecord.key == "key-1")
        )).scalar_one()
        await db_session.refresh(row)
        assert row.status == IdempotencyStatus.PROCESSING
        assert row.response_payload is None

    @pytest.mark.unit
    async def test_release_allows_retry(self, db_session):
        service = IdempotencyService(db_session, wait_seconds=0)
        await service.acquire("key-1", "actor-1")
        await service.release("key-1", "actor-1")

        assert await service.acquire("key-1", "actor-1") is None

    @pytest.mark.unit
    async def test_release_keeps_completed_records(self, db_session):
        service = IdempotencyService(db_session)
        await service.acquire("key-1", "actor-1")
        await service.complete("key-1", "actor-1", RESPONSE)
        await db_session.commit()

        await service.release("key-1", "actor-1")

        assert await service.acquire("key-1", "actor-1") == RESPONSE

    @pytest.mark.unit
    async def test_purge_expired(self, db_session):
        service = IdempotencyService(db_session)
        await service.acquire("old", "actor-1")
        await service.acquire("new", "actor-1")
        await db_session.execute(
            update(IdempotencyRecord)
            .where(IdempotencyRecord.key == "old")
            .values(expires_at=utcnow() - timedelta(hours=1))
        )
        await db_session.commit()

        assert await service.purge_expired() == 1

    @pytest.mark.unit
    async def test_store_failure_fails_closed(self, db_session):
        service = IdempotencyService(db_session)
        failure = OperationalError("INSERT", {}, Exception("database is locked"))

        with patch.object(service, "_try_insert", AsyncMock(side_effect=failure)):
            with pytest.raises(DependencyError) as exc_info:
                await service.acquire("key-1", "actor-1")

        assert exc_info.value.details["service"] == "idempotency_store"
