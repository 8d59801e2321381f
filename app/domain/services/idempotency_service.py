"""
Idempotency Service - at-most-once listing creation per (key, actor).

Insert-first: the first request inserts a processing row in a savepoint and
commits it right away; the primary key rejects every concurrent duplicate.
Duplicates then:
- replay the stored response when the row is completed,
- wait up to IDEMPOTENCY_WAIT_SECONDS for an in-flight original,
- reclaim the row when it has expired.
The completion is written in the same transaction as the listing insert.
Store failures raise DependencyError: idempotency fails closed.
"""
import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import DependencyError, IdempotencyConflictError
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.idempotency_record import IdempotencyRecord, IdempotencyStatus

logger = get_logger(__name__)

MAX_KEY_LENGTH = 200


class IdempotencyService:
    """DB-backed idempotency records for listing creation"""

    def __init__(
        self,
        db: AsyncSession,
        ttl_seconds: int | None = None,
        wait_seconds: float | None = None,
        poll_interval_seconds: float | None = None,
    ):
        self.db = db
        self.ttl_seconds = ttl_seconds or settings.IDEMPOTENCY_TTL_SECONDS
        self.wait_seconds = wait_seconds if wait_seconds is not None else settings.IDEMPOTENCY_WAIT_SECONDS
        self.poll_interval_seconds = poll_interval_seconds or settings.IDEMPOTENCY_POLL_INTERVAL_SECONDS

    async def acquire(self, key: str, actor_id: str) -> Optional[dict[str, Any]]:
        """
        Claim the key for this request.

        Returns None when the caller owns the key and must execute, or the
        stored response payload when this is a replay.
        """
        try:
            return await self._acquire(key, actor_id)
        except (IdempotencyConflictError, DependencyError):
            raise
        except (SQLAlchemyError, OSError) as e:
            await self._safe_rollback()
            logger.error(
                "Idempotency store unavailable",
                extra_data={"actor_id": actor_id, "error": str(e)},
                exc_info=True,
            )
            raise DependencyError("idempotency_store") from e

    async def _acquire(self, key: str, actor_id: str) -> Optional[dict[str, Any]]:
        deadline = time.monotonic() + self.wait_seconds

        while True:
            if await self._try_insert(key, actor_id):
                return None

            row = (await self.db.execute(
                select(
                    IdempotencyRecord.status,
                    IdempotencyRecord.response_payload,
                    IdempotencyRecord.expires_at,
                ).where(
                    IdempotencyRecord.key == key,
                    IdempotencyRecord.actor_id == actor_id,
                )
            )).one_or_none()

            if row is None:
                # released by a failed original between our insert and read - try again
                if time.monotonic() >= deadline:
                    raise IdempotencyConflictError(key)
                continue

            now = utcnow()
            if row.expires_at <= now:
                if await self._try_reclaim(key, actor_id, now):
                    return None
                continue

            if row.status == IdempotencyStatus.COMPLETED:
                logger.info(
                    "Replaying idempotent response",
                    extra_data={"actor_id": actor_id, "idempotency_key": key},
                )
                return row.response_payload

            if time.monotonic() >= deadline:
                logger.warning(
                    "Duplicate request still in flight",
                    extra_data={"actor_id": actor_id, "idempotency_key": key},
                )
                raise IdempotencyConflictError(key)

            # end the read transaction so the next poll sees the original's commit
            await self.db.rollback()
            await asyncio.sleep(self.poll_interval_seconds)

    async def _try_insert(self, key: str, actor_id: str) -> bool:
        now = utcnow()
        try:
            async with self.db.begin_nested():
                await self.db.execute(
                    insert(IdempotencyRecord).values(
                        key=key,
                        actor_id=actor_id,
                        status=IdempotencyStatus.PROCESSING,
                        created_at=now,
                        expires_at=self._expiry(now),
                    )
                )
            # committed immediately so concurrent duplicates see the claim
            await self.db.commit()
            return True
        except IntegrityError:
            return False

    async def _try_reclaim(self, key: str, actor_id: str, now: datetime) -> bool:
        """Atomically take over an expired record (only one request wins)"""
        result = await self.db.execute(
            update(IdempotencyRecord)
            .where(
                IdempotencyRecord.key == key,
                IdempotencyRecord.actor_id == actor_id,
                IdempotencyRecord.expires_at <= now,
            )
            .values(
                status=IdempotencyStatus.PROCESSING,
                response_payload=None,
                created_at=now,
                expires_at=self._expiry(now),
            )
        )
        if result.rowcount > 0:
            await self.db.commit()
            logger.info(
                "Reclaimed expired idempotency key",
                extra_data={"actor_id": actor_id, "idempotency_key": key},
            )
            return True
        return False

    async def complete(self, key: str, actor_id: str, payload: dict[str, Any]) -> None:
        """Store the final response. Does not commit: it rides on the caller's transaction."""
        await self.db.execute(
            update(IdempotencyRecord)
            .where(
                IdempotencyRecord.key == key,
                IdempotencyRecord.actor_id == actor_id,
                IdempotencyRecord.status == IdempotencyStatus.PROCESSING,
            )
            .values(status=IdempotencyStatus.COMPLETED, response_payload=payload)
        )

    async def release(self, key: str, actor_id: str) -> None:
        """Drop a processing claim after a failed attempt so the client may retry"""
        try:
            await self.db.rollback()
            await self.db.execute(
                delete(IdempotencyRecord).where(
                    IdempotencyRecord.key == key,
                    IdempotencyRecord.actor_id == actor_id,
                    IdempotencyRecord.status == IdempotencyStatus.PROCESSING,
                )
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            # the claim then expires on its own after the TTL
            logger.error(
                "Failed to release idempotency key",
                extra_data={"actor_id": actor_id, "idempotency_key": key, "error": str(e)},
                exc_info=True,
            )
            await self._safe_rollback()

    async def purge_expired(self, now: datetime | None = None) -> int:
        result = await self.db.execute(
            delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= (now or utcnow()))
        )
        await self.db.commit()
        return result.rowcount or 0

    def _expiry(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.ttl_seconds)

    async def _safe_rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback failed after idempotency store error")
