"""
Celery Tasks - asynchronous notifications and housekeeping.

Notification tasks are enqueued from post-commit hooks; the request never
waits for them and a failure here never reaches the seller.
"""
import asyncio
from contextlib import contextmanager

from app.workers.celery_app import celery_app
from app.db.database import get_task_session
from app.domain.services.idempotency_service import IdempotencyService
from app.domain.services.notification_service import NotificationService
from app.core.logging import get_logger, set_correlation_id

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def _notify_administrators(payload: dict) -> int:
    async with get_task_session() as db:
        sent = await NotificationService(db).notify_administrators(payload)
        await db.commit()
        logger.info(
            "Administrators notified",
            extra_data={"type": payload.get("type"), "recipients": sent},
        )
        return sent


async def _notify_actor(user_id: str, payload: dict) -> None:
    async with get_task_session() as db:
        await NotificationService(db).notify_actor(user_id, payload)
        await db.commit()
        logger.info(
            "User notified",
            extra_data={"user_id": user_id, "type": payload.get("type")},
        )


@celery_app.task(name="app.workers.tasks.notify_administrators")
def notify_administrators(payload: dict):
    """Fan out an in-app notification to every active administrator"""
    return {"recipients": run_async(_notify_administrators(payload))}


@celery_app.task(name="app.workers.tasks.notify_actor")
def notify_actor(user_id: str, payload: dict):
    """In-app notification for a single user (usually the seller)"""
    run_async(_notify_actor(user_id, payload))
    return {"user_id": user_id}


@celery_app.task(name="app.workers.tasks.cleanup_expired_idempotency_keys")
def cleanup_expired_idempotency_keys():
    """Delete idempotency records past their expiry"""

    async def _cleanup():
        async with get_task_session() as db:
            deleted = await IdempotencyService(db).purge_expired()
            logger.info(
                "Cleaned up expired idempotency keys",
                extra_data={"deleted": deleted},
            )
            return {"deleted": deleted}

    return run_async(_cleanup())
