"""
Listing Service - creation guard and owner-facing lifecycle operations.

Creation pipeline, short-circuiting in this order:
    idempotency claim -> rate limit -> honeypot -> validation -> sanitization
    -> auto-approval -> slug -> insert + idempotency completion (one commit)
    -> post-commit hooks (cache invalidation, admin notification)
"""
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor
from app.core.cache import invalidate_listing_reads
from app.core.config import settings
from app.core.exceptions import (
    DependencyError,
    ForbiddenFieldError,
    SpamRejectedError,
    ValidationException,
)
from app.core.logging import get_logger, log_async_operation
from app.core.rate_limit import RateLimiter, RateLimitPolicy
from app.core.validation import generate_slug
from app.db.listing_repository import ListingRepository, PROTECTED_FIELDS
from app.db.models.engagement_event import EngagementType
from app.db.models.marketplace_item import ListingStatus
from app.domain.services.engagement_service import EngagementService
from app.domain.services.hooks import PostCommitHooks
from app.domain.services.idempotency_service import IdempotencyService, MAX_KEY_LENGTH
from app.domain.services.listing_validation import sanitize_listing_payload, validate_listing_payload
from app.domain.services.notification_service import new_listing_payload
from app.domain.services.storage_service import StorageService
from app.state_machine.states import ACTION_TARGETS, ListingAction
from app.workers import tasks

logger = get_logger(__name__)

HONEYPOT_FIELD = "honeypot"


def listing_create_policy() -> RateLimitPolicy:
    return RateLimitPolicy(
        action="listing_create",
        limit=settings.LISTING_CREATE_RATE_LIMIT,
        window_seconds=settings.LISTING_CREATE_RATE_WINDOW_SECONDS,
    )


def _honeypot_filled(raw: dict[str, Any]) -> bool:
    value = raw.get(HONEYPOT_FIELD)
    if value is None:
        return False
    return bool(str(value))


class ListingService:
    """Guarded writes for marketplace listings"""

    def __init__(
        self,
        db: AsyncSession,
        rate_limiter: RateLimiter | None = None,
        idempotency: IdempotencyService | None = None,
        storage: StorageService | None = None,
    ):
        self.db = db
        self.repository = ListingRepository(db)
        self.rate_limiter = rate_limiter or RateLimiter(listing_create_policy())
        self.idempotency = idempotency or IdempotencyService(db)
        self.storage = storage or StorageService()

    # ---- creation guard ----

    @log_async_operation("create_listing")
    async def create_listing(
        self,
        actor: Actor,
        raw: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Create a listing. Returns {"success": True, "data": {...}}.

        With an idempotency key, a repeated call returns the first call's
        response without running any later step.
        """
        key = self._normalize_key(idempotency_key)
        if key:
            replay = await self.idempotency.acquire(key, actor.id)
            if replay is not None:
                return replay

        try:
            response, hooks = await self._create(actor, raw, key)
        except Exception:
            if key:
                await self.idempotency.release(key, actor.id)
            raise

        await hooks.run()
        return response

    async def _create(
        self,
        actor: Actor,
        raw: dict[str, Any],
        key: Optional[str],
    ) -> tuple[dict[str, Any], PostCommitHooks]:
        await self.rate_limiter.hit(actor.id)

        if _honeypot_filled(raw):
            logger.warning("Honeypot triggered", extra_data={"actor_id": actor.id})
            raise SpamRejectedError()

        payload = validate_listing_payload(raw)
        fields = sanitize_listing_payload(payload)

        status = ListingStatus.ACTIVE if actor.is_admin else ListingStatus.PENDING
        fields.update(
            slug=generate_slug(fields["title"]),
            status=status,
            seller_id=actor.id,
            is_featured=False,
        )

        try:
            item = await self.repository.create(fields)
            response = {
                "success": True,
                "data": {"id": item.id, "slug": item.slug, "status": item.status.value},
            }
            if key:
                await self.idempotency.complete(key, actor.id, response)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(
                "Listing insert rejected by constraints",
                extra_data={"actor_id": actor.id, "error": str(e.orig)},
            )
            raise ValidationException("The listing references an unknown area") from e
        except (SQLAlchemyError, OSError) as e:
            await self.db.rollback()
            logger.error(
                "Listing store unavailable during create",
                extra_data={"actor_id": actor.id, "error": str(e)},
                exc_info=True,
            )
            raise DependencyError("listing_store") from e

        logger.info(
            "Listing created",
            extra_data={"listing_id": item.id, "actor_id": actor.id, "status": status.value},
        )

        hooks = PostCommitHooks()
        hooks.add("invalidate_cache", lambda: invalidate_listing_reads(item.id))
        if status == ListingStatus.PENDING:
            notification = new_listing_payload(item.id, item.title)
            hooks.add("notify_administrators", lambda: self._enqueue_admin_notification(notification))
        return response, hooks

    @staticmethod
    async def _enqueue_admin_notification(payload: dict[str, Any]) -> None:
        tasks.notify_administrators.delay(payload)

    @staticmethod
    def _normalize_key(idempotency_key: Optional[str]) -> Optional[str]:
        if idempotency_key is None:
            return None
        key = idempotency_key.strip()
        if not key:
            return None
        if len(key) > MAX_KEY_LENGTH:
            raise ValidationException(
                f"Idempotency key cannot exceed {MAX_KEY_LENGTH} characters",
                field="Idempotency-Key",
            )
        return key

    # ---- owner operations ----

    @log_async_operation("update_listing")
    async def update_listing(self, actor: Actor, listing_id: str, raw: dict[str, Any]) -> dict[str, Any]:
        """
        Full content update. Ownership is checked before any validation so
        foreign callers learn nothing about the payload or the listing.
        """
        await self.repository.lock_for_actor(listing_id, actor)

        protected = PROTECTED_FIELDS.intersection(raw or {})
        if protected:
            raise ForbiddenFieldError(list(protected))
        if _honeypot_filled(raw):
            logger.warning("Honeypot triggered on update", extra_data={"actor_id": actor.id})
            raise SpamRejectedError()

        fields = sanitize_listing_payload(validate_listing_payload(raw))
        item = await self.repository.update_fields(listing_id, actor, fields)
        await self._commit("update")

        hooks = PostCommitHooks()
        hooks.add("invalidate_cache", lambda: invalidate_listing_reads(listing_id))
        await hooks.run()
        return {"success": True, "data": {"id": item.id, "slug": item.slug}}

    @log_async_operation("transition_listing")
    async def transition_listing(
        self,
        actor: Actor,
        listing_id: str,
        action: ListingAction,
    ) -> dict[str, Any]:
        """sold / active / relist change status; delete removes the row"""
        action = ListingAction(action)
        hooks = PostCommitHooks()

        if action == ListingAction.DELETE:
            images = await self.repository.delete(listing_id, actor)
            await self._commit("delete")
            hooks.add("remove_images", lambda: self._remove_images(images))
            hooks.add("invalidate_cache", lambda: invalidate_listing_reads(listing_id))
            await hooks.run()
            logger.info("Listing deleted", extra_data={"listing_id": listing_id, "actor_id": actor.id})
            return {"success": True, "data": {"id": listing_id, "deleted": True}}

        item, _ = await self.repository.transition(
            listing_id,
            actor,
            ACTION_TARGETS[action],
            relist=action == ListingAction.RELIST,
        )
        await self._commit(action.value)
        hooks.add("invalidate_cache", lambda: invalidate_listing_reads(listing_id))
        await hooks.run()
        return {"success": True, "data": {"id": item.id, "status": item.status.value}}

    @log_async_operation("bump_listing")
    async def bump_listing(self, actor: Actor, listing_id: str) -> dict[str, Any]:
        item = await self.repository.bump(listing_id, actor)
        await EngagementService(self.db).record(listing_id, EngagementType.BUMP, actor_id=actor.id)
        await self._commit("bump")

        hooks = PostCommitHooks()
        hooks.add("invalidate_cache", lambda: invalidate_listing_reads(listing_id))
        await hooks.run()
        return {"success": True, "data": {"id": item.id, "last_bump_at": item.last_bump_at.isoformat()}}

    async def _remove_images(self, images: list[str]) -> None:
        if images:
            await self.storage.remove_images(images)

    async def _commit(self, operation: str) -> None:
        try:
            await self.db.commit()
        except (SQLAlchemyError, OSError) as e:
            await self.db.rollback()
            logger.error(
                "Listing store unavailable",
                extra_data={"operation": operation, "error": str(e)},
                exc_info=True,
            )
            raise DependencyError("listing_store") from e
