"""
Moderation Service - administrator operations on the listing lifecycle.

Callers (the admin router) enforce the admin role; the state machine
enforces it again for pending -> active|rejected.
"""
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor
from app.core.cache import invalidate_listing_reads
from app.core.exceptions import DependencyError
from app.core.logging import get_logger, log_async_operation
from app.db.listing_repository import ListingRepository
from app.db.models.marketplace_item import MarketplaceItem, ListingStatus
from app.domain.services.hooks import PostCommitHooks
from app.domain.services.notification_service import (
    listing_approved_payload,
    listing_rejected_payload,
    listing_removed_payload,
)
from app.domain.services.storage_service import StorageService
from app.workers import tasks

logger = get_logger(__name__)


class ModerationService:
    """Approve, reject, feature and remove listings; dashboard counts"""

    def __init__(self, db: AsyncSession, storage: StorageService | None = None):
        self.db = db
        self.repository = ListingRepository(db)
        self.storage = storage or StorageService()

    async def pending_queue(self, limit: int, offset: int = 0) -> list[MarketplaceItem]:
        return await self.repository.list_pending(limit, offset)

    async def stats(self) -> dict[str, int]:
        return await self.repository.status_counts()

    @log_async_operation("approve_listing")
    async def approve(self, actor: Actor, listing_id: str) -> MarketplaceItem:
        item, _ = await self.repository.transition(listing_id, actor, ListingStatus.ACTIVE)
        await self._commit("approve")
        await self._after_commit(
            item,
            listing_approved_payload(item.id, item.title, item.slug),
        )
        return item

    @log_async_operation("reject_listing")
    async def reject(self, actor: Actor, listing_id: str, reason: str) -> MarketplaceItem:
        item, _ = await self.repository.transition(
            listing_id, actor, ListingStatus.REJECTED, reason
        )
        await self._commit("reject")
        await self._after_commit(
            item,
            listing_rejected_payload(item.id, item.title, item.rejection_reason),
        )
        return item

    @log_async_operation("remove_listing")
    async def remove(self, actor: Actor, listing_id: str) -> MarketplaceItem:
        """Terminal removal; stored images are deleted after commit"""
        item, _ = await self.repository.transition(listing_id, actor, ListingStatus.REMOVED)
        images = list(item.images or [])
        await self._commit("remove")
        await self._after_commit(
            item,
            listing_removed_payload(item.id, item.title),
            images=images,
        )
        return item

    @log_async_operation("feature_listing")
    async def set_featured(self, listing_id: str, featured: bool) -> MarketplaceItem:
        item = await self.repository.set_featured(listing_id, featured)
        await self._commit("feature")

        hooks = PostCommitHooks()
        hooks.add("invalidate_cache", lambda: invalidate_listing_reads(listing_id))
        await hooks.run()
        logger.info(
            "Listing promotion changed",
            extra_data={"listing_id": listing_id, "is_featured": featured},
        )
        return item

    async def _after_commit(
        self,
        item: MarketplaceItem,
        payload: dict[str, Any],
        images: list[str] | None = None,
    ) -> None:
        seller_id = item.seller_id
        listing_id = item.id

        hooks = PostCommitHooks()
        hooks.add("invalidate_cache", lambda: invalidate_listing_reads(listing_id))
        hooks.add("notify_seller", lambda: self._enqueue_seller_notification(seller_id, payload))
        if images:
            hooks.add("remove_images", lambda: self.storage.remove_images(images))
        await hooks.run()

    @staticmethod
    async def _enqueue_seller_notification(seller_id: str, payload: dict[str, Any]) -> None:
        tasks.notify_actor.delay(seller_id, payload)

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
