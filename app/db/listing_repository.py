"""
Listing Repository - typed access to marketplace_items.

Owns field mapping, row-locked ownership checks and status transitions.
The repository flushes; callers (services) own the transaction and commit.
"""
import re
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.auth import Actor
from app.core.exceptions import (
    ForbiddenFieldError,
    InvalidStateTransitionError,
    ListingAccessDeniedError,
    ListingNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.listing_query import ListingFilters, build_listing_query, count_query, default_order
from app.db.models.marketplace_item import MarketplaceItem, ListingStatus
from app.state_machine.manager import ListingStateMachine

logger = get_logger(__name__)

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# Lifecycle and ownership fields; changed only through dedicated operations
PROTECTED_FIELDS = frozenset({
    "id", "slug", "status", "is_featured", "seller_id", "rejection_reason",
    "view_count", "created_at", "updated_at", "expires_at", "last_bump_at",
})

CONTENT_FIELDS = frozenset({
    "title", "description", "price", "price_type", "category", "condition",
    "images", "attributes", "location", "area_id", "seller_phone", "seller_whatsapp",
})


def looks_like_uuid(value: str) -> bool:
    return bool(_UUID_PATTERN.match(value or ""))


class ListingRepository:
    """CRUD, transitions and queries for MarketplaceItem"""

    def __init__(self, db: AsyncSession, state_machine: ListingStateMachine | None = None):
        self.db = db
        self.state_machine = state_machine or ListingStateMachine()

    # ---- reads ----

    async def get_by_id(self, listing_id: str) -> Optional[MarketplaceItem]:
        result = await self.db.execute(
            select(MarketplaceItem).where(MarketplaceItem.id == listing_id)
        )
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> Optional[MarketplaceItem]:
        """Slug lookup; falls back to id when the value has a UUID shape"""
        result = await self.db.execute(
            select(MarketplaceItem).where(MarketplaceItem.slug == slug)
        )
        item = result.scalar_one_or_none()
        if item is None and looks_like_uuid(slug):
            item = await self.get_by_id(slug.lower())
        return item

    async def query(
        self,
        filters: ListingFilters,
        limit: int,
        offset: int = 0,
        now: datetime | None = None,
    ) -> tuple[list[MarketplaceItem], int]:
        """Filtered, default-ordered page plus total count for the same predicates"""
        stmt = build_listing_query(filters, now or utcnow())
        total = (await self.db.execute(count_query(stmt))).scalar_one()
        page = await self.db.execute(default_order(stmt).limit(limit).offset(offset))
        return list(page.scalars().all()), int(total)

    async def fetch(self, stmt: Select) -> list[MarketplaceItem]:
        """Run a prepared listing select (feed and recommendation queries)"""
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_by_seller(self, seller_id: str, include_removed: bool = False) -> list[MarketplaceItem]:
        """The seller's own listings in every state, newest first"""
        stmt = select(MarketplaceItem).where(MarketplaceItem.seller_id == seller_id)
        if not include_removed:
            stmt = stmt.where(MarketplaceItem.status != ListingStatus.REMOVED)
        return await self.fetch(stmt.order_by(MarketplaceItem.created_at.desc()))

    async def list_public_by_seller(
        self,
        seller_id: str,
        limit: int,
        exclude_id: str | None = None,
        now: datetime | None = None,
    ) -> list[MarketplaceItem]:
        """Another seller's public listings (active, unexpired)"""
        stmt = build_listing_query(ListingFilters(), now or utcnow()).where(
            MarketplaceItem.seller_id == seller_id
        )
        if exclude_id:
            stmt = stmt.where(MarketplaceItem.id != exclude_id)
        return await self.fetch(default_order(stmt).limit(limit))

    async def list_pending(self, limit: int, offset: int = 0) -> list[MarketplaceItem]:
        """Moderation queue, oldest first"""
        stmt = (
            select(MarketplaceItem)
            .where(MarketplaceItem.status == ListingStatus.PENDING)
            .order_by(MarketplaceItem.created_at.asc(), MarketplaceItem.id.asc())
            .limit(limit)
            .offset(offset)
        )
        return await self.fetch(stmt)

    async def status_counts(self, now: datetime | None = None) -> dict[str, int]:
        """Per-status totals plus soft-expired and created-today counts"""
        now = now or utcnow()
        result = await self.db.execute(
            select(MarketplaceItem.status, func.count()).group_by(MarketplaceItem.status)
        )
        counts = {status.value: 0 for status in ListingStatus}
        for status, count in result.all():
            counts[ListingStatus(status).value] = int(count)

        expired = await self.db.execute(
            select(func.count()).select_from(MarketplaceItem).where(
                MarketplaceItem.status == ListingStatus.ACTIVE,
                MarketplaceItem.expires_at.is_not(None),
                MarketplaceItem.expires_at <= now,
            )
        )
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        today = await self.db.execute(
            select(func.count()).select_from(MarketplaceItem).where(
                MarketplaceItem.created_at >= start_of_day
            )
        )
        counts["expired"] = int(expired.scalar_one())
        counts["created_today"] = int(today.scalar_one())
        counts["total"] = sum(counts[status.value] for status in ListingStatus)
        return counts

    # ---- writes ----

    async def create(self, fields: dict[str, Any]) -> MarketplaceItem:
        now = utcnow()
        item = MarketplaceItem(**fields)
        item.created_at = now
        item.updated_at = now
        item.last_bump_at = now
        self.db.add(item)
        await self.db.flush()
        return item

    async def lock_for_actor(self, listing_id: str, actor: Actor) -> MarketplaceItem:
        """
        Row-locked load plus ownership check.

        Missing rows and foreign rows raise the same not-found error.
        """
        result = await self.db.execute(
            select(MarketplaceItem)
            .where(MarketplaceItem.id == listing_id)
            .with_for_update()
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise ListingNotFoundError(listing_id)
        if item.seller_id != actor.id and not actor.is_admin:
            logger.warning(
                "Listing mutation denied",
                extra_data={"listing_id": listing_id, "actor_id": actor.id},
            )
            raise ListingAccessDeniedError(listing_id, actor.id)
        return item

    async def _flush(self, listing_id: str) -> None:
        try:
            await self.db.flush()
        except StaleDataError as e:
            # row deleted between the locked read and the write
            raise ListingNotFoundError(listing_id) from e

    async def update_fields(self, listing_id: str, actor: Actor, fields: dict[str, Any]) -> MarketplaceItem:
        """Content-only update. Lifecycle and ownership fields are refused."""
        protected = PROTECTED_FIELDS.intersection(fields)
        if protected:
            raise ForbiddenFieldError(list(protected))
        unknown = set(fields) - CONTENT_FIELDS
        if unknown:
            raise ValidationException(f"Unknown fields: {', '.join(sorted(unknown))}")

        item = await self.lock_for_actor(listing_id, actor)
        for key, value in fields.items():
            setattr(item, key, value)
        item.updated_at = utcnow()
        await self._flush(listing_id)
        return item

    async def transition(
        self,
        listing_id: str,
        actor: Actor,
        status: ListingStatus,
        reason: str | None = None,
        *,
        relist: bool = False,
    ) -> tuple[MarketplaceItem, ListingStatus]:
        """Apply a status transition. Returns (item, previous_status)."""
        result = await self.db.execute(
            select(MarketplaceItem)
            .where(MarketplaceItem.id == listing_id)
            .with_for_update()
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise ListingNotFoundError(listing_id)
        previous = self.state_machine.apply(item, actor, status, reason, relist=relist)
        await self._flush(listing_id)
        return item, previous

    async def bump(self, listing_id: str, actor: Actor) -> MarketplaceItem:
        """Refresh last_bump_at; created_at is untouched"""
        item = await self.lock_for_actor(listing_id, actor)
        if item.status != ListingStatus.ACTIVE:
            raise InvalidStateTransitionError(item.status.value, "bump", item.id)
        now = utcnow()
        item.last_bump_at = now
        item.updated_at = now
        await self._flush(listing_id)
        return item

    async def set_featured(self, listing_id: str, featured: bool) -> MarketplaceItem:
        """Administrative promotion toggle; callers enforce the admin role"""
        result = await self.db.execute(
            select(MarketplaceItem)
            .where(MarketplaceItem.id == listing_id)
            .with_for_update()
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise ListingNotFoundError(listing_id)
        item.is_featured = featured
        item.updated_at = utcnow()
        await self._flush(listing_id)
        return item

    async def increment_view_count(self, listing_id: str) -> bool:
        result = await self.db.execute(
            update(MarketplaceItem)
            .where(MarketplaceItem.id == listing_id)
            .values(view_count=MarketplaceItem.view_count + 1)
        )
        return result.rowcount > 0

    async def delete(self, listing_id: str, actor: Actor) -> list[str]:
        """
        Hard delete. Returns the listing's stored image URLs so the caller can
        schedule best-effort storage removal after commit.
        """
        item = await self.lock_for_actor(listing_id, actor)
        images = list(item.images or [])
        await self.db.delete(item)
        await self._flush(listing_id)
        return images
