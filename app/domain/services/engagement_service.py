"""
Engagement Service - append-only engagement events and view counting
"""
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.listing_repository import ListingRepository
from app.db.models.engagement_event import EngagementEvent, EngagementType

logger = get_logger(__name__)


class EngagementService:
    """Fire-and-forget from the caller's perspective: failures are logged, never raised"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        item_id: str,
        event_type: EngagementType,
        actor_id: str | None = None,
        session_id: str | None = None,
    ) -> bool:
        try:
            async with self.db.begin_nested():
                self.db.add(EngagementEvent(
                    item_id=item_id,
                    event_type=event_type,
                    actor_id=actor_id,
                    session_id=session_id,
                ))
            return True
        except SQLAlchemyError as e:
            logger.error(
                "Failed to record engagement event",
                extra_data={"item_id": item_id, "event_type": event_type.value, "error": str(e)},
                exc_info=True,
            )
            return False

    async def record_view(
        self,
        item_id: str,
        actor_id: str | None = None,
        session_id: str | None = None,
    ) -> bool:
        """Increment view_count and append a view event, then commit"""
        try:
            async with self.db.begin_nested():
                found = await ListingRepository(self.db).increment_view_count(item_id)
            if not found:
                return False
            await self.record(item_id, EngagementType.VIEW, actor_id, session_id)
            await self.db.commit()
            return True
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Failed to record listing view",
                extra_data={"item_id": item_id, "error": str(e)},
                exc_info=True,
            )
            return False
