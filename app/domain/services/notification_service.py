"""
Notification Service - in-app notifications for sellers and administrators
"""
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.models.notification import Notification
from app.db.models.user import User, ADMIN_ROLES

logger = get_logger(__name__)


class NotificationService:
    """Writes Notification rows; callers decide whether to commit"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def notify_actor(self, user_id: str, payload: dict[str, Any]) -> Notification:
        notification = Notification(
            user_id=user_id,
            title=payload["title"],
            message=payload["message"],
            type=payload.get("type", "system"),
            data=payload.get("data"),
        )
        self.db.add(notification)
        await self.db.flush()
        return notification

    async def notify_administrators(self, payload: dict[str, Any]) -> int:
        """Fan out one notification per active administrator. Returns recipients count."""
        result = await self.db.execute(
            select(User.id).where(
                User.role.in_(list(ADMIN_ROLES)),
                User.is_active.is_(True),
            )
        )
        admin_ids = list(result.scalars().all())
        for admin_id in admin_ids:
            await self.notify_actor(admin_id, payload)

        if not admin_ids:
            logger.warning("No active administrators to notify", extra_data={"type": payload.get("type")})
        return len(admin_ids)


def new_listing_payload(listing_id: str, title: str) -> dict[str, Any]:
    return {
        "title": "New listing awaiting review",
        "message": f'New listing "{title}" needs moderation',
        "type": "marketplace_pending",
        "data": {"item_id": listing_id},
    }


def listing_approved_payload(listing_id: str, title: str, slug: str) -> dict[str, Any]:
    return {
        "title": "Your listing is live",
        "message": f'"{title}" was approved and is now visible',
        "type": "marketplace_approved",
        "data": {"item_id": listing_id, "slug": slug},
    }


def listing_rejected_payload(listing_id: str, title: str, reason: str) -> dict[str, Any]:
    return {
        "title": "Your listing was rejected",
        "message": f'"{title}" was rejected: {reason}',
        "type": "marketplace_rejected",
        "data": {"item_id": listing_id, "reason": reason},
    }


def listing_removed_payload(listing_id: str, title: str) -> dict[str, Any]:
    return {
        "title": "Your listing was removed",
        "message": f'"{title}" was removed by an administrator',
        "type": "marketplace_removed",
        "data": {"item_id": listing_id},
    }
