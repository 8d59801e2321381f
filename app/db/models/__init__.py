"""
Database Models
"""
from app.db.models.user import User
from app.db.models.area import Area, District
from app.db.models.marketplace_item import MarketplaceItem
from app.db.models.idempotency_record import IdempotencyRecord
from app.db.models.engagement_event import EngagementEvent
from app.db.models.notification import Notification

__all__ = [
    "User",
    "Area",
    "District",
    "MarketplaceItem",
    "IdempotencyRecord",
    "EngagementEvent",
    "Notification",
]
