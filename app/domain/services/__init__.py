"""
Domain Services
"""
from app.domain.services.listing_service import ListingService
from app.domain.services.moderation_service import ModerationService
from app.domain.services.listing_read_service import ListingReadService
from app.domain.services.feed_service import FeedService
from app.domain.services.recommendation_service import RecommendationService
from app.domain.services.idempotency_service import IdempotencyService
from app.domain.services.engagement_service import EngagementService
from app.domain.services.notification_service import NotificationService
from app.domain.services.storage_service import StorageService

__all__ = [
    "ListingService",
    "ModerationService",
    "ListingReadService",
    "FeedService",
    "RecommendationService",
    "IdempotencyService",
    "EngagementService",
    "NotificationService",
    "StorageService",
]
