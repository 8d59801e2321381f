"""
Listing State Machine

Validates and applies status transitions on a loaded MarketplaceItem.
Persistence and row locking belong to the repository; this module only
decides whether a change is legal and which fields it touches.
"""
from datetime import datetime

from app.core.auth import Actor
from app.core.exceptions import (
    InvalidStateTransitionError,
    ListingAccessDeniedError,
    ValidationException,
    ErrorCode,
)
from app.core.config import settings
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.marketplace_item import MarketplaceItem, ListingStatus
from app.state_machine.states import LISTING_TRANSITIONS, MODERATION_TRANSITIONS

logger = get_logger(__name__)


class ListingStateMachine:
    """Transition rules for marketplace listings"""

    @staticmethod
    def is_valid_transition(current: ListingStatus | str, target: ListingStatus | str) -> bool:
        """Check if transition from current to target status is valid"""
        try:
            current_status = ListingStatus(current)
            target_status = ListingStatus(target)
        except ValueError:
            return False
        return target_status in LISTING_TRANSITIONS.get(current_status, [])

    @staticmethod
    def requires_admin(current: ListingStatus, target: ListingStatus) -> bool:
        return (current, target) in MODERATION_TRANSITIONS

    def authorize(self, item: MarketplaceItem, actor: Actor, target: ListingStatus) -> None:
        """Ownership and moderation checks.

        Raises ListingAccessDeniedError for non-owners and
        InvalidStateTransitionError when the owner asks for a moderation step.
        """
        if self.requires_admin(item.status, target):
            if actor.is_admin:
                return
            if item.seller_id == actor.id:
                # the owner already knows the listing exists
                self._reject(item, target, actor)
            raise ListingAccessDeniedError(item.id, actor.id)
        if item.seller_id != actor.id and not actor.is_admin:
            raise ListingAccessDeniedError(item.id, actor.id)

    def apply(
        self,
        item: MarketplaceItem,
        actor: Actor,
        target: ListingStatus,
        reason: str | None = None,
        *,
        relist: bool = False,
        now: datetime | None = None,
    ) -> ListingStatus:
        """Validate and apply a transition. Returns the previous status.

        relist=True additionally clears expires_at and resets created_at and
        last_bump_at so the listing returns to the head of recency ordering.
        An active listing past its expires_at may be relisted in place.
        """
        self.authorize(item, actor, target)
        previous = item.status
        now = now or utcnow()

        soft_expired_refresh = (
            relist
            and previous == ListingStatus.ACTIVE
            and target == ListingStatus.ACTIVE
            and item.expires_at is not None
            and item.expires_at <= now
        )

        if not soft_expired_refresh:
            if relist and previous != ListingStatus.SOLD:
                self._reject(item, target, actor)
            if not self.is_valid_transition(previous, target):
                self._reject(item, target, actor)

        if target == ListingStatus.REJECTED:
            cleaned = (reason or "").strip()
            if len(cleaned) < settings.REJECTION_REASON_MIN_LENGTH:
                exc = ValidationException(
                    f"Rejection reason must be at least {settings.REJECTION_REASON_MIN_LENGTH} characters",
                    field="reason",
                )
                exc.error_code = ErrorCode.REJECTION_REASON_REQUIRED
                raise exc
            item.rejection_reason = cleaned
        elif target == ListingStatus.ACTIVE:
            item.rejection_reason = None

        item.status = target
        item.updated_at = now
        if relist:
            # created_at is reset too: relisting is treated as a fresh listing date
            item.expires_at = None
            item.created_at = now
            item.last_bump_at = now

        logger.info(
            "Listing status changed",
            extra_data={
                "listing_id": item.id,
                "from": previous.value,
                "to": target.value,
                "relist": relist,
                "actor_id": actor.id,
            },
        )
        return previous

    @staticmethod
    def _reject(item: MarketplaceItem, target: ListingStatus, actor: Actor) -> None:
        logger.warning(
            "Invalid listing transition attempted",
            extra_data={
                "listing_id": item.id,
                "current_state": item.status.value,
                "target_state": target.value,
                "actor_id": actor.id,
            },
        )
        raise InvalidStateTransitionError(item.status.value, target.value, item.id)
