"""
Listing lifecycle states and allowed transitions
"""
from enum import Enum

from app.db.models.marketplace_item import ListingStatus


class ListingAction(str, Enum):
    """Owner-facing lifecycle actions"""

    SOLD = "sold"
    ACTIVE = "active"
    RELIST = "relist"
    DELETE = "delete"


LISTING_TRANSITIONS: dict[ListingStatus, list[ListingStatus]] = {
    ListingStatus.PENDING: [ListingStatus.ACTIVE, ListingStatus.REJECTED, ListingStatus.REMOVED],
    ListingStatus.ACTIVE: [ListingStatus.SOLD, ListingStatus.REMOVED],
    ListingStatus.SOLD: [ListingStatus.ACTIVE, ListingStatus.REMOVED],
    # rejected listings are not resubmitted; sellers create a new one
    ListingStatus.REJECTED: [ListingStatus.REMOVED],
    ListingStatus.REMOVED: [],
}

# Moderation decisions - administrators only
MODERATION_TRANSITIONS: set[tuple[ListingStatus, ListingStatus]] = {
    (ListingStatus.PENDING, ListingStatus.ACTIVE),
    (ListingStatus.PENDING, ListingStatus.REJECTED),
}

TERMINAL_STATES = frozenset(
    status for status, targets in LISTING_TRANSITIONS.items() if not targets
)

# Target status for each owner action; DELETE is a hard delete, not a status
ACTION_TARGETS: dict[ListingAction, ListingStatus | None] = {
    ListingAction.SOLD: ListingStatus.SOLD,
    ListingAction.ACTIVE: ListingStatus.ACTIVE,
    ListingAction.RELIST: ListingStatus.ACTIVE,
    ListingAction.DELETE: None,
}
