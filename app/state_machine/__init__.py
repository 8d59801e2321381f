"""
Listing lifecycle state machine
"""
from app.state_machine.states import ListingAction, LISTING_TRANSITIONS
from app.state_machine.manager import ListingStateMachine

__all__ = ["ListingAction", "LISTING_TRANSITIONS", "ListingStateMachine"]
