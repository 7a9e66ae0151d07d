"""Booking lifecycle graphs, one per resource category."""
from typing import Dict, Set

from hotelcore.booking.models import BookingStatus
from hotelcore.catalog.models import ResourceCategory
from hotelcore.errors import InvalidTransition

S = BookingStatus

ROOM_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
    S.PENDING: {S.CONFIRMED, S.CANCELLED},
    S.CONFIRMED: {S.CHECKED_IN, S.CANCELLED},
    S.CHECKED_IN: {S.CHECKED_OUT},
    S.CHECKED_OUT: set(),
    S.CANCELLED: set(),
}

EVENT_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
    S.PENDING: {S.CONFIRMED, S.CANCELLED},
    S.CONFIRMED: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

# A confirmed table the party never turned up for is closed as a no-show
RESTAURANT_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
    **EVENT_TRANSITIONS,
    S.CONFIRMED: {S.COMPLETED, S.NO_SHOW, S.CANCELLED},
    S.NO_SHOW: set(),
}

TRANSITIONS = {
    ResourceCategory.ROOM: ROOM_TRANSITIONS,
    ResourceCategory.BANQUET: EVENT_TRANSITIONS,
    ResourceCategory.RESTAURANT: RESTAURANT_TRANSITIONS,
}

# Moves made by staff on the floor, as opposed to payment or cancellation
OPERATIONAL_TARGETS = {S.CHECKED_IN, S.CHECKED_OUT, S.COMPLETED, S.NO_SHOW}

# Reaching one of these frees the resource for the rest of the extent
RELEASING_STATUSES = {S.CHECKED_OUT, S.COMPLETED, S.NO_SHOW, S.CANCELLED}


def assert_transition(category: ResourceCategory, current: BookingStatus, target: BookingStatus) -> None:
    allowed = TRANSITIONS[category].get(current, set())
    if target not in allowed:
        raise InvalidTransition(
            f"Invalid {category.value} booking transition: {current.value} -> {target.value}",
            details={"from": current.value, "to": target.value},
        )
