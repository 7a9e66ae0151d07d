"""
Temporal extents: the span of time a booking holds its resource.

Each variant normalises to a half-open day span ``[start, end)`` plus an optional
time slot, and produces the claim keys used by the occupancy uniqueness
constraint. Two extents of the same variant overlap iff their claim keys
intersect.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import List, Optional, Tuple, Union

from hotelcore.catalog.models import ResourceCategory
from hotelcore.errors import InvalidRequest


class TimeSlot(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    AFTERNOON_TEA = "afternoon_tea"
    DINNER = "dinner"
    LATE_DINNER = "late_dinner"


@dataclass(frozen=True)
class DateRange:
    """Room stay. check_out is exclusive: the guest leaves that morning."""
    check_in: date
    check_out: date

    def validate(self) -> None:
        if self.check_out <= self.check_in:
            raise InvalidRequest("check-out date must be after check-in date")

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def span(self) -> Tuple[date, date]:
        return self.check_in, self.check_out

    def overlaps(self, other: "TemporalExtent") -> bool:
        if not isinstance(other, DateRange):
            return False
        return self.check_in < other.check_out and other.check_in < self.check_out

    def claim_keys(self) -> List[str]:
        return [(self.check_in + timedelta(days=i)).isoformat() for i in range(self.nights)]


@dataclass(frozen=True)
class EventDate:
    """Banquet event: the hall is held for the whole day."""
    event_date: date

    def validate(self) -> None:
        return None

    def span(self) -> Tuple[date, date]:
        return self.event_date, self.event_date + timedelta(days=1)

    def overlaps(self, other: "TemporalExtent") -> bool:
        return isinstance(other, EventDate) and other.event_date == self.event_date

    def claim_keys(self) -> List[str]:
        return [self.event_date.isoformat()]


@dataclass(frozen=True)
class DateSlot:
    """Restaurant reservation: one table for one meal slot on one day."""
    booking_date: date
    slot: TimeSlot

    def validate(self) -> None:
        if not isinstance(self.slot, TimeSlot):
            raise InvalidRequest(f"unknown time slot {self.slot!r}")

    def span(self) -> Tuple[date, date]:
        return self.booking_date, self.booking_date + timedelta(days=1)

    def overlaps(self, other: "TemporalExtent") -> bool:
        return (isinstance(other, DateSlot) and other.booking_date == self.booking_date
                and other.slot == self.slot)

    def claim_keys(self) -> List[str]:
        return [f"{self.booking_date.isoformat()}#{self.slot.value}"]


TemporalExtent = Union[DateRange, EventDate, DateSlot]

EXTENT_FOR_CATEGORY = {
    ResourceCategory.ROOM: DateRange,
    ResourceCategory.BANQUET: EventDate,
    ResourceCategory.RESTAURANT: DateSlot,
}


def require_kind(category: ResourceCategory, extent: TemporalExtent) -> None:
    expected = EXTENT_FOR_CATEGORY[category]
    if not isinstance(extent, expected):
        raise InvalidRequest(f"{category.value} bookings need a {expected.__name__} extent")


def build_extent(check_in: Optional[date] = None, check_out: Optional[date] = None,
                 event_date: Optional[date] = None, booking_date: Optional[date] = None,
                 time_slot: Optional[str] = None) -> TemporalExtent:
    """Pick the extent variant from whichever request fields are present."""
    if check_in is not None or check_out is not None:
        if check_in is None or check_out is None:
            raise InvalidRequest("both check-in and check-out dates are required")
        extent: TemporalExtent = DateRange(check_in, check_out)
    elif event_date is not None:
        extent = EventDate(event_date)
    elif booking_date is not None:
        if not time_slot:
            raise InvalidRequest("a time slot is required for restaurant bookings")
        try:
            extent = DateSlot(booking_date, TimeSlot(time_slot))
        except ValueError:
            raise InvalidRequest(f"unknown time slot {time_slot!r}")
    else:
        raise InvalidRequest("a check-in/check-out pair, an event date or a booking date is required")
    extent.validate()
    return extent
