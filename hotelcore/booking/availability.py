from typing import List, Optional

from sqlmodel import Session, select

from hotelcore.booking.extent import DateSlot, TemporalExtent, require_kind
from hotelcore.booking.models import ACTIVE_STATUSES, Booking
from hotelcore.catalog.models import ResourceCategory, ResourceInstance, ResourceStatus


def blocking_bookings(session: Session, extent: TemporalExtent,
                      resource_ids: Optional[List[int]] = None,
                      exclude_booking_id: Optional[int] = None) -> List[Booking]:
    """Active bookings whose extent overlaps ``extent``."""
    start, end = extent.span()
    stmt = select(Booking).where(
        Booking.status.in_(ACTIVE_STATUSES),
        Booking.start_date < end,
        Booking.end_date > start,
    )
    if isinstance(extent, DateSlot):
        stmt = stmt.where(Booking.time_slot == extent.slot)
    if resource_ids is not None:
        stmt = stmt.where(Booking.resource_id.in_(resource_ids))
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    # The SQL span test is a superset; the variant predicate has the final say
    return [b for b in session.exec(stmt) if b.extent.overlaps(extent)]


def find_free(session: Session, category: ResourceCategory, extent: TemporalExtent,
              guest_count: int, group: Optional[str] = None) -> List[ResourceInstance]:
    """
    Instances of ``category`` that can seat ``guest_count`` and are not held by an
    overlapping pending/confirmed/checked-in booking, cheapest first, then by id.
    """
    require_kind(category, extent)
    stmt = select(ResourceInstance).where(
        ResourceInstance.category == category,
        ResourceInstance.is_active == True,  # noqa: E712
        ResourceInstance.status != ResourceStatus.MAINTENANCE,
        ResourceInstance.capacity >= guest_count,
    )
    if group:
        stmt = stmt.where(ResourceInstance.group == group)
    candidates = list(session.exec(stmt.order_by(ResourceInstance.price_minor, ResourceInstance.id)))
    if not candidates:
        return []
    taken = {b.resource_id for b in blocking_bookings(session, extent, [r.id for r in candidates])}
    return [r for r in candidates if r.id not in taken]
