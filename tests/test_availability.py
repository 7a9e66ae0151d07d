from itertools import combinations

import pytest
from sqlmodel import Session, select

from conftest import GUEST, add_resource, days_ahead
from hotelcore.booking.availability import blocking_bookings, find_free
from hotelcore.booking.extent import DateRange, DateSlot, EventDate, TimeSlot
from hotelcore.booking.models import ACTIVE_STATUSES, Booking
from hotelcore.catalog.models import ResourceCategory, ResourceStatus
from hotelcore.errors import InvalidRequest, ResourceUnavailable


def test_find_free_orders_by_price_then_id(engine):
    b = add_resource(engine, ResourceCategory.ROOM, "201", 800000, 2)
    a = add_resource(engine, ResourceCategory.ROOM, "101", 600000, 2)
    c = add_resource(engine, ResourceCategory.ROOM, "102", 600000, 2)
    with Session(engine) as session:
        free = find_free(session, ResourceCategory.ROOM, DateRange(days_ahead(1), days_ahead(2)), 2)
    assert [r.id for r in free] == [a, c, b]


def test_find_free_skips_maintenance_inactive_and_small(engine):
    add_resource(engine, ResourceCategory.RESTAURANT, "T1", 0, 2)
    add_resource(engine, ResourceCategory.RESTAURANT, "T2", 0, 6, status=ResourceStatus.MAINTENANCE)
    add_resource(engine, ResourceCategory.RESTAURANT, "T3", 0, 6, is_active=False)
    big = add_resource(engine, ResourceCategory.RESTAURANT, "T4", 0, 6)
    with Session(engine) as session:
        free = find_free(session, ResourceCategory.RESTAURANT, DateSlot(days_ahead(1), TimeSlot.LUNCH), 4)
    assert [r.id for r in free] == [big]


def test_find_free_filters_by_group(engine):
    add_resource(engine, ResourceCategory.ROOM, "101", 600000, 2, group="CLUB ROOMS")
    suite = add_resource(engine, ResourceCategory.ROOM, "301", 1800000, 3, group="PRESIDENTIAL SUITE")
    with Session(engine) as session:
        free = find_free(session, ResourceCategory.ROOM, DateRange(days_ahead(1), days_ahead(3)), 1,
                         group="PRESIDENTIAL SUITE")
    assert [r.id for r in free] == [suite]


def test_booked_room_is_not_offered_for_overlapping_nights(engine, ledger):
    room = add_resource(engine, ResourceCategory.ROOM, "101", 150000, 2)
    ledger.create_booking(GUEST, DateRange(days_ahead(3), days_ahead(5)), 2, resource_id=room)
    with Session(engine) as session:
        assert find_free(session, ResourceCategory.ROOM, DateRange(days_ahead(4), days_ahead(6)), 1) == []
        after = find_free(session, ResourceCategory.ROOM, DateRange(days_ahead(5), days_ahead(6)), 1)
        assert [r.id for r in after] == [room]
        assert len(blocking_bookings(session, DateRange(days_ahead(1), days_ahead(4)), [room])) == 1


def test_cancelled_booking_frees_the_slot(engine, ledger):
    table = add_resource(engine, ResourceCategory.RESTAURANT, "T1", 0, 2)
    extent = DateSlot(days_ahead(2), TimeSlot.DINNER)
    booking = ledger.create_booking(GUEST, extent, 2, resource_id=table)
    with pytest.raises(ResourceUnavailable):
        ledger.create_booking(GUEST, extent, 2, resource_id=table)
    ledger.cancel(booking.id, GUEST)
    again = ledger.create_booking(GUEST, extent, 2, resource_id=table)
    assert again.resource_id == table


def test_category_booking_falls_through_to_next_free_instance(engine, ledger):
    cheap = add_resource(engine, ResourceCategory.BANQUET, "Terrace", 7500000, 250)
    dear = add_resource(engine, ResourceCategory.BANQUET, "Ballroom", 15000000, 500)
    day = EventDate(days_ahead(10))
    first = ledger.create_booking(GUEST, day, 100, category=ResourceCategory.BANQUET)
    second = ledger.create_booking(GUEST, day, 100, category=ResourceCategory.BANQUET)
    assert (first.resource_id, second.resource_id) == (cheap, dear)
    with pytest.raises(ResourceUnavailable):
        ledger.create_booking(GUEST, day, 100, category=ResourceCategory.BANQUET)


def test_too_many_guests_for_any_instance_is_invalid(engine, ledger):
    add_resource(engine, ResourceCategory.RESTAURANT, "T1", 0, 4)
    with pytest.raises(InvalidRequest):
        ledger.create_booking(GUEST, DateSlot(days_ahead(1), TimeSlot.BREAKFAST), 9,
                              category=ResourceCategory.RESTAURANT)


def test_active_bookings_never_overlap_per_resource(engine, ledger):
    rooms = [add_resource(engine, ResourceCategory.ROOM, f"10{i}", 150000, 2) for i in range(2)]
    requests = [(1, 4), (2, 3), (3, 6), (4, 5), (1, 2), (5, 9), (2, 7), (6, 8), (8, 9), (1, 9)]
    for start, end in requests:
        try:
            ledger.create_booking(GUEST, DateRange(days_ahead(start), days_ahead(end)), 1,
                                  category=ResourceCategory.ROOM)
        except ResourceUnavailable:
            pass

    with Session(engine) as session:
        active = list(session.exec(select(Booking).where(Booking.status.in_(ACTIVE_STATUSES))))
    assert active
    for room in rooms:
        held = [b for b in active if b.resource_id == room]
        for x, y in combinations(held, 2):
            assert not x.extent.overlaps(y.extent)
