import threading

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from conftest import GUEST, OTHER_GUEST, add_resource, days_ahead
from hotelcore.booking.extent import DateSlot, TimeSlot
from hotelcore.booking.models import Booking, OccupancyClaim, PaymentCapture
from hotelcore.catalog.models import ResourceCategory
from hotelcore.errors import ResourceUnavailable


def test_two_concurrent_bookings_for_the_only_table_one_wins(engine, ledger):
    add_resource(engine, ResourceCategory.RESTAURANT, "T1", 0, 4)
    extent = DateSlot(days_ahead(2), TimeSlot.DINNER)
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def attempt(actor):
        barrier.wait()
        try:
            booking = ledger.create_booking(actor, extent, 2, category=ResourceCategory.RESTAURANT)
            result = ("ok", booking.id)
        except ResourceUnavailable as e:
            result = ("unavailable", e.message)
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(a,)) for a in (GUEST, OTHER_GUEST)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(o[0] for o in outcomes) == ["ok", "unavailable"]
    with Session(engine) as session:
        assert len(list(session.exec(select(Booking)))) == 1


def test_claim_constraint_rejects_a_second_holder(engine, ledger):
    table = add_resource(engine, ResourceCategory.RESTAURANT, "T1", 0, 4)
    booking = ledger.create_booking(GUEST, DateSlot(days_ahead(2), TimeSlot.LUNCH), 2, resource_id=table)
    key = f"{days_ahead(2).isoformat()}#lunch"
    with Session(engine) as session:
        session.add(OccupancyClaim(resource_id=table, slot_key=key, booking_id=booking.id))
        with pytest.raises(IntegrityError):
            session.commit()


def test_capture_constraint_rejects_duplicate_payment_id(engine, ledger):
    table = add_resource(engine, ResourceCategory.RESTAURANT, "T1", 0, 4)
    booking = ledger.create_booking(GUEST, DateSlot(days_ahead(2), TimeSlot.LUNCH), 2, resource_id=table)
    ledger.mark_paid(booking.id, "pay_1", 1000)
    with Session(engine) as session:
        session.add(PaymentCapture(payment_id="pay_1", booking_id=booking.id, amount_minor=1000))
        with pytest.raises(IntegrityError):
            session.commit()


def test_concurrent_duplicate_captures_credit_once(engine, ledger):
    table = add_resource(engine, ResourceCategory.RESTAURANT, "T1", 0, 4)
    booking = ledger.create_booking(GUEST, DateSlot(days_ahead(2), TimeSlot.DINNER), 2, resource_id=table)
    barrier = threading.Barrier(4)

    def deliver():
        barrier.wait()
        ledger.mark_paid(booking.id, "pay_same", booking.total_minor)

    threads = [threading.Thread(target=deliver) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert ledger.get(booking.id, GUEST).paid_minor == booking.total_minor
