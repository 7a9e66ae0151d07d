import threading

import pytest
import requests
from sqlmodel import Session, select

from conftest import GUEST, OTHER_GUEST, FakeSmsClient, add_resource, days_ahead
from hotelcore.booking.extent import DateRange
from hotelcore.booking.models import BookingStatus
from hotelcore.catalog.models import ResourceCategory
from hotelcore.config import Settings
from hotelcore.notifications.dispatcher import (
    LoggingSmsClient, NotificationDispatcher, SmsError, TwilioSmsClient, build_sms_client, drain_outbox,
    format_phone_number, render_message,
)
from hotelcore.notifications.outbox import NotificationEvent, NotificationKind


def _confirmed_booking(engine, ledger, phone="9876543210"):
    room = add_resource(engine, ResourceCategory.ROOM, "101", 150000, 2)
    booking = ledger.create_booking(GUEST, DateRange(days_ahead(3), days_ahead(5)), 2, resource_id=room,
                                    guest_phone=phone)
    return ledger.mark_paid(booking.id, "pay_1", booking.total_minor)


def _statuses(engine):
    with Session(engine) as session:
        return [(e.kind, e.status, e.attempts) for e in session.exec(select(NotificationEvent))]


def test_format_phone_number():
    assert format_phone_number("98765 43210") == "+919876543210"
    assert format_phone_number("+91-98765-43210") == "+919876543210"
    assert format_phone_number("+1 415 555 0100") == "+14155550100"


def test_render_confirmation_mentions_booking_and_amount():
    text = render_message(NotificationKind.BOOKING_CONFIRMED,
                          {"booking_number": "ROOM-1-0001", "category": "room",
                           "start_date": "2030-05-10", "paid_minor": 366000})
    assert "ROOM-1-0001" in text
    assert "3,660.00" in text


def test_drain_sends_pending_once(engine, ledger):
    _confirmed_booking(engine, ledger)
    sms = FakeSmsClient()
    dispatcher = NotificationDispatcher(engine, sms)
    assert dispatcher.drain() == 1
    assert dispatcher.drain() == 0
    assert sms.sent[0][0] == "9876543210"
    assert _statuses(engine) == [(NotificationKind.BOOKING_CONFIRMED, "sent", 1)]


def test_sms_failure_is_counted_not_raised(engine, ledger):
    booking = _confirmed_booking(engine, ledger)
    sms = FakeSmsClient()
    sms.fail = True
    dispatcher = NotificationDispatcher(engine, sms, max_attempts=2)
    assert dispatcher.drain() == 0
    assert _statuses(engine) == [(NotificationKind.BOOKING_CONFIRMED, "pending", 1)]
    dispatcher.drain()
    assert _statuses(engine) == [(NotificationKind.BOOKING_CONFIRMED, "failed", 2)]
    assert ledger.get(booking.id, GUEST).paid_minor == booking.total_minor


def test_booking_writes_do_not_wait_for_sms_delivery(engine, ledger):
    _confirmed_booking(engine, ledger)
    other_room = add_resource(engine, ResourceCategory.ROOM, "202", 150000, 2)
    sending = threading.Event()
    release = threading.Event()

    class SlowSms(FakeSmsClient):
        released = False

        def send(self, to, body):
            sending.set()
            self.released = release.wait(timeout=10)
            return super().send(to, body)

    sms = SlowSms()
    dispatcher = NotificationDispatcher(engine, sms)
    worker = threading.Thread(target=dispatcher.drain)
    worker.start()
    assert sending.wait(timeout=10)

    # The store is free while the provider call is in flight
    booking = ledger.create_booking(OTHER_GUEST, DateRange(days_ahead(3), days_ahead(5)), 1, resource_id=other_room)
    assert booking.status == BookingStatus.PENDING
    assert _statuses(engine) == [(NotificationKind.BOOKING_CONFIRMED, "sending", 0)]
    assert dispatcher.drain() == 0

    release.set()
    worker.join(timeout=30)
    assert sms.released
    assert len(sms.sent) == 1
    assert _statuses(engine) == [(NotificationKind.BOOKING_CONFIRMED, "sent", 1)]


def test_events_without_recipient_are_skipped(engine, ledger):
    _confirmed_booking(engine, ledger, phone=None)
    sms = FakeSmsClient()
    NotificationDispatcher(engine, sms).drain()
    assert sms.sent == []
    assert _statuses(engine) == [(NotificationKind.BOOKING_CONFIRMED, "skipped", 0)]


def test_drain_outbox_swallows_dispatcher_errors():
    class Broken:
        def drain(self):
            raise RuntimeError("database gone")

    drain_outbox(Broken())
    drain_outbox(None)


def test_twilio_client_posts_form(monkeypatch):
    captured = {}

    class FakeResponse:
        status_code = 201

        def json(self):
            return {"sid": "SM123", "status": "queued"}

    def fake_post(url, data=None, auth=None, timeout=None):
        captured.update(url=url, data=data, auth=auth)
        return FakeResponse()

    monkeypatch.setattr(requests, "post", fake_post)
    client = TwilioSmsClient("AC1", "token", "+15550001111")
    assert client.send("9876543210", "hi") == {"sid": "SM123", "status": "queued"}
    assert captured["url"].endswith("/Accounts/AC1/Messages.json")
    assert captured["data"] == {"From": "+15550001111", "To": "+919876543210", "Body": "hi"}
    assert captured["auth"] == ("AC1", "token")


def test_twilio_client_raises_sms_error(monkeypatch):
    def fake_post(*args, **kwargs):
        raise requests.ConnectionError("no route")

    monkeypatch.setattr(requests, "post", fake_post)
    with pytest.raises(SmsError):
        TwilioSmsClient("AC1", "token", "+15550001111").send("9876543210", "hi")


def test_build_sms_client_falls_back_to_logging():
    assert isinstance(build_sms_client(Settings()), LoggingSmsClient)
    configured = Settings(twilio_account_sid="AC1", twilio_auth_token="t", twilio_from_number="+1555")
    assert isinstance(build_sms_client(configured), TwilioSmsClient)
