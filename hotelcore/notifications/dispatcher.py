"""
Drains the notification outbox to the SMS provider.

Dispatch is fire-and-forget from the booking core's point of view: failures are
logged and counted on the outbox row, never raised into a booking operation.
"""
import re
from typing import Any, Dict, List, Optional

import requests
from loguru import logger
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from hotelcore.booking.policy import from_minor
from hotelcore.database import utcnow
from hotelcore.notifications.outbox import NotificationEvent, NotificationKind

TWILIO_MESSAGES_API = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

HOTEL_NAME = "Maharaja Palace"


class SmsError(Exception):
    pass


def format_phone_number(phone: str) -> str:
    """Normalise to E.164, assuming India (+91) for bare 10 digit numbers."""
    cleaned = re.sub(r"\D", "", phone)
    if cleaned.startswith("91") and len(cleaned) == 12:
        return f"+{cleaned}"
    if len(cleaned) == 10:
        return f"+91{cleaned}"
    return f"+{cleaned}"


class TwilioSmsClient:
    def __init__(self, account_sid: str, auth_token: str, from_number: str, timeout: int = 10):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout

    def send(self, to: str, body: str) -> Dict[str, Any]:
        try:
            resp = requests.post(
                TWILIO_MESSAGES_API.format(sid=self.account_sid),
                data={"From": self.from_number, "To": format_phone_number(to), "Body": body},
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise SmsError(f"Network error while sending SMS: {e}")
        if resp.status_code >= 400:
            raise SmsError(f"SMS provider returned HTTP {resp.status_code}")
        data = resp.json()
        return {"sid": data.get("sid"), "status": data.get("status")}


class LoggingSmsClient:
    """Used when no SMS provider is configured: messages only go to the log."""

    def send(self, to: str, body: str) -> Dict[str, Any]:
        logger.bind(event="sms_disabled").warning(f"SMS provider not configured; not sending to {to}")
        return {"sid": None, "status": "logged"}


def render_message(kind: NotificationKind, data: Dict[str, Any]) -> str:
    number = data.get("booking_number")
    if kind == NotificationKind.BOOKING_CONFIRMED:
        when = data.get("start_date")
        if data.get("time_slot"):
            when = f"{when} ({data['time_slot']})"
        return (f"{HOTEL_NAME}\nBooking Confirmed!\n\nBooking #: {number}\nType: {data.get('category')}\n"
                f"Date: {when}\nAmount Paid: Rs {from_minor(data.get('paid_minor', 0)):,.2f}\n\n"
                f"Thank you for choosing {HOTEL_NAME}!")
    if kind == NotificationKind.BOOKING_CANCELLED:
        return (f"{HOTEL_NAME}\nBooking Cancelled\n\nBooking #: {number}\nType: {data.get('category')}\n\n"
                f"Your booking has been cancelled. If you have any questions, please contact us.")
    if kind == NotificationKind.REFUND_APPROVED:
        return (f"{HOTEL_NAME}\nRefund Approved!\n\nBooking #: {number}\n"
                f"Refund Amount: Rs {from_minor(data.get('refund_minor', 0)):,.2f}\n"
                f"Processing: 5-7 business days")
    return (f"{HOTEL_NAME}\nRefund Request Update\n\nBooking #: {number}\n"
            f"Your refund request was not approved. {data.get('note') or ''}").rstrip()


class NotificationDispatcher:
    """
    Rows are claimed (``sending``) in one short transaction, sent with no
    transaction open, and each outcome is written in its own transaction.
    Booking writes never wait on the SMS provider.
    """

    def __init__(self, engine: Engine, sms_client: Any, max_attempts: int = 3):
        self.engine = engine
        self.sms = sms_client
        self.max_attempts = max_attempts

    def drain(self, limit: int = 50) -> int:
        """Send pending outbox rows. Returns how many were delivered."""
        sent = 0
        for evt in self._claim(limit):
            if self._deliver(evt):
                sent += 1
        return sent

    def _claim(self, limit: int) -> List[NotificationEvent]:
        with Session(self.engine) as session:
            stmt = (select(NotificationEvent)
                    .where(NotificationEvent.status == "pending")
                    .order_by(NotificationEvent.id)
                    .limit(limit))
            events = list(session.exec(stmt))
            claimed = []
            for evt in events:
                if evt.recipient:
                    evt.status = "sending"
                    claimed.append(evt)
                else:
                    evt.status = "skipped"
                session.add(evt)
            session.commit()
            for evt in claimed:
                session.refresh(evt)
            return claimed

    def _deliver(self, evt: NotificationEvent) -> bool:
        attempts = evt.attempts + 1
        try:
            res = self.sms.send(evt.recipient, render_message(evt.kind, evt.data()))
        except Exception as e:
            status = "failed" if attempts >= self.max_attempts else "pending"
            self._record(evt.id, status=status, attempts=attempts, last_error=str(e))
            logger.bind(event="notification_failed").error(
                f"Notification {evt.id} ({evt.kind.value}) attempt {attempts} failed: {e}")
            return False
        self._record(evt.id, status="sent", attempts=attempts, sent_at=utcnow())
        logger.bind(event="notification_sent").info(
            f"Notification {evt.id} ({evt.kind.value}) sent, sid={res.get('sid')}")
        return True

    def _record(self, event_id: int, **changes: Any) -> None:
        with Session(self.engine) as session:
            row = session.get(NotificationEvent, event_id)
            for key, value in changes.items():
                setattr(row, key, value)
            session.add(row)
            session.commit()


def build_sms_client(settings: Any) -> Any:
    if settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number:
        return TwilioSmsClient(settings.twilio_account_sid, settings.twilio_auth_token,
                               settings.twilio_from_number)
    logger.bind(event="sms_disabled").warning("Twilio not configured - SMS notifications disabled")
    return LoggingSmsClient()


def drain_outbox(dispatcher: Optional[NotificationDispatcher]) -> None:
    """Background-task entry point; never raises into the request that scheduled it."""
    if dispatcher is None:
        return
    try:
        dispatcher.drain()
    except Exception as e:
        logger.bind(event="notification_drain_error").exception(f"Outbox drain failed: {e}")
