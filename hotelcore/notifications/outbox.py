from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
import json

from sqlmodel import SQLModel, Field, Session

from hotelcore.database import utcnow


class NotificationKind(str, Enum):
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    REFUND_APPROVED = "refund_approved"
    REFUND_DENIED = "refund_denied"


class NotificationEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    booking_id: int = Field(index=True)
    kind: NotificationKind
    recipient: Optional[str] = None  # phone number; events without one are skipped on dispatch
    payload: str = "{}"  # JSON
    status: str = Field(default="pending", index=True)  # pending, sending, sent, failed, skipped
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None

    def data(self) -> Dict[str, Any]:
        return json.loads(self.payload or "{}")


def enqueue(session: Session, booking, kind: NotificationKind,
            extra: Optional[Dict[str, Any]] = None) -> NotificationEvent:
    """Write an outbox row in the caller's transaction, next to the state change."""
    payload: Dict[str, Any] = {
        "booking_number": booking.booking_number,
        "category": booking.category.value,
        "start_date": booking.start_date.isoformat(),
        "guests": booking.guest_count,
        "paid_minor": booking.paid_minor,
    }
    if booking.time_slot is not None:
        payload["time_slot"] = booking.time_slot.value
    if extra:
        payload.update(extra)
    evt = NotificationEvent(
        booking_id=booking.id,
        kind=kind,
        recipient=booking.guest_phone,
        payload=json.dumps(payload, default=str, sort_keys=True),
    )
    session.add(evt)
    return evt
