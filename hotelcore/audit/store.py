from typing import Optional, Dict, Any, List
from datetime import datetime
import json

from sqlmodel import SQLModel, Field, Session, select

from hotelcore.database import utcnow


class AuditEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    actor: str = Field(index=True)
    action: str = Field(index=True)  # e.g., CREATED, ORDERED, PAID, PAYMENT_FAILED, CANCELLED, REFUND_REQUESTED, REFUND_APPROVED
    status: str  # e.g., ok, denied, error
    booking_id: Optional[int] = Field(default=None, index=True)
    booking_number: Optional[str] = None
    amount_minor: Optional[int] = None
    currency: Optional[str] = None
    reasons: Optional[str] = None  # pipe-separated reasons for simplicity
    details: Optional[str] = None  # JSON string


def record_event(session: Session, actor: str, action: str, status: str = "ok",
                 booking_id: Optional[int] = None, booking_number: Optional[str] = None,
                 amount_minor: Optional[int] = None, currency: Optional[str] = None,
                 reasons: Optional[List[str]] = None,
                 details: Optional[Dict[str, Any]] = None) -> AuditEvent:
    """
    Add an audit row to the caller's session. It is committed together with
    the state change it describes, or not at all.
    """
    evt = AuditEvent(
        actor=actor,
        action=action,
        status=status,
        booking_id=booking_id,
        booking_number=booking_number,
        amount_minor=amount_minor,
        currency=currency,
        reasons=("|".join(reasons) if reasons else None),
        details=(json.dumps(details, default=str, sort_keys=True) if details else None),
    )
    session.add(evt)
    return evt


def list_events(session: Session, limit: int = 50, actor: Optional[str] = None,
                action: Optional[str] = None, booking_id: Optional[int] = None) -> List[AuditEvent]:
    stmt = select(AuditEvent)
    if actor:
        stmt = stmt.where(AuditEvent.actor == actor)
    if action:
        stmt = stmt.where(AuditEvent.action == action)
    if booking_id is not None:
        stmt = stmt.where(AuditEvent.booking_id == booking_id)
    stmt = stmt.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit)
    return list(session.exec(stmt))
