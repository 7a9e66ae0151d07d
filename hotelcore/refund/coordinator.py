"""
Refund coordinator: guest refund requests and admin decisions.

Approval first moves the booking from ``requested`` to ``processing`` in its
own transaction, so a second approval of the same request fails before it
reaches the provider. Each captured payment is then claimed and refunded on
its own; a capture keeps its provider refund id as soon as that refund
succeeds, so a retry after a partial provider failure never refunds the same
payment twice. The booking itself only changes once every capture is refunded.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from hotelcore.audit.store import record_event
from hotelcore.booking.ledger import load_booking, release_claims
from hotelcore.booking.models import (
    REFUND_OPEN, Booking, BookingStatus, PaymentCapture, PaymentStatus, RefundStatus,
)
from hotelcore.database import utcnow
from hotelcore.errors import NotEligible, PaymentProviderError
from hotelcore.notifications.outbox import NotificationKind, enqueue
from hotelcore.payment.processor import PaymentProcessor
from hotelcore.permissions.actor import SYSTEM, Actor, require_admin, require_owner, require_owner_or_admin

# (capture id, provider payment id, amount in minor units)
CaptureRef = Tuple[int, str, int]


class RefundDecision(str, Enum):
    APPROVE = "approve"
    DENY = "deny"


class RefundCoordinator:
    def __init__(self, engine: Engine, processor: PaymentProcessor, currency: str = "INR",
                 clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self.processor = processor
        self.currency = currency
        self.clock = clock

    def request_refund(self, booking_id: int, actor: Actor, reason: Optional[str] = None) -> Booking:
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id, for_update=True)
            require_owner(actor, booking.guest_id)
            if booking.payment_status != PaymentStatus.COMPLETED:
                raise NotEligible("Can only refund completed payments")
            if booking.refund_status in REFUND_OPEN or booking.refund_status == RefundStatus.APPROVED:
                raise NotEligible("Refund already requested for this booking")
            booking.refund_status = RefundStatus.REQUESTED
            booking.refund_reason = reason or "No reason provided"
            booking.refund_amount_minor = booking.paid_minor
            booking.refund_requested_at = self.clock()
            booking.refund_decided_at = None
            booking.refund_decided_by = None
            booking.refund_note = None
            booking.updated_at = self.clock()
            session.add(booking)
            record_event(session, actor=actor.user_id, action="REFUND_REQUESTED", booking_id=booking.id,
                         booking_number=booking.booking_number, amount_minor=booking.paid_minor,
                         currency=self.currency, reasons=[booking.refund_reason])
            session.commit()
            session.refresh(booking)
            logger.bind(event="refund_requested").info(f"Refund requested for booking: {booking.booking_number}")
            return booking

    async def decide_refund(self, booking_id: int, actor: Actor, decision: RefundDecision,
                            note: Optional[str] = None) -> Booking:
        require_admin(actor)
        if decision == RefundDecision.DENY:
            return self._deny(booking_id, actor, note)

        booking_number, outstanding = self._start_processing(booking_id, actor)
        # No transaction is open while the provider is called
        try:
            for capture in outstanding:
                await self._refund_capture(capture, booking_number, "refund approved", actor)
        except PaymentProviderError as e:
            self._reopen(booking_id, actor, e.message)
            raise
        return self._approve(booking_id, actor, note)

    async def refund_held_captures(self, booking_id: int) -> List[str]:
        """
        Hand back payments the booking refused (see ``BookingLedger.mark_paid``).
        Safe to call repeatedly; returns the provider refund ids issued by this call.
        """
        with Session(self.engine) as session:
            booking_number = load_booking(session, booking_id).booking_number
            stmt = select(PaymentCapture).where(PaymentCapture.booking_id == booking_id,
                                                PaymentCapture.credited == False,  # noqa: E712
                                                PaymentCapture.refund_id == None,  # noqa: E711
                                                PaymentCapture.refund_claimed_at == None)  # noqa: E711
            held = [(c.id, c.payment_id, c.amount_minor) for c in session.exec(stmt.order_by(PaymentCapture.id))]

        refund_ids = []
        for capture in held:
            refund_id = await self._refund_capture(capture, booking_number, "payment not applied", SYSTEM)
            if refund_id is not None:
                refund_ids.append(refund_id)
        return refund_ids

    def refund_status(self, booking_id: int, actor: Actor) -> Dict[str, Any]:
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id)
            require_owner_or_admin(actor, booking.guest_id)
            return {
                "bookingId": booking.id,
                "refundStatus": booking.refund_status.value,
                "refundAmountMinor": booking.refund_amount_minor,
                "refundReason": booking.refund_reason,
                "refundRequestedAt": booking.refund_requested_at,
                "refundDecidedAt": booking.refund_decided_at,
                "refundNote": booking.refund_note,
                "refundId": booking.refund_id,
            }

    @staticmethod
    def _require_pending_request(booking: Booking) -> None:
        if booking.refund_status != RefundStatus.REQUESTED:
            raise NotEligible("Refund must be in requested status")
        if booking.payment_status != PaymentStatus.COMPLETED:
            raise NotEligible("Can only refund completed payments")

    def _start_processing(self, booking_id: int, actor: Actor) -> Tuple[str, List[CaptureRef]]:
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id, for_update=True)
            self._require_pending_request(booking)
            booking.refund_status = RefundStatus.PROCESSING
            booking.updated_at = self.clock()
            session.add(booking)
            stmt = select(PaymentCapture).where(PaymentCapture.booking_id == booking.id,
                                                PaymentCapture.credited == True,  # noqa: E712
                                                PaymentCapture.refund_id == None)  # noqa: E711
            outstanding = [(c.id, c.payment_id, c.amount_minor) for c in session.exec(stmt.order_by(PaymentCapture.id))]
            booking_number = booking.booking_number
            session.commit()
        logger.bind(event="refund_processing").info(
            f"Refund processing for booking: {booking_number} by {actor.user_id}, captures={len(outstanding)}")
        return booking_number, outstanding

    def _reopen(self, booking_id: int, actor: Actor, reason: str) -> None:
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id, for_update=True)
            if booking.refund_status == RefundStatus.PROCESSING:
                booking.refund_status = RefundStatus.REQUESTED
                booking.updated_at = self.clock()
                session.add(booking)
            record_event(session, actor=actor.user_id, action="REFUND_FAILED", status="error",
                         booking_id=booking.id, booking_number=booking.booking_number, reasons=[reason])
            session.commit()
        logger.bind(event="refund_failed").warning(f"Refund for booking {booking_id} reopened: {reason}")

    async def _refund_capture(self, capture: CaptureRef, booking_number: str, reason: str,
                              actor: Actor) -> Optional[str]:
        capture_id, payment_id, amount_minor = capture
        if not self._claim_capture(capture_id):
            logger.bind(event="refund_skipped").info(f"Payment {payment_id} already being refunded")
            return None
        try:
            res = await self.processor.refund(payment_id, amount_minor,
                                              notes={"bookingNumber": booking_number, "reason": reason})
        except PaymentProviderError:
            self._release_capture(capture_id)
            raise
        self._mark_capture_refunded(capture_id, res["refundId"], actor)
        return res["refundId"]

    def _claim_capture(self, capture_id: int) -> bool:
        with Session(self.engine) as session:
            stmt = select(PaymentCapture).where(PaymentCapture.id == capture_id).with_for_update()
            capture = session.exec(stmt).one()
            if capture.refund_id is not None or capture.refund_claimed_at is not None:
                return False
            capture.refund_claimed_at = self.clock()
            session.add(capture)
            session.commit()
            return True

    def _release_capture(self, capture_id: int) -> None:
        with Session(self.engine) as session:
            capture = session.get(PaymentCapture, capture_id)
            if capture.refund_id is None:
                capture.refund_claimed_at = None
                session.add(capture)
                session.commit()

    def _mark_capture_refunded(self, capture_id: int, refund_id: str, actor: Actor) -> None:
        with Session(self.engine) as session:
            capture = session.get(PaymentCapture, capture_id)
            capture.refund_id = refund_id
            capture.refunded_at = self.clock()
            session.add(capture)
            record_event(session, actor=actor.user_id, action="CAPTURE_REFUNDED", booking_id=capture.booking_id,
                         amount_minor=capture.amount_minor, currency=self.currency,
                         details={"payment_id": capture.payment_id, "refund_id": refund_id,
                                  "credited": capture.credited})
            session.commit()

    def _approve(self, booking_id: int, actor: Actor, note: Optional[str]) -> Booking:
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id, for_update=True)
            if booking.refund_status != RefundStatus.PROCESSING:
                raise NotEligible("Refund is not being processed")
            stmt = select(PaymentCapture).where(PaymentCapture.booking_id == booking.id,
                                                PaymentCapture.credited == True)  # noqa: E712
            refunded = [c for c in session.exec(stmt.order_by(PaymentCapture.id)) if c.refund_id is not None]
            refunded_minor = sum(c.amount_minor for c in refunded)
            refund_ids = [c.refund_id for c in refunded]
            booking.refund_status = RefundStatus.APPROVED
            booking.payment_status = PaymentStatus.REFUNDED
            booking.refund_amount_minor = refunded_minor
            booking.refund_id = refund_ids[-1] if refund_ids else booking.refund_id
            booking.refund_decided_at = self.clock()
            booking.refund_decided_by = actor.user_id
            booking.refund_note = note
            if booking.status in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
                booking.status = BookingStatus.CANCELLED
                release_claims(session, booking)
            booking.updated_at = self.clock()
            session.add(booking)
            enqueue(session, booking, NotificationKind.REFUND_APPROVED, {"refund_minor": refunded_minor})
            record_event(session, actor=actor.user_id, action="REFUND_APPROVED", booking_id=booking.id,
                         booking_number=booking.booking_number, amount_minor=refunded_minor,
                         currency=self.currency, details={"refund_ids": refund_ids})
            session.commit()
            session.refresh(booking)
            logger.bind(event="refund_approved").info(
                f"Refund approved for booking: {booking.booking_number}, refunded={refunded_minor}")
            return booking

    def _deny(self, booking_id: int, actor: Actor, note: Optional[str]) -> Booking:
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id, for_update=True)
            self._require_pending_request(booking)
            booking.refund_status = RefundStatus.DENIED
            booking.refund_decided_at = self.clock()
            booking.refund_decided_by = actor.user_id
            booking.refund_note = note or "Refund request denied by admin"
            booking.updated_at = self.clock()
            session.add(booking)
            enqueue(session, booking, NotificationKind.REFUND_DENIED, {"note": booking.refund_note})
            record_event(session, actor=actor.user_id, action="REFUND_DENIED", booking_id=booking.id,
                         booking_number=booking.booking_number, reasons=[booking.refund_note])
            session.commit()
            session.refresh(booking)
            logger.bind(event="refund_denied").info(f"Refund rejected for booking: {booking.booking_number}")
            return booking
