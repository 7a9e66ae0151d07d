"""
Booking ledger: creation, payment capture, cancellation and operational moves.

Every public method runs in its own short transaction and returns a detached,
fully loaded ``Booking``. External calls never happen while a transaction is
open here; callers make them first and hand the result in.
"""
import secrets
import time
from datetime import date
from typing import Callable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from hotelcore.audit.store import record_event
from hotelcore.booking.availability import blocking_bookings, find_free
from hotelcore.booking.extent import TemporalExtent, require_kind
from hotelcore.booking.lifecycle import OPERATIONAL_TARGETS, RELEASING_STATUSES, assert_transition
from hotelcore.booking.models import (
    REFUND_OPEN, Booking, BookingStatus, BookingType, OccupancyClaim, PaymentCapture, PaymentStatus, RefundStatus,
)
from hotelcore.booking.policy import PricingPolicy, check_request, quote
from hotelcore.catalog.models import ResourceCategory, ResourceInstance, ResourceStatus
from hotelcore.database import utcnow
from hotelcore.errors import BookingError, InvalidRequest, InvalidTransition, NotFound, ResourceUnavailable
from hotelcore.notifications.outbox import NotificationKind, enqueue
from hotelcore.permissions.actor import SYSTEM, Actor, require_admin, require_owner_or_admin

BOOKING_NUMBER_PREFIX = {
    ResourceCategory.ROOM: "ROOM",
    ResourceCategory.BANQUET: "BANQ",
    ResourceCategory.RESTAURANT: "REST",
}


def generate_booking_number(category: ResourceCategory) -> str:
    return f"{BOOKING_NUMBER_PREFIX[category]}-{int(time.time() * 1000)}-{secrets.randbelow(10000):04d}"


def payable_now(booking: Booking) -> int:
    """What the next order should collect: the rest of the amount due now, then the balance."""
    if booking.paid_minor < booking.due_now_minor:
        return booking.due_now_minor - booking.paid_minor
    return booking.total_minor - booking.paid_minor


def release_claims(session: Session, booking: Booking) -> None:
    claims = session.exec(select(OccupancyClaim).where(OccupancyClaim.booking_id == booking.id))
    for claim in list(claims):
        session.delete(claim)


def load_booking(session: Session, booking_id: int, for_update: bool = False) -> Booking:
    stmt = select(Booking).where(Booking.id == booking_id)
    if for_update:
        stmt = stmt.with_for_update()
    booking = session.exec(stmt).first()
    if booking is None:
        raise NotFound(f"booking {booking_id} not found")
    return booking


class BookingLedger:
    def __init__(self, engine: Engine, policy: PricingPolicy, currency: str = "INR",
                 today: Callable[[], date] = date.today):
        self.engine = engine
        self.policy = policy
        self.currency = currency
        self.today = today

    # ----- Queries -----
    def get(self, booking_id: int, actor: Actor) -> Booking:
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id)
            require_owner_or_admin(actor, booking.guest_id)
            return booking

    def list_for_guest(self, guest_id: str) -> List[Booking]:
        with Session(self.engine) as session:
            stmt = select(Booking).where(Booking.guest_id == guest_id).order_by(Booking.created_at.desc())
            return list(session.exec(stmt))

    def list_all(self, actor: Actor, status: Optional[BookingStatus] = None) -> List[Booking]:
        require_admin(actor)
        with Session(self.engine) as session:
            stmt = select(Booking)
            if status is not None:
                stmt = stmt.where(Booking.status == status)
            return list(session.exec(stmt.order_by(Booking.created_at.desc())))

    def find_by_order(self, order_id: str) -> Optional[Booking]:
        with Session(self.engine) as session:
            return session.exec(select(Booking).where(Booking.order_id == order_id)).first()

    def has_capture(self, booking_id: int, payment_id: Optional[str]) -> bool:
        with Session(self.engine) as session:
            stmt = select(PaymentCapture).where(PaymentCapture.payment_id == payment_id,
                                                PaymentCapture.booking_id == booking_id,
                                                PaymentCapture.credited == True)  # noqa: E712
            return session.exec(stmt).first() is not None

    # ----- Creation -----
    def create_booking(self, actor: Actor, extent: TemporalExtent, guest_count: int,
                       booking_type: BookingType = BookingType.FULL,
                       resource_id: Optional[int] = None,
                       category: Optional[ResourceCategory] = None,
                       group: Optional[str] = None,
                       special_request: str = "",
                       guest_phone: Optional[str] = None) -> Booking:
        extent.validate()
        if guest_count < 1:
            raise InvalidRequest("guest count must be at least 1")
        if extent.span()[0] < self.today():
            raise InvalidRequest("booking dates cannot be in the past")

        with Session(self.engine) as session:
            if resource_id is not None:
                candidates = [self._requested_resource(session, resource_id, extent, guest_count)]
                category = candidates[0].category
            else:
                if category is None:
                    raise InvalidRequest("either a resource id or a resource category is required")
                require_kind(category, extent)
                candidates = find_free(session, category, extent, guest_count, group)
                if not candidates:
                    self._raise_no_capacity_or_unavailable(session, category, guest_count, group)

            for resource in candidates:
                booking = self._try_insert(session, actor, resource, extent, guest_count,
                                           booking_type, special_request, guest_phone)
                if booking is not None:
                    return booking
        raise ResourceUnavailable(f"no {category.value} is free for the requested dates; try other dates")

    def _requested_resource(self, session: Session, resource_id: int, extent: TemporalExtent,
                            guest_count: int) -> ResourceInstance:
        resource = session.get(ResourceInstance, resource_id)
        if resource is None:
            raise NotFound(f"resource {resource_id} not found")
        require_kind(resource.category, extent)
        checks = check_request(resource, guest_count)
        if not checks["ok"]:
            raise InvalidRequest("; ".join(checks["reasons"]), details={"reasons": checks["reasons"]})
        if not resource.bookable:
            raise ResourceUnavailable(f"{resource.label} is not available for booking")
        if blocking_bookings(session, extent, [resource.id]):
            raise ResourceUnavailable(f"{resource.label} is already booked for the selected dates")
        return resource

    def _raise_no_capacity_or_unavailable(self, session: Session, category: ResourceCategory,
                                          guest_count: int, group: Optional[str]) -> None:
        stmt = select(func.max(ResourceInstance.capacity)).where(
            ResourceInstance.category == category, ResourceInstance.is_active == True)  # noqa: E712
        if group:
            stmt = stmt.where(ResourceInstance.group == group)
        largest = session.exec(stmt).one()
        if largest is not None and guest_count > largest:
            raise InvalidRequest(f"no {category.value} can accommodate {guest_count} guests (max {largest})")
        raise ResourceUnavailable(f"no {category.value} is free for the requested dates; try other dates")

    def _unused_booking_number(self, session: Session, category: ResourceCategory) -> str:
        for _ in range(5):
            number = generate_booking_number(category)
            if session.exec(select(Booking.id).where(Booking.booking_number == number)).first() is None:
                return number
        raise RuntimeError(f"could not allocate a free {category.value} booking number")

    def _try_insert(self, session: Session, actor: Actor, resource: ResourceInstance,
                    extent: TemporalExtent, guest_count: int, booking_type: BookingType,
                    special_request: str, guest_phone: Optional[str]) -> Optional[Booking]:
        price = quote(resource, extent, guest_count, self.policy)
        total = price.total_minor
        due_now = self.policy.deposit(total) if booking_type == BookingType.PARTIAL else total
        start, end = extent.span()
        booking = Booking(
            booking_number=self._unused_booking_number(session, resource.category),
            category=resource.category,
            resource_id=resource.id,
            guest_id=actor.user_id,
            guest_phone=guest_phone,
            start_date=start,
            end_date=end,
            time_slot=getattr(extent, "slot", None),
            guest_count=guest_count,
            special_request=special_request or "",
            booking_type=booking_type,
            total_minor=total,
            due_now_minor=due_now,
        )
        label = resource.label
        session.add(booking)
        session.flush()
        # Only the claim rows can collide with a concurrent booking of the same slot
        try:
            for key in extent.claim_keys():
                session.add(OccupancyClaim(resource_id=resource.id, slot_key=key, booking_id=booking.id))
            session.flush()
        except IntegrityError:
            session.rollback()
            logger.bind(event="booking_conflict").warning(
                f"Lost the race for {label} ({start}..{end}); trying next candidate")
            return None
        record_event(session, actor=actor.user_id, action="CREATED", booking_id=booking.id,
                     booking_number=booking.booking_number, amount_minor=total, currency=self.currency,
                     details={"resource_id": resource.id, "booking_type": booking_type.value})
        session.commit()
        session.refresh(booking)
        logger.bind(event="booking_created").info(
            f"Booking created: {booking.booking_number} on {label}, total={total}, type={booking_type.value}")
        return booking

    # ----- Payment -----
    def prepare_order(self, booking_id: int, actor: Actor,
                      amount_minor: Optional[int] = None) -> Tuple[Booking, int]:
        """Validate an order request without changing anything. Returns (booking, amount)."""
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id)
            require_owner_or_admin(actor, booking.guest_id)
            if not booking.is_active or booking.payment_status == PaymentStatus.REFUNDED:
                raise InvalidTransition(f"booking {booking.booking_number} can no longer take payments")
            if booking.refund_status in REFUND_OPEN or booking.refund_status == RefundStatus.APPROVED:
                raise InvalidTransition(f"booking {booking.booking_number} has a refund in progress")
            amount = payable_now(booking) if amount_minor is None else amount_minor
            if amount <= 0:
                raise InvalidRequest("nothing is due on this booking")
            if booking.paid_minor + amount > booking.total_minor:
                raise InvalidRequest("order amount exceeds the outstanding balance")
            return booking, amount

    def attach_order(self, booking_id: int, order_id: str, amount_minor: int, actor: Actor) -> Booking:
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id, for_update=True)
            booking.order_id = order_id
            booking.order_amount_minor = amount_minor
            booking.updated_at = utcnow()
            session.add(booking)
            record_event(session, actor=actor.user_id, action="ORDERED", booking_id=booking.id,
                         booking_number=booking.booking_number, amount_minor=amount_minor,
                         currency=self.currency, details={"order_id": order_id})
            session.commit()
            session.refresh(booking)
            return booking

    def mark_paid(self, booking_id: int, payment_id: str, amount_minor: int,
                  order_id: Optional[str] = None, signature: Optional[str] = None,
                  actor: Actor = SYSTEM) -> Booking:
        """
        Credit a verified payment. Only call after the payment verifier accepted it.

        Idempotent by payment id: a payment already applied to this booking is a
        no-op, one applied to another booking is rejected. A payment the booking
        cannot take any more is still recorded, as an uncredited capture waiting
        to be refunded, before the refusal is raised.
        """
        with Session(self.engine) as session:
            seen = session.exec(select(PaymentCapture).where(PaymentCapture.payment_id == payment_id)).first()
            if seen is not None:
                if seen.booking_id != booking_id:
                    raise InvalidRequest("payment already applied to another booking")
                if not seen.credited:
                    raise InvalidTransition(f"payment {payment_id} was not applied and is being refunded")
                logger.bind(event="payment_duplicate").info(f"Payment {payment_id} already applied; ignoring")
                return load_booking(session, booking_id)

            booking = load_booking(session, booking_id, for_update=True)
            if amount_minor <= 0:
                raise InvalidRequest("captured amount must be positive")
            refusal = self._refuse_payment(booking, amount_minor)
            if refusal is not None:
                self._hold_capture(session, booking, payment_id, amount_minor, order_id, actor, refusal)
                raise refusal

            session.add(PaymentCapture(payment_id=payment_id, booking_id=booking.id,
                                       order_id=order_id, amount_minor=amount_minor))
            booking.paid_minor += amount_minor
            booking.payment_id = payment_id
            booking.payment_signature = signature
            if order_id:
                booking.order_id = order_id
            if booking.paid_minor >= booking.due_now_minor:
                booking.payment_status = PaymentStatus.COMPLETED
            elif booking.payment_status == PaymentStatus.FAILED:
                booking.payment_status = PaymentStatus.PENDING
            if booking.status == BookingStatus.PENDING:
                assert_transition(booking.category, booking.status, BookingStatus.CONFIRMED)
                booking.status = BookingStatus.CONFIRMED
                enqueue(session, booking, NotificationKind.BOOKING_CONFIRMED)
            booking.updated_at = utcnow()
            session.add(booking)
            record_event(session, actor=actor.user_id, action="PAID", booking_id=booking.id,
                         booking_number=booking.booking_number, amount_minor=amount_minor,
                         currency=self.currency, details={"payment_id": payment_id, "order_id": order_id})
            try:
                session.commit()
            except IntegrityError:
                # A concurrent delivery of the same payment id won
                session.rollback()
                logger.bind(event="payment_duplicate").info(f"Payment {payment_id} applied concurrently")
                return load_booking(session, booking_id)
            session.refresh(booking)
            logger.bind(event="payment_applied").info(
                f"Booking payment updated: {booking.booking_number}, amount={amount_minor}, "
                f"paid={booking.paid_minor}/{booking.total_minor}, status={booking.status.value}")
            return booking

    @staticmethod
    def _refuse_payment(booking: Booking, amount_minor: int) -> Optional[BookingError]:
        if booking.status == BookingStatus.CANCELLED or booking.payment_status == PaymentStatus.REFUNDED:
            return InvalidTransition(f"booking {booking.booking_number} can no longer take payments")
        if booking.refund_status in REFUND_OPEN:
            return InvalidTransition(f"booking {booking.booking_number} has a refund in progress")
        if booking.paid_minor + amount_minor > booking.total_minor:
            return InvalidRequest("payment would exceed the total price")
        return None

    def _hold_capture(self, session: Session, booking: Booking, payment_id: str, amount_minor: int,
                      order_id: Optional[str], actor: Actor, refusal: BookingError) -> None:
        session.add(PaymentCapture(payment_id=payment_id, booking_id=booking.id, order_id=order_id,
                                   amount_minor=amount_minor, credited=False))
        record_event(session, actor=actor.user_id, action="PAYMENT_HELD", status="error",
                     booking_id=booking.id, booking_number=booking.booking_number,
                     amount_minor=amount_minor, currency=self.currency, reasons=[refusal.message],
                     details={"payment_id": payment_id, "order_id": order_id})
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            return
        logger.bind(event="payment_held").warning(
            f"Payment {payment_id} not applied to {booking.booking_number} ({refusal.message}); held for refund")

    def record_payment_failure(self, booking_id: int, payment_id: Optional[str], reason: str,
                               actor: Actor = SYSTEM) -> Booking:
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id, for_update=True)
            if booking.payment_status == PaymentStatus.PENDING:
                booking.payment_status = PaymentStatus.FAILED
                booking.updated_at = utcnow()
                session.add(booking)
            record_event(session, actor=actor.user_id, action="PAYMENT_FAILED", status="error",
                         booking_id=booking.id, booking_number=booking.booking_number,
                         reasons=[reason], details={"payment_id": payment_id})
            session.commit()
            session.refresh(booking)
            logger.bind(event="payment_failed").warning(
                f"Payment {payment_id} rejected for {booking.booking_number}: {reason}")
            return booking

    # ----- Lifecycle -----
    def cancel(self, booking_id: int, actor: Actor) -> Booking:
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id, for_update=True)
            require_owner_or_admin(actor, booking.guest_id)
            if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
                raise InvalidTransition(f"booking {booking.booking_number} is {booking.status.value}; cannot cancel")
            if self.today() >= booking.start_date:
                raise InvalidTransition(f"booking {booking.booking_number} has already started; cannot cancel")
            assert_transition(booking.category, booking.status, BookingStatus.CANCELLED)
            booking.status = BookingStatus.CANCELLED
            booking.updated_at = utcnow()
            release_claims(session, booking)
            session.add(booking)
            enqueue(session, booking, NotificationKind.BOOKING_CANCELLED)
            record_event(session, actor=actor.user_id, action="CANCELLED", booking_id=booking.id,
                         booking_number=booking.booking_number)
            session.commit()
            session.refresh(booking)
            logger.bind(event="booking_cancelled").info(f"Booking cancelled: {booking.booking_number}")
            return booking

    def transition_operational(self, booking_id: int, new_status: BookingStatus, actor: Actor) -> Booking:
        require_admin(actor)
        if new_status not in OPERATIONAL_TARGETS:
            raise InvalidTransition(f"{new_status.value} is not an operational status")
        with Session(self.engine) as session:
            booking = load_booking(session, booking_id, for_update=True)
            previous = booking.status
            assert_transition(booking.category, previous, new_status)
            booking.status = new_status
            booking.updated_at = utcnow()
            if new_status in RELEASING_STATUSES:
                release_claims(session, booking)
            if booking.category == ResourceCategory.ROOM:
                resource = session.get(ResourceInstance, booking.resource_id)
                if resource is not None and resource.status != ResourceStatus.MAINTENANCE:
                    resource.status = (ResourceStatus.OCCUPIED if new_status == BookingStatus.CHECKED_IN
                                       else ResourceStatus.AVAILABLE)
                    resource.updated_at = utcnow()
                    session.add(resource)
            session.add(booking)
            record_event(session, actor=actor.user_id, action="STATUS_CHANGED", booking_id=booking.id,
                         booking_number=booking.booking_number,
                         details={"from": previous.value, "to": new_status.value})
            session.commit()
            session.refresh(booking)
            logger.bind(event="booking_status").info(
                f"Booking status updated: {booking.booking_number} {previous.value} -> {new_status.value}")
            return booking
