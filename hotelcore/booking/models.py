from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from hotelcore.booking.extent import DateRange, DateSlot, EventDate, TemporalExtent, TimeSlot
from hotelcore.catalog.models import ResourceCategory
from hotelcore.database import utcnow


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"
    COMPLETED = "completed"
    NO_SHOW = "no-show"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    NONE = "none"
    REQUESTED = "requested"
    PROCESSING = "processing"  # approved, provider refunds under way
    APPROVED = "approved"
    DENIED = "denied"


class BookingType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


# Statuses that hold the resource for the booked extent
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN)

# A refund is open: no new orders or payments are credited meanwhile
REFUND_OPEN = (RefundStatus.REQUESTED, RefundStatus.PROCESSING)


class Booking(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    booking_number: str = Field(index=True, unique=True)
    category: ResourceCategory = Field(index=True)
    resource_id: int = Field(foreign_key="resourceinstance.id", index=True)
    guest_id: str = Field(index=True)
    guest_phone: Optional[str] = None

    # Half-open day span [start_date, end_date); time_slot only for restaurant tables
    start_date: date = Field(index=True)
    end_date: date = Field(index=True)
    time_slot: Optional[TimeSlot] = None

    guest_count: int
    special_request: str = ""
    booking_type: BookingType = BookingType.FULL

    total_minor: int
    due_now_minor: int  # full total, or the deposit for partial bookings
    paid_minor: int = 0
    status: BookingStatus = Field(default=BookingStatus.PENDING, index=True)
    payment_status: PaymentStatus = PaymentStatus.PENDING
    refund_status: RefundStatus = RefundStatus.NONE

    order_id: Optional[str] = Field(default=None, index=True)
    order_amount_minor: Optional[int] = None
    payment_id: Optional[str] = None
    payment_signature: Optional[str] = None

    refund_reason: Optional[str] = None
    refund_amount_minor: Optional[int] = None
    refund_requested_at: Optional[datetime] = None
    refund_decided_at: Optional[datetime] = None
    refund_decided_by: Optional[str] = None
    refund_note: Optional[str] = None
    refund_id: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def extent(self) -> TemporalExtent:
        if self.category == ResourceCategory.ROOM:
            return DateRange(self.start_date, self.end_date)
        if self.category == ResourceCategory.BANQUET:
            return EventDate(self.start_date)
        return DateSlot(self.start_date, TimeSlot(self.time_slot))

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class OccupancyClaim(SQLModel, table=True):
    """
    One row per (resource, night | event date | date#slot) held by an active booking.
    The unique constraint is what makes availability check + insert atomic.
    """
    __table_args__ = (UniqueConstraint("resource_id", "slot_key", name="uq_claim_resource_slot"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resourceinstance.id", index=True)
    slot_key: str
    booking_id: int = Field(foreign_key="booking.id", index=True)


class PaymentCapture(SQLModel, table=True):
    """
    A verified payment seen for a booking. payment_id is the idempotency key of mark_paid.

    Captures the booking could not accept (cancelled, refunded, refund open or
    overpaid) are kept with ``credited=False`` and handed back to the guest.
    ``refund_claimed_at`` marks a provider refund in flight for the capture.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    payment_id: str = Field(unique=True, index=True)
    booking_id: int = Field(foreign_key="booking.id", index=True)
    order_id: Optional[str] = None
    amount_minor: int
    captured_at: datetime = Field(default_factory=utcnow)
    credited: bool = True
    refund_claimed_at: Optional[datetime] = None
    refund_id: Optional[str] = None
    refunded_at: Optional[datetime] = None
