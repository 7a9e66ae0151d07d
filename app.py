from datetime import date
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlmodel import Session

from hotelcore.audit.logger import configure_logging
from hotelcore.audit.store import list_events
from hotelcore.booking.availability import find_free
from hotelcore.booking.extent import build_extent
from hotelcore.booking.ledger import BookingLedger, payable_now
from hotelcore.booking.models import Booking, BookingStatus, BookingType
from hotelcore.booking.policy import PricingPolicy, from_minor, quote, to_minor
from hotelcore.catalog.models import ResourceCategory, ResourceInstance, ResourceStatus
from hotelcore.catalog.seed import seed_catalog
from hotelcore.catalog.service import create_resource, list_resources, update_resource
from hotelcore.config import Settings, load_settings
from hotelcore.database import as_utc, get_engine, init_db
from hotelcore.errors import BookingError, NotAuthenticated, PermissionDenied
from hotelcore.notifications.dispatcher import NotificationDispatcher, build_sms_client, drain_outbox
from hotelcore.payment.gateway_mock import MockGatewayClient
from hotelcore.payment.processor import PaymentProcessor
from hotelcore.payment.service import PaymentService
from hotelcore.payment.verifier import PaymentVerifier
from hotelcore.permissions.actor import Actor, Role, require_admin
from hotelcore.refund.coordinator import RefundCoordinator, RefundDecision


class ApiModel(BaseModel):
    # Bodies arrive camelCased from the web client; snake_case is accepted too
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookingCreate(ApiModel):
    resource_id: Optional[int] = None
    category: Optional[ResourceCategory] = None
    group: Optional[str] = None
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    event_date: Optional[date] = None
    booking_date: Optional[date] = None
    time_slot: Optional[str] = None
    guest_count: int = 1
    booking_type: BookingType = BookingType.FULL
    special_request: str = ""
    phone: Optional[str] = None


class StatusUpdate(ApiModel):
    status: BookingStatus


class OrderRequest(ApiModel):
    booking_id: int
    amount: Optional[float] = None


class PaymentConfirmation(ApiModel):
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    amount: Optional[float] = None


class RefundRequest(ApiModel):
    reason: Optional[str] = None


class RefundDecisionRequest(ApiModel):
    action: RefundDecision
    note: Optional[str] = None


class ResourceCreate(ApiModel):
    category: ResourceCategory
    label: str
    price: float
    capacity: int
    group: Optional[str] = None
    status: ResourceStatus = ResourceStatus.AVAILABLE


class ResourceUpdate(ApiModel):
    label: Optional[str] = None
    group: Optional[str] = None
    price: Optional[float] = None
    capacity: Optional[int] = None
    status: Optional[ResourceStatus] = None
    is_active: Optional[bool] = None


def booking_view(b: Booking) -> Dict[str, Any]:
    return {
        "id": b.id,
        "bookingNumber": b.booking_number,
        "category": b.category.value,
        "resourceId": b.resource_id,
        "guestId": b.guest_id,
        "startDate": b.start_date.isoformat(),
        "endDate": b.end_date.isoformat(),
        "timeSlot": b.time_slot.value if b.time_slot else None,
        "guestCount": b.guest_count,
        "specialRequest": b.special_request,
        "bookingType": b.booking_type.value,
        "totalPrice": from_minor(b.total_minor),
        "amountDueNow": from_minor(b.due_now_minor),
        "paidAmount": from_minor(b.paid_minor),
        "balanceDue": from_minor(b.total_minor - b.paid_minor),
        "payableNow": from_minor(max(payable_now(b), 0)),
        "status": b.status.value,
        "paymentStatus": b.payment_status.value,
        "refundStatus": b.refund_status.value,
        "orderId": b.order_id,
        "paymentId": b.payment_id,
        "createdAt": as_utc(b.created_at).isoformat(),
        "updatedAt": as_utc(b.updated_at).isoformat(),
    }


def resource_view(r: ResourceInstance) -> Dict[str, Any]:
    return {
        "id": r.id,
        "category": r.category.value,
        "label": r.label,
        "group": r.group,
        "price": from_minor(r.price_minor),
        "capacity": r.capacity,
        "status": r.status.value,
        "isActive": r.is_active,
    }


def current_actor(x_user_id: Optional[str] = Header(default=None),
                  x_user_role: Optional[str] = Header(default=None)) -> Actor:
    if not x_user_id:
        raise NotAuthenticated("authentication required")
    try:
        role = Role((x_user_role or Role.GUEST.value).lower())
    except ValueError:
        raise PermissionDenied(f"unknown role {x_user_role!r}")
    return Actor(user_id=x_user_id, role=role)


def build_gateway(settings: Settings) -> Any:
    if settings.razorpay_key_id and settings.razorpay_key_secret:
        from hotelcore.payment.razorpay_client import RazorpayGatewayClient
        return RazorpayGatewayClient(settings.razorpay_key_id, settings.razorpay_key_secret)
    if settings.is_production:
        raise RuntimeError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET are required in production")
    logger.bind(event="payment_mock").warning("Razorpay not configured - using the local mock gateway")
    return MockGatewayClient(settings.signing_secret)


def create_app(settings: Optional[Settings] = None, gateway_client: Any = None,
               sms_client: Any = None) -> FastAPI:
    settings = settings or load_settings()
    gateway = gateway_client if gateway_client is not None else build_gateway(settings)
    engine = get_engine(settings.database_url)

    policy = PricingPolicy.from_settings(settings)
    ledger = BookingLedger(engine, policy, currency=settings.payment_currency)
    processor = PaymentProcessor(gateway, currency=settings.payment_currency, key_id=settings.razorpay_key_id)
    verifier = PaymentVerifier(settings.signing_secret, settings.razorpay_webhook_secret)
    refunds = RefundCoordinator(engine, processor, currency=settings.payment_currency)
    payments = PaymentService(ledger, processor, verifier, refunds)
    dispatcher = NotificationDispatcher(engine, sms_client if sms_client is not None else build_sms_client(settings))

    app = FastAPI(
        title="Hotel Booking API",
        description="Rooms, banquet halls and restaurant tables: booking, payment and refunds.",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.gateway = gateway
    app.state.ledger = ledger
    app.state.payments = payments
    app.state.refunds = refunds
    app.state.dispatcher = dispatcher

    @app.on_event("startup")
    def _startup():
        configure_logging(settings.log_level, serialize=settings.log_json)
        init_db(engine)
        if settings.seed_catalog:
            seed_catalog(engine)
        logger.bind(event="startup").info(f"Hotel booking API ready ({settings.app_env})")

    @app.exception_handler(BookingError)
    async def _booking_error(request: Request, exc: BookingError):
        log = logger.bind(event="request_error", error=exc.code, path=request.url.path)
        if exc.status_code >= 500:
            log.error(exc.message)
        else:
            log.info(exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.get("/api/health", tags=["Health"])
    async def health():
        return {"status": "ok", "env": settings.app_env,
                "gateway": "mock" if isinstance(gateway, MockGatewayClient) else "razorpay"}

    # ----- Catalog -----
    @app.get("/api/resources", tags=["Catalog"])
    async def get_resources(category: Optional[ResourceCategory] = None, include_inactive: bool = False):
        with Session(engine) as session:
            return [resource_view(r) for r in list_resources(session, category, include_inactive)]

    @app.post("/api/resources", status_code=201, tags=["Catalog"])
    async def post_resource(payload: ResourceCreate, actor: Actor = Depends(current_actor)):
        require_admin(actor)
        with Session(engine) as session:
            resource = create_resource(session, payload.category, payload.label, to_minor(payload.price),
                                       payload.capacity, group=payload.group, status=payload.status)
            return resource_view(resource)

    @app.patch("/api/resources/{resource_id}", tags=["Catalog"])
    async def patch_resource(resource_id: int, payload: ResourceUpdate, actor: Actor = Depends(current_actor)):
        require_admin(actor)
        changes = payload.model_dump(exclude_unset=True)
        if "price" in changes:
            changes["price_minor"] = to_minor(changes.pop("price"))
        with Session(engine) as session:
            return resource_view(update_resource(session, resource_id, changes))

    @app.get("/api/availability", tags=["Catalog"])
    async def availability(category: ResourceCategory, guests: int = 1, group: Optional[str] = None,
                           check_in: Optional[date] = None, check_out: Optional[date] = None,
                           event_date: Optional[date] = None, booking_date: Optional[date] = None,
                           time_slot: Optional[str] = None):
        extent = build_extent(check_in, check_out, event_date, booking_date, time_slot)
        with Session(engine) as session:
            free = find_free(session, category, extent, guests, group)
            out = []
            for r in free:
                view = resource_view(r)
                view["totalPrice"] = from_minor(quote(r, extent, guests, policy).total_minor)
                out.append(view)
        return {"category": category.value, "available": len(out), "resources": out}

    # ----- Bookings -----
    @app.post("/api/bookings", status_code=201, tags=["Booking"])
    async def create_booking(payload: BookingCreate, actor: Actor = Depends(current_actor)):
        extent = build_extent(payload.check_in, payload.check_out, payload.event_date,
                              payload.booking_date, payload.time_slot)
        booking = ledger.create_booking(
            actor, extent, payload.guest_count,
            booking_type=payload.booking_type,
            resource_id=payload.resource_id,
            category=payload.category,
            group=payload.group,
            special_request=payload.special_request,
            guest_phone=payload.phone,
        )
        return booking_view(booking)

    @app.get("/api/bookings/mine", tags=["Booking"])
    async def my_bookings(actor: Actor = Depends(current_actor)):
        return [booking_view(b) for b in ledger.list_for_guest(actor.user_id)]

    @app.get("/api/bookings", tags=["Booking"])
    async def all_bookings(status: Optional[BookingStatus] = None, actor: Actor = Depends(current_actor)):
        return [booking_view(b) for b in ledger.list_all(actor, status)]

    @app.get("/api/bookings/{booking_id}", tags=["Booking"])
    async def get_booking(booking_id: int, actor: Actor = Depends(current_actor)):
        return booking_view(ledger.get(booking_id, actor))

    @app.post("/api/bookings/{booking_id}/cancel", tags=["Booking"])
    async def cancel_booking(booking_id: int, background_tasks: BackgroundTasks,
                             actor: Actor = Depends(current_actor)):
        booking = ledger.cancel(booking_id, actor)
        background_tasks.add_task(drain_outbox, dispatcher)
        return booking_view(booking)

    @app.put("/api/bookings/{booking_id}/status", tags=["Booking"])
    async def update_status(booking_id: int, payload: StatusUpdate, background_tasks: BackgroundTasks,
                            actor: Actor = Depends(current_actor)):
        require_admin(actor)
        if payload.status == BookingStatus.CANCELLED:
            booking = ledger.cancel(booking_id, actor)
            background_tasks.add_task(drain_outbox, dispatcher)
        else:
            booking = ledger.transition_operational(booking_id, payload.status, actor)
        return booking_view(booking)

    # ----- Payments -----
    @app.post("/api/payments/order", tags=["Payments"])
    async def create_order(payload: OrderRequest, actor: Actor = Depends(current_actor)):
        return await payments.create_order(payload.booking_id, actor, payload.amount)

    @app.put("/api/bookings/{booking_id}/payment", tags=["Payments"])
    async def confirm_payment(booking_id: int, payload: PaymentConfirmation, background_tasks: BackgroundTasks,
                              actor: Actor = Depends(current_actor)):
        booking = await payments.confirm_payment(booking_id, actor, payload.order_id, payload.payment_id,
                                           payload.signature, payload.amount)
        background_tasks.add_task(drain_outbox, dispatcher)
        return booking_view(booking)

    @app.post("/api/payments/webhook", tags=["Payments"])
    async def payment_webhook(request: Request, background_tasks: BackgroundTasks,
                              x_razorpay_signature: Optional[str] = Header(default=None)):
        body = await request.body()
        result = await payments.handle_webhook(body, x_razorpay_signature)
        if result["status"] == "processed":
            background_tasks.add_task(drain_outbox, dispatcher)
        return result

    # ----- Refunds -----
    @app.post("/api/bookings/{booking_id}/refund/request", tags=["Refunds"])
    async def request_refund(booking_id: int, payload: RefundRequest, actor: Actor = Depends(current_actor)):
        return booking_view(refunds.request_refund(booking_id, actor, payload.reason))

    @app.put("/api/bookings/{booking_id}/refund/status", tags=["Refunds"])
    async def decide_refund(booking_id: int, payload: RefundDecisionRequest, background_tasks: BackgroundTasks,
                            actor: Actor = Depends(current_actor)):
        booking = await refunds.decide_refund(booking_id, actor, payload.action, payload.note)
        background_tasks.add_task(drain_outbox, dispatcher)
        return booking_view(booking)

    @app.get("/api/bookings/{booking_id}/refund", tags=["Refunds"])
    async def refund_status(booking_id: int, actor: Actor = Depends(current_actor)):
        status = refunds.refund_status(booking_id, actor)
        amount = status.pop("refundAmountMinor")
        status["refundAmount"] = None if amount is None else from_minor(amount)
        for key in ("refundRequestedAt", "refundDecidedAt"):
            if status[key] is not None:
                status[key] = as_utc(status[key]).isoformat()
        return status

    # ----- Audit -----
    @app.get("/api/audit/recent", tags=["Audit"])
    async def recent_audit(limit: int = 50, actor_id: Optional[str] = Query(default=None, alias="actor"),
                           action: Optional[str] = None, booking_id: Optional[int] = None,
                           caller: Actor = Depends(current_actor)):
        require_admin(caller)
        with Session(engine) as session:
            events = list_events(session, limit=limit, actor=actor_id, action=action, booking_id=booking_id)
            return [{
                "id": e.id,
                "created_at": as_utc(e.created_at).isoformat(),
                "actor": e.actor,
                "action": e.action,
                "status": e.status,
                "booking_id": e.booking_id,
                "booking_number": e.booking_number,
                "amount_minor": e.amount_minor,
                "currency": e.currency,
                "reasons": e.reasons,
            } for e in events]

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
