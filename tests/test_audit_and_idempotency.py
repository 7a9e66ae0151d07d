from sqlmodel import Session, select

from conftest import ADMIN_HEADERS, GUEST_HEADERS, OTHER_HEADERS, days_ahead
from hotelcore.audit.store import AuditEvent
from hotelcore.booking.models import PaymentCapture


def _setup_booking(client, headers=GUEST_HEADERS, slot="dinner"):
    client.post("/api/resources", headers=ADMIN_HEADERS, json={
        "category": "restaurant", "label": f"T-{headers['X-User-Id']}-{slot}", "price": 0, "capacity": 4,
    })
    resp = client.post("/api/bookings", headers=headers, json={
        "category": "restaurant", "bookingDate": days_ahead(1).isoformat(), "timeSlot": slot, "guestCount": 2,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_audit_log_is_created_on_booking(client, api):
    """Verify that an audit event is written with the booking it describes."""
    booking = _setup_booking(client)

    with Session(api.state.engine) as session:
        event = session.exec(select(AuditEvent).where(AuditEvent.booking_id == booking["id"])).first()
    assert event is not None
    assert event.actor == "guest-1"
    assert event.action == "CREATED"
    assert event.status == "ok"
    assert event.amount_minor == 100000
    assert event.booking_number == booking["bookingNumber"]


def test_idempotent_capture_prevents_duplicates(client, api, gateway):
    """Replaying the same verified payment credits it once and logs one PAID event."""
    booking = _setup_booking(client)
    order = client.post("/api/payments/order", headers=GUEST_HEADERS, json={"bookingId": booking["id"]}).json()
    payment_id, signature = gateway.simulate_payment(order["orderId"])
    payload = {"orderId": order["orderId"], "paymentId": payment_id, "signature": signature, "amount": 1000}

    first = client.put(f"/api/bookings/{booking['id']}/payment", headers=GUEST_HEADERS, json=payload)
    assert first.status_code == 200
    second = client.put(f"/api/bookings/{booking['id']}/payment", headers=GUEST_HEADERS, json=payload)
    assert second.status_code == 200
    assert second.json()["paidAmount"] == first.json()["paidAmount"] == 1000.0

    with Session(api.state.engine) as session:
        paid_events = session.exec(select(AuditEvent).where(
            AuditEvent.booking_id == booking["id"], AuditEvent.action == "PAID")).all()
        captures = session.exec(select(PaymentCapture)).all()
    assert len(paid_events) == 1
    assert len(captures) == 1


def test_failed_verification_is_audited(client, api):
    booking = _setup_booking(client)
    client.post("/api/payments/order", headers=GUEST_HEADERS, json={"bookingId": booking["id"]})
    client.put(f"/api/bookings/{booking['id']}/payment", headers=GUEST_HEADERS,
               json={"orderId": "order_x", "paymentId": "pay_x", "signature": "ab" * 32})

    with Session(api.state.engine) as session:
        failed = session.exec(select(AuditEvent).where(AuditEvent.action == "PAYMENT_FAILED")).all()
    assert len(failed) == 1
    assert failed[0].status == "error"
    assert failed[0].reasons == "invalid signature"


def test_get_audit_events(client):
    """Test the audit event retrieval endpoint."""
    _setup_booking(client, GUEST_HEADERS)
    _setup_booking(client, OTHER_HEADERS, slot="lunch")

    response = client.get("/api/audit/recent?limit=5", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    events = response.json()
    assert len(events) >= 2

    # Test filtering
    response_filtered = client.get("/api/audit/recent?actor=guest-1", headers=ADMIN_HEADERS)
    assert response_filtered.status_code == 200
    events_filtered = response_filtered.json()
    assert len(events_filtered) == 1
    assert events_filtered[0]["actor"] == "guest-1"
    assert events_filtered[0]["action"] == "CREATED"

    assert client.get("/api/audit/recent", headers=GUEST_HEADERS).status_code == 403
