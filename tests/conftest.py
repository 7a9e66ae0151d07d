from datetime import date, timedelta
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from app import create_app
from hotelcore.booking.ledger import BookingLedger
from hotelcore.booking.policy import PricingPolicy
from hotelcore.catalog.models import ResourceCategory, ResourceInstance, ResourceStatus
from hotelcore.config import Settings
from hotelcore.database import get_engine, init_db
from hotelcore.notifications.dispatcher import SmsError
from hotelcore.payment.gateway_mock import MockGatewayClient
from hotelcore.permissions.actor import Actor, Role

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"

GUEST = Actor(user_id="guest-1")
OTHER_GUEST = Actor(user_id="guest-2")
ADMIN = Actor(user_id="admin-1", role=Role.ADMIN)

GUEST_HEADERS = {"X-User-Id": "guest-1"}
OTHER_HEADERS = {"X-User-Id": "guest-2"}
ADMIN_HEADERS = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


def days_ahead(n: int) -> date:
    return date.today() + timedelta(days=n)


class FakeSmsClient:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to: str, body: str):
        if self.fail:
            raise SmsError("provider down")
        self.sent.append((to, body))
        return {"sid": f"SM{len(self.sent):04d}", "status": "queued"}


def add_resource(engine, category: ResourceCategory, label: str, price_minor: int, capacity: int,
                 group: Optional[str] = None, status: ResourceStatus = ResourceStatus.AVAILABLE,
                 is_active: bool = True) -> int:
    with Session(engine) as session:
        resource = ResourceInstance(category=category, label=label, group=group, price_minor=price_minor,
                                    capacity=capacity, status=status, is_active=is_active)
        session.add(resource)
        session.commit()
        session.refresh(resource)
        return resource.id


@pytest.fixture(name="engine")
def engine_fixture(tmp_path):
    engine = get_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="ledger")
def ledger_fixture(engine):
    return BookingLedger(engine, PricingPolicy())


@pytest.fixture(name="gateway")
def gateway_fixture():
    return MockGatewayClient(KEY_SECRET)


@pytest.fixture(name="sms")
def sms_fixture():
    return FakeSmsClient()


@pytest.fixture(name="settings")
def settings_fixture(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'api.db'}",
        log_level="WARNING",
        log_json=False,
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture(name="api")
def api_fixture(settings, gateway, sms):
    return create_app(settings, gateway_client=gateway, sms_client=sms)


@pytest.fixture(name="client")
def client_fixture(api):
    with TestClient(api) as client:
        yield client
    api.state.engine.dispose()
