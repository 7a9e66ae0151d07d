import asyncio

import pytest

from conftest import KEY_SECRET
from hotelcore.errors import PaymentProviderError
from hotelcore.payment.gateway_mock import MockGatewayClient
from hotelcore.payment.processor import PaymentProcessor
from hotelcore.payment.verifier import PaymentVerifier


def test_create_order_shapes_provider_response(gateway):
    processor = PaymentProcessor(gateway, key_id="rzp_test_1")
    order = asyncio.run(processor.create_order(366000, 7, "ROOM-1-0001"))
    assert order["orderId"].startswith("order_")
    assert order["amount"] == 366000
    assert order["currency"] == "INR"
    assert order["keyId"] == "rzp_test_1"
    sent = gateway.orders[order["orderId"]]
    assert sent["receipt"] == "receipt_7"
    assert sent["notes"] == {"bookingId": "7", "bookingNumber": "ROOM-1-0001"}


def test_provider_errors_become_payment_provider_error(gateway):
    processor = PaymentProcessor(gateway)
    gateway.fail_next = TimeoutError("read timed out")
    with pytest.raises(PaymentProviderError):
        asyncio.run(processor.create_order(1000, 1))
    gateway.fail_next = ValueError("BadRequestError")
    with pytest.raises(PaymentProviderError):
        asyncio.run(processor.refund("pay_1", 1000))


def test_malformed_provider_replies_are_rejected():
    class Empty:
        async def create_order(self, *args, **kwargs):
            return {"amount": 1}

        async def refund(self, *args, **kwargs):
            return None

    processor = PaymentProcessor(Empty())
    with pytest.raises(PaymentProviderError):
        asyncio.run(processor.create_order(1000, 1))
    with pytest.raises(PaymentProviderError):
        asyncio.run(processor.refund("pay_1"))


def test_refund_returns_id_and_status(gateway):
    res = asyncio.run(PaymentProcessor(gateway).refund("pay_1", 500, {"reason": "test"}))
    assert res["refundId"].startswith("rfnd_")
    assert res["status"] == "processed"
    assert res["amount"] == 500


def test_mock_payments_verify_with_the_same_secret():
    gateway = MockGatewayClient(KEY_SECRET)
    payment_id, signature = gateway.simulate_payment("order_x")
    assert PaymentVerifier(KEY_SECRET).verify("order_x", payment_id, signature)
    assert not PaymentVerifier("another").verify("order_x", payment_id, signature)
