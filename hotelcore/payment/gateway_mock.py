import asyncio
from itertools import count
from typing import Any, Dict, List, Optional, Tuple

from hotelcore.security.crypto import sign_hex


class MockGatewayClient:
    """
    In-process stand-in for the payment provider, used in development and tests.

    Orders and refunds are recorded on the instance. ``fail_next`` makes the next
    call raise, to exercise provider-failure paths.
    """

    def __init__(self, secret: str, latency: float = 0.0):
        self._secret = secret
        self._latency = latency
        self._ids = count(1)
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.refunds: List[Dict[str, Any]] = []
        self.fail_next: Optional[Exception] = None

    async def _tick(self) -> None:
        if self._latency:
            await asyncio.sleep(self._latency)
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc

    async def create_order(self, amount_minor: int, currency: str, receipt: str,
                           notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        await self._tick()
        order = {
            "id": f"order_mock{next(self._ids):06d}",
            "entity": "order",
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
            "status": "created",
        }
        self.orders[order["id"]] = order
        return order

    async def refund(self, payment_id: str, amount_minor: Optional[int] = None,
                     notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        await self._tick()
        refund = {
            "id": f"rfnd_mock{next(self._ids):06d}",
            "entity": "refund",
            "payment_id": payment_id,
            "amount": amount_minor,
            "notes": notes or {},
            "status": "processed",
        }
        self.refunds.append(refund)
        return refund

    def simulate_payment(self, order_id: str) -> Tuple[str, str]:
        """Pretend the guest paid ``order_id`` at checkout. Returns (payment_id, signature)."""
        payment_id = f"pay_mock{next(self._ids):06d}"
        return payment_id, sign_hex(f"{order_id}|{payment_id}", self._secret)
