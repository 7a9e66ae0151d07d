import asyncio
from typing import Any, Dict, Optional

import razorpay


class RazorpayGatewayClient:
    """Async facade over the (blocking) Razorpay SDK."""

    def __init__(self, key_id: str, key_secret: str):
        self._client = razorpay.Client(auth=(key_id, key_secret))

    async def create_order(self, amount_minor: int, currency: str, receipt: str,
                           notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data = {"amount": amount_minor, "currency": currency, "receipt": receipt, "notes": notes or {}}
        return await asyncio.to_thread(self._client.order.create, data)

    async def refund(self, payment_id: str, amount_minor: Optional[int] = None,
                     notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {"notes": notes or {}}
        if amount_minor is not None:
            data["amount"] = amount_minor
        return await asyncio.to_thread(self._client.payment.refund, payment_id, data)
