from typing import Optional, Dict, Any

from loguru import logger

from hotelcore.errors import PaymentProviderError


class PaymentProcessor:
    """
    Payment order gateway: creates provider orders and refunds.
    Integrate with a gateway client (Razorpay, or the mock in development).

    Provider and transport exceptions stop here and surface as
    PaymentProviderError; nothing else from the provider leaks out.
    """

    def __init__(self, gateway_client: Any, currency: str = "INR", key_id: Optional[str] = None):
        self.gateway = gateway_client
        self.currency = currency
        self.key_id = key_id

    async def create_order(self, amount_minor: int, booking_id: int,
                           booking_number: Optional[str] = None) -> Dict[str, Any]:
        log = logger.bind(event="payment_order", booking_id=booking_id)
        log.info(f"Creating payment order for {amount_minor} {self.currency}")
        notes = {"bookingId": str(booking_id)}
        if booking_number:
            notes["bookingNumber"] = booking_number
        try:
            order = await self.gateway.create_order(amount_minor, self.currency, f"receipt_{booking_id}", notes)
        except Exception as e:
            log.error(f"Create payment order error: {e}")
            raise PaymentProviderError("Failed to create payment order; please retry") from e
        if not isinstance(order, dict) or not order.get("id"):
            log.error(f"Provider returned an order without an id: {order!r}")
            raise PaymentProviderError("Failed to create payment order; please retry")
        log.info(f"Payment order created: {order['id']}")
        return {
            "orderId": order["id"],
            "amount": order.get("amount", amount_minor),
            "currency": order.get("currency", self.currency),
            "keyId": self.key_id,
        }

    async def refund(self, payment_id: str, amount_minor: Optional[int] = None,
                     notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        log = logger.bind(event="payment_refund", payment_id=payment_id)
        log.info("Refunding payment")
        try:
            refund = await self.gateway.refund(payment_id, amount_minor, notes)
        except Exception as e:
            log.error(f"Refund processing error: {e}")
            raise PaymentProviderError("Failed to process refund; please retry") from e
        if not isinstance(refund, dict) or not refund.get("id"):
            log.error(f"Provider returned a refund without an id: {refund!r}")
            raise PaymentProviderError("Failed to process refund; please retry")
        log.info(f"Refund processed: {refund['id']}")
        return {"refundId": refund["id"], "status": refund.get("status"), "amount": refund.get("amount")}
