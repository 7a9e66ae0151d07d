import json
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from hotelcore.booking.ledger import BookingLedger
from hotelcore.booking.models import Booking
from hotelcore.booking.policy import Amount, to_minor
from hotelcore.errors import BookingError, InvalidRequest, PaymentProviderError, VerificationFailed
from hotelcore.payment.processor import PaymentProcessor
from hotelcore.payment.verifier import PaymentVerifier
from hotelcore.permissions.actor import SYSTEM, Actor
from hotelcore.refund.coordinator import RefundCoordinator


class PaymentService:
    """
    Order -> out-of-band payment -> verification -> ledger capture.

    A verified payment the booking refuses is recorded by the ledger as a held
    capture and refunded here straight away, so captured money never stays
    with the provider unaccounted for.
    """

    def __init__(self, ledger: BookingLedger, processor: PaymentProcessor, verifier: PaymentVerifier,
                 refunds: Optional[RefundCoordinator] = None):
        self.ledger = ledger
        self.processor = processor
        self.verifier = verifier
        self.refunds = refunds

    async def create_order(self, booking_id: int, actor: Actor,
                           amount: Optional[Amount] = None) -> Dict[str, Any]:
        booking, amount_minor = self.ledger.prepare_order(
            booking_id, actor, None if amount is None else to_minor(amount))
        # Provider first; the booking only changes once the order exists
        order = await self.processor.create_order(amount_minor, booking.id, booking.booking_number)
        self.ledger.attach_order(booking.id, order["orderId"], amount_minor, actor)
        return order

    async def confirm_payment(self, booking_id: int, actor: Actor, order_id: Optional[str],
                              payment_id: Optional[str], signature: Optional[str],
                              amount: Optional[Amount] = None) -> Booking:
        booking = self.ledger.get(booking_id, actor)
        result = self.verifier.verify(order_id, payment_id, signature)
        if not result:
            self.ledger.record_payment_failure(booking.id, payment_id, result.reason or "invalid signature", actor)
            raise VerificationFailed("Payment verification failed. Transaction not accepted.",
                                     details={"reason": result.reason})

        if order_id != booking.order_id:
            if self.ledger.has_capture(booking.id, payment_id):
                return booking
            self.ledger.record_payment_failure(booking.id, payment_id, "order does not belong to booking", actor)
            raise VerificationFailed("Payment order does not match this booking.")
        if amount is not None and to_minor(amount) != booking.order_amount_minor:
            self.ledger.record_payment_failure(booking.id, payment_id, "amount does not match order", actor)
            raise VerificationFailed("Payment amount mismatch. Transaction not accepted.")

        try:
            return self.ledger.mark_paid(booking.id, payment_id, booking.order_amount_minor,
                                         order_id=order_id, signature=signature, actor=actor)
        except BookingError:
            await self.return_held_payments(booking.id)
            raise

    async def return_held_payments(self, booking_id: int) -> List[str]:
        """Refund captures the booking refused. A provider failure is logged; the next call retries."""
        if self.refunds is None:
            return []
        try:
            refund_ids = await self.refunds.refund_held_captures(booking_id)
        except PaymentProviderError as e:
            logger.bind(event="payment_return_failed").error(
                f"Could not refund held payment for booking {booking_id}: {e.message}")
            return []
        if refund_ids:
            logger.bind(event="payment_returned").info(
                f"Refunded held payments for booking {booking_id}: {refund_ids}")
        return refund_ids

    async def handle_webhook(self, body: Union[bytes, str], signature: Optional[str]) -> Dict[str, Any]:
        result = self.verifier.verify_webhook(body, signature)
        if not result:
            raise VerificationFailed("Invalid webhook signature", details={"reason": result.reason})
        try:
            parsed = json.loads(body)
        except ValueError:
            raise InvalidRequest("webhook body is not JSON")
        if not isinstance(parsed, dict):
            raise InvalidRequest("webhook body must be a JSON object")

        event = parsed.get("event")
        entity = ((parsed.get("payload") or {}).get("payment") or {}).get("entity") or {}
        order_id = entity.get("order_id")
        payment_id = entity.get("id")
        log = logger.bind(event="payment_webhook", webhook_event=event, payment_id=payment_id)

        if event not in ("payment.captured", "payment.failed"):
            log.info("Webhook event ignored")
            return {"status": "ignored", "event": event}
        if not payment_id:
            log.warning("Webhook payment entity has no id")
            return {"status": "ignored", "event": event}
        booking = self.ledger.find_by_order(order_id) if order_id else None
        if booking is None:
            log.warning(f"No booking for order {order_id}")
            return {"status": "ignored", "event": event}

        try:
            if event == "payment.captured":
                amount_minor = int(entity.get("amount") or booking.order_amount_minor or 0)
                booking = self.ledger.mark_paid(booking.id, payment_id, amount_minor,
                                                order_id=order_id, actor=SYSTEM)
            else:
                booking = self.ledger.record_payment_failure(
                    booking.id, payment_id, entity.get("error_description") or "provider reported failure")
        except BookingError as e:
            # Acknowledge anyway: the provider retrying the same event will not help
            log.warning(f"Webhook not applied to {booking.booking_number}: {e.message}")
            refund_ids = await self.return_held_payments(booking.id)
            return {"status": "rejected", "event": event, "reason": e.code, "refundIds": refund_ids}
        return {"status": "processed", "event": event, "bookingId": booking.id}
