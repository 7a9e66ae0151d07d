from dataclasses import dataclass
from typing import Optional, Union

from loguru import logger

from hotelcore.security.crypto import sign_hex, verify_hex


@dataclass
class VerificationResult:
    ok: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


class PaymentVerifier:
    """
    Checks that a payment was authorised by the provider.

    The provider signs ``"{order_id}|{payment_id}"`` with HMAC-SHA256 under the
    shared key secret; webhooks sign the raw request body under the webhook
    secret. Both checks return a result and never raise.
    """

    def __init__(self, secret: str, webhook_secret: Optional[str] = None):
        self._secret = secret
        self._webhook_secret = webhook_secret

    def verify(self, order_id: Optional[str], payment_id: Optional[str],
               signature: Optional[str]) -> VerificationResult:
        if not order_id or not payment_id or not signature:
            return VerificationResult(False, "missing order id, payment id or signature")
        if not isinstance(order_id, str) or not isinstance(payment_id, str):
            return VerificationResult(False, "malformed order id or payment id")
        if verify_hex(f"{order_id}|{payment_id}", signature, self._secret):
            logger.bind(event="payment_verified").info(f"Payment verified successfully: {payment_id}")
            return VerificationResult(True)
        logger.bind(event="payment_verify_failed").warning(f"Payment verification failed for {payment_id}")
        return VerificationResult(False, "invalid signature")

    def verify_webhook(self, body: Union[bytes, str], signature: Optional[str]) -> VerificationResult:
        if not self._webhook_secret:
            return VerificationResult(False, "webhook secret not configured")
        if not signature:
            return VerificationResult(False, "missing signature")
        if isinstance(body, bytes):
            try:
                body = body.decode("utf-8")
            except UnicodeDecodeError:
                return VerificationResult(False, "body is not utf-8")
        if verify_hex(body, signature, self._webhook_secret):
            return VerificationResult(True)
        return VerificationResult(False, "invalid signature")

    def sign(self, order_id: str, payment_id: str) -> str:
        """The signature the provider would issue; used by the mock gateway and tests."""
        return sign_hex(f"{order_id}|{payment_id}", self._secret)
