import re

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

# Lowercase hex only: bytes.fromhex would also accept upper case and whitespace,
# letting a changed signature string decode to the same digest.
_HEX_SHA256 = re.compile(r"[0-9a-f]{64}")


def _hmac(secret: str) -> hmac.HMAC:
    return hmac.HMAC(secret.encode("utf-8"), hashes.SHA256())


def sign_hex(message: str, secret: str) -> str:
    """HMAC-SHA256 of ``message`` keyed by ``secret``, hex encoded (the Razorpay format)."""
    h = _hmac(secret)
    h.update(message.encode("utf-8"))
    return h.finalize().hex()


def verify_hex(message: str, signature: str, secret: str) -> bool:
    """
    Constant-time check of a hex HMAC-SHA256 signature.
    Malformed input (not lowercase hex, wrong length, not a string) is simply a mismatch.
    """
    if not isinstance(signature, str) or not _HEX_SHA256.fullmatch(signature):
        return False
    h = _hmac(secret)
    h.update(message.encode("utf-8"))
    try:
        h.verify(bytes.fromhex(signature))
    except InvalidSignature:
        return False
    return True
