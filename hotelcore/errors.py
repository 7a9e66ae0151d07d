from typing import Any, Dict, Optional


class BookingError(Exception):
    """Base for every failure the booking core reports to a caller."""

    status_code = 400
    code = "BookingError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidRequest(BookingError):
    code = "InvalidRequest"


class ResourceUnavailable(BookingError):
    status_code = 409
    code = "ResourceUnavailable"


class PaymentProviderError(BookingError):
    """Transport or provider failure. Retryable; no booking state was changed."""

    status_code = 502
    code = "PaymentProviderError"


class VerificationFailed(BookingError):
    code = "VerificationFailed"


class NotEligible(BookingError):
    code = "NotEligible"


class InvalidTransition(BookingError):
    status_code = 409
    code = "InvalidTransition"


class NotFound(BookingError):
    status_code = 404
    code = "NotFound"


class PermissionDenied(BookingError):
    status_code = 403
    code = "PermissionDenied"


class NotAuthenticated(PermissionDenied):
    status_code = 401
    code = "NotAuthenticated"
