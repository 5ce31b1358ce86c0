"""
Typed errors raised by services and repositories.

Every error carries an :class:`ErrorKind`; the API layer turns the kind into an
HTTP status and a ``{"success": false, "message": ...}`` body. Callers that need
to react to a specific failure catch the subclass instead of inspecting messages.
"""
import enum
from typing import Any, Dict, List, Optional


class ErrorKind(enum.Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    PAYMENT = "payment"


HTTP_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.PAYMENT: 502,
}


class ShopError(Exception):
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]


class NotFoundError(ShopError):
    kind = ErrorKind.NOT_FOUND


class InvalidRequestError(ShopError):
    kind = ErrorKind.VALIDATION


class AuthenticationError(ShopError):
    kind = ErrorKind.UNAUTHORIZED


class PermissionDeniedError(ShopError):
    kind = ErrorKind.FORBIDDEN


class ConflictError(ShopError):
    kind = ErrorKind.CONFLICT


class PaymentError(ShopError):
    kind = ErrorKind.PAYMENT


# --- specific variants ---


class DuplicateEmailError(ConflictError):
    def __init__(self, email: str):
        super().__init__(f"Email already registered: {email}")
        self.email = email


class InsufficientStockError(InvalidRequestError):
    def __init__(self, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_name}: available={available}, requested={requested}"
        )
        self.available = available
        self.requested = requested


class EmptyCartError(InvalidRequestError):
    def __init__(self):
        super().__init__("Cart is empty")


class InvalidTransitionError(InvalidRequestError):
    def __init__(self, current, target):
        super().__init__(f"Cannot change order status from {current.value} to {target.value}")
        self.current = current
        self.target = target


class OrderNotCancellableError(InvalidRequestError):
    pass


class CampaignValidationError(InvalidRequestError):
    def __init__(self, errors: List[str], results: Optional[List[Dict]] = None):
        super().__init__("; ".join(errors) or "Campaign validation failed", {"errors": errors})
        self.errors = errors
        self.results = results or []


class PaymentNotCompletedError(InvalidRequestError):
    pass


class PaymentGatewayError(PaymentError):
    pass


class WebhookSignatureError(InvalidRequestError):
    pass


class WebhookNotConfiguredError(ShopError):
    # a server-side misconfiguration, reported as 500 by the webhook route
    kind = ErrorKind.PAYMENT
