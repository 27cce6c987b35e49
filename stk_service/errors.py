"""Error taxonomy for the payment flow.

Every error carries the HTTP status it maps to and any extra fields the JSON
error body should include (the receipt that was persisted, the reference
involved, ...). ``InvalidTransition`` is internal to reconciliation and never
reaches a caller.
"""
from typing import Any, Dict, Optional


class PaymentError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.message}
        body.update(self.extra)
        return body


class InvalidInput(PaymentError):
    status_code = 400


class InvalidPhoneFormat(InvalidInput):
    def __init__(self, message: str = "Invalid phone format", **extra: Any):
        super().__init__(message, **extra)


class InvalidAmount(InvalidInput):
    def __init__(self, message: str = "Amount must be >= 1", **extra: Any):
        super().__init__(message, **extra)


class ConfigurationError(PaymentError):
    status_code = 500


class GatewayRejected(PaymentError):
    status_code = 400

    def __init__(self, message: str, receipt: Optional[Any] = None, **extra: Any):
        if receipt is not None:
            extra["receipt"] = receipt.to_dict()
        super().__init__(message, **extra)
        self.receipt = receipt


class TransportFailure(PaymentError):
    status_code = 500

    def __init__(self, message: str, receipt: Optional[Any] = None, **extra: Any):
        if receipt is not None:
            extra["receipt"] = receipt.to_dict()
        super().__init__(message, **extra)
        self.receipt = receipt


class NotFound(PaymentError):
    status_code = 404


class NotRetryable(PaymentError):
    status_code = 400


class InvalidTransition(Exception):
    """Raised when a receipt is asked to move to a status it cannot reach."""

    def __init__(self, current, target):
        super().__init__(f"cannot move receipt from {current} to {target}")
        self.current = current
        self.target = target
