"""
x402 error taxonomy.

Server-side errors carry the HTTP status the middleware and facilitator map
them to. Client-side failures derive from PaymentError.
"""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError


class X402Error(Exception):
    """Base class for x402 protocol errors."""

    status_code: int = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(X402Error):
    """Malformed or missing payload/requirement fields. Always client-caused."""

    status_code = 400

    def __init__(self, message: str, details: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.details = details or []

    @classmethod
    def from_pydantic(cls, message: str, exc: PydanticValidationError, prefix: str = "") -> "ValidationError":
        details = []
        for issue in exc.errors():
            path = ".".join(str(part) for part in issue.get("loc", ()))
            if prefix:
                path = f"{prefix}.{path}" if path else prefix
            details.append({"path": path, "message": issue.get("msg", "Validation failed")})
        return cls(message, details)


class PaymentRequiredError(X402Error):
    """No payment was presented for a protected resource."""

    status_code = 402


class InvalidPaymentError(X402Error):
    """A payment was presented but failed verification."""

    status_code = 402

    def __init__(self, reason: str, message: str = "Invalid payment"):
        super().__init__(message)
        self.reason = reason


class ConfigurationError(X402Error):
    """The server cannot resolve a signing key, fee payer or recipient."""

    status_code = 500


class NetworkError(X402Error):
    """The ledger RPC was unreachable or returned an error."""

    status_code = 502


class SettlementError(X402Error):
    """Verification passed but the on-ledger transfer was not submitted.

    Attached to the request state instead of being raised through the handler.
    """

    status_code = 200

    def __init__(self, message: str, result: Optional[Any] = None):
        super().__init__(message)
        self.result = result


class PaymentError(Exception):
    """Base class for client-side payment failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PaymentAmountExceededError(PaymentError):
    """Raised when a requirement asks for more than the client allows."""


class PaymentRejectedError(PaymentError):
    """Raised when the paid retry is not answered with success."""


class UnexpectedResponseError(PaymentError):
    """Raised when a 402 challenge cannot be understood."""
