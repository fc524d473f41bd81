"""
Application error taxonomy.

Services raise these when a business rule is violated; the exception
handlers in app.main translate them into the JSON error envelope:

    {"success": false, "message": "...", "code": "...", "order_status": "..."}
"""

from typing import Optional, Any


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        order_status: Optional[str] = None,
        details: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.order_status = order_status
        self.details = details

    def to_payload(self) -> dict:
        payload = {
            "success": False,
            "message": self.message,
            "code": self.code,
        }
        if self.order_status is not None:
            payload["order_status"] = self.order_status
        if self.details is not None:
            payload["errors"] = self.details
        return payload


class ValidationError(AppError):
    """Malformed input or a business-rule violation (empty cart, multi-seller cart)."""
    status_code = 400
    code = "validation_error"


class InsufficientStockError(ValidationError):
    """A product cannot cover the requested quantity."""
    code = "insufficient_stock"

    def __init__(self, message: str, *, product_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.product_id = product_id


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class AuthenticationError(AppError):
    status_code = 401
    code = "authentication_required"


class AuthorizationError(AppError):
    status_code = 403
    code = "forbidden"


class ConflictError(AppError):
    """The action conflicts with the current state (already paid, not pending)."""
    status_code = 400
    code = "conflict"


class InvalidStateTransition(AppError):
    """The order state machine refused the event."""
    status_code = 400
    code = "invalid_state_transition"
