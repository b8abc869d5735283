"""
shared/utils/errors.py
Domain exceptions raised by the booking and payment components.
Each maps to one client-facing error category; main.py renders them.
"""

from typing import Optional


class AppError(Exception):
    """Base class for all expected, caller-recoverable errors."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInputError(AppError):
    """Malformed date/time, missing intent fields, invalid status value."""
    status_code = 400
    code = "invalid_input"
    default_message = "Bad Request"


class UnauthorizedError(AppError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class ForbiddenError(AppError):
    """Caller is authenticated but may not act on this resource."""
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Not Found"


class ConflictError(AppError):
    """Slot already taken, booked slot edited directly, terminal booking touched."""
    status_code = 409
    code = "conflict"
    default_message = "Conflict"


class UpstreamError(AppError):
    """
    Payment gateway failure: unreachable, bad signature, payment not captured.
    The gateway's own error text is logged, never put in the message.
    """
    status_code = 400
    code = "upstream_failure"
    default_message = "Payment gateway error"
