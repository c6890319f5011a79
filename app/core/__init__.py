"""Core utilities and security modules."""

from app.core.clock import Clock, FixedClock, utcnow
from app.core.exceptions import (
    AppException,
    AuthenticationError,
    InvalidBookingStatus,
    NotFoundError,
    PaymentError,
    PayoutTransferError,
    ValidationError,
)
from app.core.security import verify_bearer_secret, verify_internal_key

__all__ = [
    "Clock",
    "FixedClock",
    "utcnow",
    "AppException",
    "AuthenticationError",
    "InvalidBookingStatus",
    "NotFoundError",
    "PaymentError",
    "PayoutTransferError",
    "ValidationError",
    "verify_bearer_secret",
    "verify_internal_key",
]
