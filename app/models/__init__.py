"""Database models."""

from app.models.audit import PayoutAuditLog
from app.models.booking import Booking
from app.models.mentor import Mentor

__all__ = [
    "Booking",
    "Mentor",
    "PayoutAuditLog",
]
