"""Immutability enforcement for the payout audit trail using SQLAlchemy events."""

import logging
from datetime import UTC, datetime

from sqlalchemy import event

from app.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_registered = False


class ImmutabilityViolationError(ValidationError):
    """Raised when attempting to modify an audit record."""

    def __init__(self, model_name: str, operation: str, record_id: str):
        self.model_name = model_name
        self.operation = operation
        self.record_id = record_id
        super().__init__(
            f"Immutability violation: Cannot {operation} {model_name} record {record_id}. "
            "Audit records are append-only."
        )


def _reject(model_name: str, operation: str, record_id: str) -> None:
    logger.error(
        f"IMMUTABILITY_VIOLATION: Attempted to {operation} {model_name} "
        f"record_id={record_id} at {datetime.now(UTC).isoformat()}"
    )
    raise ImmutabilityViolationError(model_name, operation, record_id)


def register_immutability_enforcement() -> None:
    """Register listeners that make PayoutAuditLog append-only.

    Safe to call more than once; listeners are attached a single time.
    """
    global _registered
    if _registered:
        return

    from app.models.audit import PayoutAuditLog

    @event.listens_for(PayoutAuditLog, "before_update")
    def prevent_audit_update(mapper, connection, target):
        _reject("PayoutAuditLog", "UPDATE", str(target.id))

    @event.listens_for(PayoutAuditLog, "before_delete")
    def prevent_audit_delete(mapper, connection, target):
        _reject("PayoutAuditLog", "DELETE", str(target.id))

    _registered = True
    logger.info("Immutability enforcement registered for payout audit trail")
