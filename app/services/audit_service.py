"""Payout audit trail service."""

from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import PayoutAuditLog


class AuditService:
    """Service for append-only payout, trust and fraud audit logging."""

    # Actions recorded by the payout core
    PAYOUT_ACTIONS = {
        "payout_hold",
        "payout_release",
        "payout_transfer_failed",
        "fraud_block",
        "fraud_report",
        "booking_verify",
        "booking_confirm",
        "booking_auto_confirm",
        "mentor_trusted",
        "mentor_deactivated",
    }

    async def log_action(
        self,
        db: AsyncSession,
        action: str,
        booking_id: UUID | None = None,
        mentor_id: UUID | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        actor: str = "system",
    ) -> PayoutAuditLog:
        """Add an audit row to the current transaction.

        Args:
            db: Database session
            action: Action name (one of PAYOUT_ACTIONS)
            booking_id: Booking affected, if any
            mentor_id: Mentor affected, if any
            old_values: Previous state
            new_values: New state
            actor: Who triggered the change (system, sweeper, student, admin)

        Returns:
            Created audit log entry
        """
        if action not in self.PAYOUT_ACTIONS:
            raise ValueError(f"Unknown audit action: {action}")

        audit = PayoutAuditLog(
            booking_id=booking_id,
            mentor_id=mentor_id,
            action=action,
            actor=actor,
            old_values=old_values,
            new_values=new_values,
        )
        db.add(audit)
        return audit

    async def log_payout_action(
        self,
        db: AsyncSession,
        action: str,
        booking_id: UUID,
        mentor_id: UUID,
        old_status: str,
        new_status: str,
        amount: int | None = None,
        details: dict[str, Any] | None = None,
        actor: str = "system",
    ) -> PayoutAuditLog:
        """Log payout status change."""
        new_values: dict[str, Any] = {"status": new_status}
        if amount is not None:
            new_values["amount"] = amount
        if details:
            new_values.update(details)

        return await self.log_action(
            db=db,
            action=action,
            booking_id=booking_id,
            mentor_id=mentor_id,
            old_values={"status": old_status},
            new_values=new_values,
            actor=actor,
        )


audit_service = AuditService()
