"""Fraud intake.

A fraud report blocks the booking's payout permanently, including a hold that
was scheduled for release, and deactivates mentors with repeated reports.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, utcnow
from app.core.exceptions import InvalidBookingStatus, ValidationError
from app.domain.payout_state import PayoutStatus
from app.models.booking import Booking
from app.models.mentor import Mentor
from app.services.audit_service import audit_service
from app.services.booking_queries import get_booking

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FraudReportResult:
    booking_id: UUID
    fraud_reported: bool
    already_reported: bool
    mentor_deactivated: bool = False


class FraudService:
    """Service for recording fraud reports against bookings."""

    def __init__(self, deactivation_threshold: int | None = None, clock: Clock | None = None):
        self.deactivation_threshold = (
            settings.fraud_deactivation_threshold
            if deactivation_threshold is None
            else deactivation_threshold
        )
        self.clock = clock or utcnow

    async def report_fraud(
        self,
        db: AsyncSession,
        booking_id: UUID,
        notes: str,
        actor: str = "student",
    ) -> FraudReportResult:
        """Record a fraud report and block the booking's payout.

        Raises:
            NotFoundError: If the booking does not exist
            ValidationError: If notes are empty
            InvalidBookingStatus: If the payout was already released
        """
        if not notes or not notes.strip():
            raise ValidationError("Fraud report notes are required")

        booking = await get_booking(db, booking_id)
        if booking.is_fraud_reported:
            return FraudReportResult(booking_id=booking_id, fraud_reported=True, already_reported=True)
        if booking.payout_status == PayoutStatus.PAID_OUT:
            raise InvalidBookingStatus("Payout already released; open a dispute instead")

        old_status = booking.payout_status
        now = self.clock()
        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.is_fraud_reported.is_(False),
                Booking.payout_status != PayoutStatus.PAID_OUT,
            )
            .values(
                is_fraud_reported=True,
                fraud_reported_at=now,
                fraud_notes=notes.strip(),
                payout_status=PayoutStatus.REFUNDED,
                payout_released_at=None,
                payout_claim_token=None,
                payout_claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.commit()
            booking = await get_booking(db, booking_id)
            if booking.is_fraud_reported:
                return FraudReportResult(booking_id=booking_id, fraud_reported=True, already_reported=True)
            raise InvalidBookingStatus("Payout already released; open a dispute instead")

        await audit_service.log_payout_action(
            db,
            action="fraud_report",
            booking_id=booking_id,
            mentor_id=booking.mentor_id,
            old_status=old_status.value,
            new_status=PayoutStatus.REFUNDED.value,
            details={"notes": notes.strip()},
            actor=actor,
        )
        deactivated = await self._deactivate_if_repeated(db, booking.mentor_id, now)
        await db.commit()

        logger.info(f"[fraud] Fraud reported for booking {booking_id} (was {old_status.value}), payout blocked")
        return FraudReportResult(
            booking_id=booking_id,
            fraud_reported=True,
            already_reported=False,
            mentor_deactivated=deactivated,
        )

    async def _deactivate_if_repeated(self, db: AsyncSession, mentor_id: UUID, now: datetime) -> bool:
        count_result = await db.execute(
            select(func.count(Booking.id)).where(
                Booking.mentor_id == mentor_id,
                Booking.is_fraud_reported.is_(True),
            )
        )
        reports = count_result.scalar_one()
        if reports < self.deactivation_threshold:
            return False

        result = await db.execute(
            update(Mentor)
            .where(Mentor.id == mentor_id, Mentor.is_active.is_(True))
            .values(is_active=False, deactivated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        await audit_service.log_action(
            db,
            action="mentor_deactivated",
            mentor_id=mentor_id,
            old_values={"is_active": True},
            new_values={"is_active": False, "fraud_reports": reports},
        )
        logger.warning(f"[fraud] Mentor {mentor_id} deactivated after {reports} fraud reports")
        return True


fraud_service = FraudService()
