"""Confirmation gate for payouts.

A booking may only be paid out once the student confirmed the session, or
once the auto-confirm deadline has passed without a dispute.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utcnow
from app.core.exceptions import InvalidBookingStatus
from app.domain.payout_state import is_auto_confirm_ready
from app.models.booking import Booking
from app.services.audit_service import audit_service
from app.services.booking_queries import get_booking
from app.services.trust_service import TrustCredit, TrustLedger, trust_ledger

logger = logging.getLogger(__name__)


class GateOutcome(str, Enum):
    CONFIRMED = "CONFIRMED"
    AUTO_CONFIRMED = "AUTO_CONFIRMED"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"


@dataclass(frozen=True)
class GateResult:
    outcome: GateOutcome
    trust_credit: TrustCredit | None = None


class ConfirmationGate:
    """Decides whether a booking may move on to payout evaluation."""

    def __init__(self, ledger: TrustLedger | None = None, clock: Clock | None = None):
        self.ledger = ledger or trust_ledger
        self.clock = clock or utcnow

    async def check(self, db: AsyncSession, booking: Booking, now: datetime | None = None) -> GateResult:
        """Evaluate the gate, applying auto-confirmation when the deadline passed.

        Does not commit; the payout state machine commits together with the
        hold or claim that follows.
        """
        now = now or self.clock()

        if booking.student_confirmed_at is not None:
            return GateResult(GateOutcome.CONFIRMED)

        if not is_auto_confirm_ready(booking, now):
            return GateResult(GateOutcome.AWAITING_CONFIRMATION)

        return await self.auto_confirm(db, booking, now)

    async def auto_confirm(self, db: AsyncSession, booking: Booking, now: datetime) -> GateResult:
        """Record the implied confirmation and count the booking toward trust.

        Confirmation and verification are folded into one update. A booking
        verified earlier only gets its confirmation timestamp, so the mentor's
        count moves at most once per booking.
        """
        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.student_confirmed_at.is_(None),
                Booking.is_verified.is_(False),
                Booking.is_fraud_reported.is_(False),
            )
            .values(student_confirmed_at=now, is_verified=True, verified_at=now)
            .execution_options(synchronize_session=False)
        )

        credit = None
        if result.rowcount == 1:
            credit = await self.ledger.credit_mentor(db, booking.mentor_id, now, booking_id=booking.id)
        else:
            result = await db.execute(
                update(Booking)
                .where(
                    Booking.id == booking.id,
                    Booking.student_confirmed_at.is_(None),
                    Booking.is_fraud_reported.is_(False),
                )
                .values(student_confirmed_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning(f"[payout] Booking {booking.id} was confirmed concurrently")
                return GateResult(GateOutcome.CONFIRMED)

        await audit_service.log_action(
            db,
            action="booking_auto_confirm",
            booking_id=booking.id,
            mentor_id=booking.mentor_id,
            old_values={"student_confirmed_at": None},
            new_values={
                "student_confirmed_at": now.isoformat(),
                "counted_toward_trust": credit is not None,
            },
        )
        logger.info(f"[payout] Auto-confirmed booking {booking.id} (deadline {booking.auto_confirm_at})")
        return GateResult(GateOutcome.AUTO_CONFIRMED, trust_credit=credit)

    async def record_student_confirmation(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor: str = "student",
    ) -> bool:
        """Set ``student_confirmed_at`` once.

        Returns:
            True if this call recorded the confirmation, False if it was
            already confirmed

        Raises:
            NotFoundError: If the booking does not exist
            InvalidBookingStatus: If the booking is unpaid or fraud-reported
        """
        booking = await get_booking(db, booking_id)

        if booking.paid_at is None:
            raise InvalidBookingStatus("Booking must be paid before it can be confirmed")
        if booking.is_fraud_reported:
            raise InvalidBookingStatus("Cannot confirm booking marked as fraud")
        if booking.student_confirmed_at is not None:
            return False

        now = self.clock()
        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.student_confirmed_at.is_(None),
                Booking.is_fraud_reported.is_(False),
            )
            .values(student_confirmed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.commit()
            booking = await get_booking(db, booking_id)
            if booking.is_fraud_reported:
                raise InvalidBookingStatus("Cannot confirm booking marked as fraud")
            return False

        await audit_service.log_action(
            db,
            action="booking_confirm",
            booking_id=booking_id,
            mentor_id=booking.mentor_id,
            old_values={"student_confirmed_at": None},
            new_values={"student_confirmed_at": now.isoformat()},
            actor=actor,
        )
        await db.commit()
        logger.info(f"[payout] Student confirmed booking {booking_id}")
        return True

