"""Mentor trust ledger.

Each verified booking adds one to the mentor's ``verified_bookings_count``.
When the count first reaches the trust threshold the mentor becomes trusted
and future payouts skip the anti-fraud hold. Trust is never revoked here.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, utcnow
from app.core.exceptions import InvalidBookingStatus
from app.models.booking import Booking
from app.models.mentor import Mentor
from app.services.audit_service import audit_service
from app.services.booking_queries import get_booking, get_mentor

logger = logging.getLogger(__name__)

TrustListener = Callable[[UUID, int], Awaitable[None]]


@dataclass(frozen=True)
class TrustCredit:
    """Outcome of one atomic increment of a mentor's verified count."""

    mentor_id: UUID
    verified_count: int
    newly_trusted: bool


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    already_verified: bool
    mentor_verified_count: int
    mentor_now_trusted: bool


class TrustLedger:
    """Counts verified bookings per mentor and grants trusted status."""

    def __init__(self, threshold: int | None = None, clock: Clock | None = None):
        self.threshold = settings.trust_threshold if threshold is None else threshold
        self.clock = clock or utcnow
        self._listeners: list[TrustListener] = []

    def add_listener(self, listener: TrustListener) -> None:
        """Register a coroutine called as ``listener(mentor_id, count)`` on upgrade."""
        self._listeners.append(listener)

    async def verify_booking(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor: str = "student",
    ) -> VerificationResult:
        """Count a booking toward its mentor's trust, at most once.

        Raises:
            NotFoundError: If the booking does not exist
            InvalidBookingStatus: If fraud was reported on the booking
        """
        booking = await get_booking(db, booking_id)

        if booking.is_verified:
            return await self._already_verified(db, booking)

        if booking.is_fraud_reported:
            raise InvalidBookingStatus("Cannot verify booking marked as fraud")

        now = self.clock()
        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.is_verified.is_(False),
                Booking.is_fraud_reported.is_(False),
            )
            .values(is_verified=True, verified_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Lost the race to another verification (or a fraud report)
            await db.commit()
            booking = await get_booking(db, booking_id)
            if booking.is_fraud_reported and not booking.is_verified:
                raise InvalidBookingStatus("Cannot verify booking marked as fraud")
            return await self._already_verified(db, booking)

        credit = await self.credit_mentor(db, booking.mentor_id, now, booking_id=booking_id)
        await audit_service.log_action(
            db,
            action="booking_verify",
            booking_id=booking_id,
            mentor_id=booking.mentor_id,
            old_values={"is_verified": False},
            new_values={"is_verified": True, "mentor_verified_count": credit.verified_count},
            actor=actor,
        )
        await db.commit()

        logger.info(
            f"[trust] Booking {booking_id} verified; mentor {booking.mentor_id} "
            f"now has {credit.verified_count} verified bookings"
        )
        await self.notify(credit)

        return VerificationResult(
            verified=True,
            already_verified=False,
            mentor_verified_count=credit.verified_count,
            mentor_now_trusted=credit.newly_trusted,
        )

    async def credit_mentor(
        self,
        db: AsyncSession,
        mentor_id: UUID,
        now: datetime,
        booking_id: UUID | None = None,
    ) -> TrustCredit:
        """Atomically increment the mentor's verified count and grant trust on crossing.

        The caller must already hold the booking's verification guard
        (``is_verified`` flipped false→true) and is responsible for committing.
        """
        result = await db.execute(
            update(Mentor)
            .where(Mentor.id == mentor_id)
            .values(verified_bookings_count=Mentor.verified_bookings_count + 1)
            .returning(Mentor.verified_bookings_count)
            .execution_options(synchronize_session=False)
        )
        count = result.scalar_one()
        previous = count - 1

        newly_trusted = False
        if previous < self.threshold <= count:
            upgraded = await db.execute(
                update(Mentor)
                .where(Mentor.id == mentor_id, Mentor.is_trusted.is_(False))
                .values(is_trusted=True, trusted_at=now)
                .execution_options(synchronize_session=False)
            )
            newly_trusted = upgraded.rowcount == 1

        if newly_trusted:
            await audit_service.log_action(
                db,
                action="mentor_trusted",
                booking_id=booking_id,
                mentor_id=mentor_id,
                old_values={"is_trusted": False, "verified_bookings_count": previous},
                new_values={"is_trusted": True, "verified_bookings_count": count},
            )
            logger.info(f"[trust] Mentor {mentor_id} is now TRUSTED ({count} verified bookings)")

        return TrustCredit(mentor_id=mentor_id, verified_count=count, newly_trusted=newly_trusted)

    async def notify(self, credit: TrustCredit | None) -> None:
        """Signal listeners about a trust upgrade. Call after commit."""
        if credit is None or not credit.newly_trusted:
            return
        for listener in self._listeners:
            try:
                await listener(credit.mentor_id, credit.verified_count)
            except Exception:
                logger.exception(f"[trust] Trust-upgrade listener failed for mentor {credit.mentor_id}")

    async def _already_verified(self, db: AsyncSession, booking: Booking) -> VerificationResult:
        mentor = await get_mentor(db, booking.mentor_id)
        return VerificationResult(
            verified=True,
            already_verified=True,
            mentor_verified_count=mentor.verified_bookings_count,
            mentor_now_trusted=False,
        )


trust_ledger = TrustLedger()
