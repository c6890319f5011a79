"""Mentor payout processing.

CRITICAL BUSINESS LOGIC:
- A booking pays out once: student payment confirmed, session confirmed,
  no fraud report
- Trusted mentors are paid immediately
- Other mentors are held for ``payout_hold_days`` before the sweep releases funds
- A fraud report always wins over holds, timers and trust

Every transition is a conditional UPDATE on the booking row. Zero affected rows
means another process already handled the booking and this call backs off.
Before the provider is called a claim is committed on the row so two processes
can never both be mid-transfer for the same booking.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, utcnow
from app.core.exceptions import PayoutTransferError
from app.core.idempotency import payout_transfer_key
from app.domain.payout_state import (
    AwaitingConfirmation,
    FraudBlocked,
    Held,
    NotConnected,
    PaidOut,
    PayoutStatus,
    ReadyForPayout,
    Unpaid,
    assert_payout_transition,
    mentor_can_receive_payouts,
    resolve_payout_phase,
)
from app.gateways.base import PayoutGateway
from app.models.booking import Booking
from app.models.mentor import Mentor
from app.services.audit_service import audit_service
from app.services.booking_queries import get_booking, get_booking_with_mentor, get_mentor
from app.services.commission_service import CommissionService, PayoutAmounts, commission_service
from app.services.confirmation_service import ConfirmationGate
from app.services.gateway_service import get_payout_gateway
from app.services.trust_service import TrustCredit, TrustLedger, VerificationResult, trust_ledger

logger = logging.getLogger(__name__)

FRAUD_HOLD_REASON = "fraud — requires admin review"
NEW_MENTOR_HOLD_REASON = "anti-fraud hold for new mentors"


class PayoutResultStatus(str, Enum):
    HELD = "HELD"
    PAID_OUT = "PAID_OUT"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"


class SkipReason(str, Enum):
    """Why a payout call made no change. None of these are errors."""

    MENTOR_NOT_CONNECTED = "MENTOR_NOT_CONNECTED"
    NOT_PAID = "NOT_PAID"
    ALREADY_PAID_OUT = "ALREADY_PAID_OUT"
    MISSING_PAYOUT_AMOUNT = "MISSING_PAYOUT_AMOUNT"
    HANDLED_CONCURRENTLY = "HANDLED_CONCURRENTLY"


@dataclass
class PayoutResult:
    """Outcome of one payout call for a booking."""

    booking_id: UUID
    status: PayoutResultStatus | None = None
    skip_reason: SkipReason | None = None
    reason: str | None = None
    release_date: datetime | None = None
    auto_confirm_at: datetime | None = None
    transfer_id: str | None = None
    amount: int | None = None
    fraud_blocked: bool = False

    @classmethod
    def skipped(cls, booking_id: UUID, skip_reason: SkipReason, **kwargs: Any) -> "PayoutResult":
        return cls(booking_id=booking_id, skip_reason=skip_reason, **kwargs)


@dataclass
class SweepItemResult:
    """Per-booking entry of a batch sweep."""

    booking_id: UUID
    success: bool
    result: PayoutResult | None = None
    error: str | None = None


@dataclass
class ConfirmationResult:
    """Outcome of an explicit student confirmation."""

    booking_id: UUID
    confirmed: bool
    already_confirmed: bool
    verification: VerificationResult | None = None
    payout: PayoutResult | None = None
    payout_error: str | None = None


@dataclass
class PayoutView:
    """Read-only derived payout phase of a booking."""

    booking_id: UUID
    phase: str
    payout_status: PayoutStatus
    details: dict[str, Any] = field(default_factory=dict)


class PayoutService:
    """Payout state machine, held-payout sweeper and payout status view."""

    def __init__(
        self,
        gateway: PayoutGateway | None = None,
        clock: Clock | None = None,
        commission: CommissionService | None = None,
        ledger: TrustLedger | None = None,
        gate: ConfirmationGate | None = None,
        hold_days: int | None = None,
        claim_timeout_seconds: int | None = None,
        batch_size: int | None = None,
    ):
        self._gateway = gateway
        self.clock = clock or utcnow
        self.commission = commission or commission_service
        self.ledger = ledger or trust_ledger
        self.gate = gate or ConfirmationGate(self.ledger, clock=self.clock)
        self.hold_days = settings.payout_hold_days if hold_days is None else hold_days
        self.claim_timeout = timedelta(
            seconds=settings.payout_claim_timeout_seconds
            if claim_timeout_seconds is None
            else claim_timeout_seconds
        )
        self.batch_size = settings.payout_sweep_batch_size if batch_size is None else batch_size

    @property
    def gateway(self) -> PayoutGateway:
        if self._gateway is None:
            self._gateway = get_payout_gateway()
        return self._gateway

    # ============ State machine ============

    async def process_booking_payout(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor: str = "system",
    ) -> PayoutResult:
        """Decide and apply the payout for a booking.

        Idempotent: safe to call after payment confirmation, after student
        confirmation and from the sweeps, any number of times.

        Raises:
            NotFoundError: If the booking does not exist
            PayoutTransferError: If the provider failed the transfer (retryable)
        """
        booking, mentor = await get_booking_with_mentor(db, booking_id)
        now = self.clock()
        phase = resolve_payout_phase(booking, mentor, now)

        if isinstance(phase, NotConnected):
            logger.info(f"[payout] Mentor {mentor.id} has no connected payout account, skipping booking {booking_id}")
            return PayoutResult.skipped(booking_id, SkipReason.MENTOR_NOT_CONNECTED)

        if isinstance(phase, Unpaid):
            logger.info(f"[payout] Booking {booking_id} not paid, skipping")
            return PayoutResult.skipped(booking_id, SkipReason.NOT_PAID)

        if isinstance(phase, PaidOut):
            logger.info(f"[payout] Booking {booking_id} already paid out")
            return PayoutResult.skipped(
                booking_id,
                SkipReason.ALREADY_PAID_OUT,
                transfer_id=phase.transfer_id,
                amount=booking.mentor_payout,
            )

        if isinstance(phase, FraudBlocked):
            await self._apply_fraud_block(db, booking, actor=actor)
            await db.commit()
            return PayoutResult(
                booking_id=booking_id,
                status=PayoutResultStatus.HELD,
                reason=FRAUD_HOLD_REASON,
                fraud_blocked=True,
            )

        if isinstance(phase, AwaitingConfirmation):
            logger.info(f"[payout] Booking {booking_id} awaiting confirmation (auto-confirm at {phase.auto_confirm_at})")
            return PayoutResult(
                booking_id=booking_id,
                status=PayoutResultStatus.AWAITING_CONFIRMATION,
                auto_confirm_at=phase.auto_confirm_at,
            )

        if isinstance(phase, Held):
            if phase.mentor_trusted or phase.release_due:
                return await self.execute_payout(db, booking_id, PayoutStatus.HELD, actor=actor)
            return PayoutResult(
                booking_id=booking_id,
                status=PayoutResultStatus.HELD,
                reason=NEW_MENTOR_HOLD_REASON,
                release_date=phase.release_date,
                amount=booking.mentor_payout,
            )

        return await self._process_ready(db, booking, mentor, phase, now, actor)

    async def _process_ready(
        self,
        db: AsyncSession,
        booking: Booking,
        mentor: Mentor,
        phase: ReadyForPayout,
        now: datetime,
        actor: str,
    ) -> PayoutResult:
        credit: TrustCredit | None = None
        if phase.needs_auto_confirm:
            gate_result = await self.gate.check(db, booking, now)
            credit = gate_result.trust_credit

        await self._ensure_payout_amounts(db, booking)

        # Auto-confirmation may have just made this mentor trusted
        trusted = phase.mentor_trusted or await self._mentor_is_trusted(db, mentor.id)

        if trusted:
            await db.commit()
            await self.ledger.notify(credit)
            return await self.execute_payout(db, booking.id, PayoutStatus.NONE, actor=actor)

        result = await self._apply_hold(db, booking, now, actor=actor)
        await db.commit()
        await self.ledger.notify(credit)
        return result

    async def _apply_hold(
        self,
        db: AsyncSession,
        booking: Booking,
        now: datetime,
        actor: str,
    ) -> PayoutResult:
        assert_payout_transition(PayoutStatus.NONE, PayoutStatus.HELD)
        release_date = now + timedelta(days=self.hold_days)

        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.payout_status == PayoutStatus.NONE,
                Booking.is_fraud_reported.is_(False),
            )
            .values(payout_status=PayoutStatus.HELD, payout_released_at=release_date)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"[payout] Booking {booking.id} changed while applying hold, backing off")
            return PayoutResult.skipped(booking.id, SkipReason.HANDLED_CONCURRENTLY)

        amount = await self._stored_payout_amount(db, booking.id)
        await audit_service.log_payout_action(
            db,
            action="payout_hold",
            booking_id=booking.id,
            mentor_id=booking.mentor_id,
            old_status=PayoutStatus.NONE.value,
            new_status=PayoutStatus.HELD.value,
            amount=amount,
            details={"release_date": release_date.isoformat()},
            actor=actor,
        )
        logger.info(f"[payout] Booking {booking.id} held until {release_date.isoformat()} (new mentor)")

        return PayoutResult(
            booking_id=booking.id,
            status=PayoutResultStatus.HELD,
            reason=NEW_MENTOR_HOLD_REASON,
            release_date=release_date,
            amount=amount,
        )

    async def _apply_fraud_block(self, db: AsyncSession, booking: Booking, actor: str) -> None:
        """Force the blocked status on a fraud-reported booking, once."""
        if booking.payout_status == PayoutStatus.REFUNDED:
            return

        assert_payout_transition(booking.payout_status, PayoutStatus.REFUNDED)
        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.payout_status == booking.payout_status,
            )
            .values(
                payout_status=PayoutStatus.REFUNDED,
                payout_released_at=None,
                payout_claim_token=None,
                payout_claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"[payout] Booking {booking.id} changed while applying fraud block")
            return

        await audit_service.log_payout_action(
            db,
            action="fraud_block",
            booking_id=booking.id,
            mentor_id=booking.mentor_id,
            old_status=booking.payout_status.value,
            new_status=PayoutStatus.REFUNDED.value,
            actor=actor,
        )
        logger.info(f"[payout] Booking {booking.id} blocked: fraud reported")

    async def _ensure_payout_amounts(self, db: AsyncSession, booking: Booking) -> PayoutAmounts:
        """Persist the fee split once; stored amounts are never recomputed."""
        if booking.platform_fee is not None and booking.mentor_payout is not None:
            return PayoutAmounts(platform_fee=booking.platform_fee, mentor_payout=booking.mentor_payout)

        amounts = self.commission.calculate_payout_amounts(booking.total_price)
        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.platform_fee.is_(None),
                Booking.mentor_payout.is_(None),
            )
            .values(platform_fee=amounts.platform_fee, mentor_payout=amounts.mentor_payout)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            stored = await get_booking(db, booking.id)
            return PayoutAmounts(platform_fee=stored.platform_fee, mentor_payout=stored.mentor_payout)

        logger.info(
            f"[payout] Booking {booking.id} split: fee {amounts.platform_fee}, "
            f"mentor {amounts.mentor_payout} (total {booking.total_price})"
        )
        return amounts

    async def _mentor_is_trusted(self, db: AsyncSession, mentor_id: UUID) -> bool:
        result = await db.execute(select(Mentor.is_trusted).where(Mentor.id == mentor_id))
        return bool(result.scalar_one())

    async def _stored_payout_amount(self, db: AsyncSession, booking_id: UUID) -> int | None:
        result = await db.execute(select(Booking.mentor_payout).where(Booking.id == booking_id))
        return result.scalar_one()

    # ============ Transfer ============

    async def execute_payout(
        self,
        db: AsyncSession,
        booking_id: UUID,
        expected_status: PayoutStatus,
        actor: str = "system",
    ) -> PayoutResult:
        """Transfer the mentor payout and mark the booking PAID_OUT.

        1. Claim the booking (conditional on ``expected_status``) and commit
        2. Call the provider with a booking-derived idempotency key
        3. Mark PAID_OUT only if the claim is still ours and no fraud arrived

        Raises:
            PayoutTransferError: If the provider call failed. The claim is
                released and the booking is otherwise unchanged.
        """
        assert_payout_transition(expected_status, PayoutStatus.PAID_OUT)
        booking, mentor = await get_booking_with_mentor(db, booking_id)

        if not mentor_can_receive_payouts(mentor):
            return PayoutResult.skipped(booking_id, SkipReason.MENTOR_NOT_CONNECTED)
        if booking.mentor_payout is None:
            logger.error(f"[payout] Booking {booking_id} has no payout amount, cannot transfer")
            return PayoutResult.skipped(booking_id, SkipReason.MISSING_PAYOUT_AMOUNT)

        token = uuid.uuid4().hex
        claimed_at = self.clock()
        claim = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.payout_status == expected_status,
                Booking.is_fraud_reported.is_(False),
                or_(
                    Booking.payout_claim_token.is_(None),
                    Booking.payout_claimed_at < claimed_at - self.claim_timeout,
                ),
            )
            .values(payout_claim_token=token, payout_claimed_at=claimed_at)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if claim.rowcount != 1:
            logger.warning(f"[payout] Booking {booking_id} is being paid out elsewhere, backing off")
            return PayoutResult.skipped(booking_id, SkipReason.HANDLED_CONCURRENTLY)

        amount = booking.mentor_payout
        try:
            transfer = await self.gateway.create_transfer(
                destination_account=mentor.stripe_connect_id,
                amount=amount,
                currency=booking.currency or settings.payout_currency,
                reference_id=str(booking_id),
                description=f"Mentor payout for booking {booking_id}",
                metadata={"booking_id": str(booking_id), "mentor_id": str(mentor.id)},
                idempotency_key=payout_transfer_key(booking_id, amount),
            )
        except Exception as e:
            logger.error(f"[payout] Transfer for booking {booking_id} raised: {e}")
            await self._release_claim(db, booking, token, expected_status, str(e), actor)
            raise PayoutTransferError(str(booking_id), str(e)) from e

        if not transfer.success or not transfer.transfer_id:
            reason = transfer.error_message or "provider returned no transfer id"
            logger.error(f"[payout] Transfer for booking {booking_id} failed: {reason}")
            await self._release_claim(db, booking, token, expected_status, reason, actor)
            raise PayoutTransferError(str(booking_id), reason)

        paid_at = self.clock()
        finalized = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.payout_claim_token == token,
                Booking.payout_status == expected_status,
                Booking.is_fraud_reported.is_(False),
            )
            .values(
                payout_status=PayoutStatus.PAID_OUT,
                payout_id=transfer.transfer_id,
                payout_released_at=paid_at,
                payout_claim_token=None,
                payout_claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        if finalized.rowcount != 1:
            await db.commit()
            current = await get_booking(db, booking_id)
            if not current.is_fraud_reported:
                # Claim went stale and another run took over; same idempotency key
                logger.warning(
                    f"[payout] Claim on booking {booking_id} was taken over during transfer "
                    f"{transfer.transfer_id}, now {current.payout_status.value}"
                )
                return PayoutResult.skipped(
                    booking_id,
                    SkipReason.HANDLED_CONCURRENTLY,
                    transfer_id=current.payout_id,
                    amount=amount,
                )

            logger.error(
                f"[payout] Booking {booking_id} was blocked during transfer {transfer.transfer_id}; "
                f"funds need admin reversal"
            )
            await audit_service.log_payout_action(
                db,
                action="fraud_block",
                booking_id=booking_id,
                mentor_id=mentor.id,
                old_status=expected_status.value,
                new_status=PayoutStatus.REFUNDED.value,
                amount=amount,
                details={"transfer_id": transfer.transfer_id, "fraud_during_transfer": True},
                actor=actor,
            )
            await db.commit()
            return PayoutResult(
                booking_id=booking_id,
                status=PayoutResultStatus.HELD,
                reason=FRAUD_HOLD_REASON,
                transfer_id=transfer.transfer_id,
                amount=amount,
                fraud_blocked=True,
            )

        await audit_service.log_payout_action(
            db,
            action="payout_release",
            booking_id=booking_id,
            mentor_id=mentor.id,
            old_status=expected_status.value,
            new_status=PayoutStatus.PAID_OUT.value,
            amount=amount,
            details={"transfer_id": transfer.transfer_id},
            actor=actor,
        )
        await db.commit()
        logger.info(f"[payout] Paid out {amount} to mentor {mentor.id} for booking {booking_id} ({transfer.transfer_id})")

        return PayoutResult(
            booking_id=booking_id,
            status=PayoutResultStatus.PAID_OUT,
            transfer_id=transfer.transfer_id,
            amount=amount,
        )

    async def _release_claim(
        self,
        db: AsyncSession,
        booking: Booking,
        token: str,
        expected_status: PayoutStatus,
        reason: str,
        actor: str,
    ) -> None:
        await db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.payout_claim_token == token)
            .values(payout_claim_token=None, payout_claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        await audit_service.log_payout_action(
            db,
            action="payout_transfer_failed",
            booking_id=booking.id,
            mentor_id=booking.mentor_id,
            old_status=expected_status.value,
            new_status=expected_status.value,
            amount=booking.mentor_payout,
            details={"error": reason},
            actor=actor,
        )
        await db.commit()

    # ============ Sweeps ============

    async def _due_booking_ids(self, db: AsyncSession, due_column, *criteria) -> list[UUID]:
        """Collect every matching booking id, ``batch_size`` rows per query.

        Pages are keyed on ``(due_column, id)`` so rows that stay behind after
        an earlier run (unconnected mentor, missing amount) never hide the
        rows after them.
        """
        booking_ids: list[UUID] = []
        last: tuple[datetime, UUID] | None = None
        while True:
            query = (
                select(Booking.id, due_column)
                .where(*criteria)
                .order_by(due_column, Booking.id)
                .limit(self.batch_size)
            )
            if last is not None:
                query = query.where(
                    or_(
                        due_column > last[0],
                        and_(due_column == last[0], Booking.id > last[1]),
                    )
                )
            rows = (await db.execute(query)).all()
            booking_ids.extend(row[0] for row in rows)
            if not rows or len(rows) < self.batch_size:
                return booking_ids
            last = (rows[-1][1], rows[-1][0])

    async def process_held_payouts(self, db: AsyncSession) -> list[SweepItemResult]:
        """Release every hold whose date has passed.

        One booking failing never stops the batch; failures are reported in
        the returned list and the booking stays HELD for the next run.
        """
        now = self.clock()
        booking_ids = await self._due_booking_ids(
            db,
            Booking.payout_released_at,
            Booking.payout_status == PayoutStatus.HELD,
            Booking.payout_released_at <= now,
            Booking.is_fraud_reported.is_(False),
        )
        logger.info(f"[payout-cron] Found {len(booking_ids)} held payouts due for release")

        results: list[SweepItemResult] = []
        for booking_id in booking_ids:
            try:
                payout = await self.execute_payout(db, booking_id, PayoutStatus.HELD, actor="sweeper")
                results.append(
                    SweepItemResult(
                        booking_id=booking_id,
                        success=payout.status == PayoutResultStatus.PAID_OUT,
                        result=payout,
                        error=payout.skip_reason.value if payout.skip_reason else None,
                    )
                )
            except Exception as e:
                await db.rollback()
                logger.error(f"[payout-cron] Failed to release booking {booking_id}: {e}")
                results.append(SweepItemResult(booking_id=booking_id, success=False, error=str(e)))

        paid = sum(1 for r in results if r.success)
        logger.info(f"[payout-cron] Released {paid}/{len(results)} held payouts")
        return results

    async def process_due_confirmations(self, db: AsyncSession) -> list[SweepItemResult]:
        """Run the payout state machine for bookings whose auto-confirm deadline passed."""
        now = self.clock()
        booking_ids = await self._due_booking_ids(
            db,
            Booking.auto_confirm_at,
            Booking.paid_at.is_not(None),
            Booking.payout_status == PayoutStatus.NONE,
            Booking.is_fraud_reported.is_(False),
            Booking.student_confirmed_at.is_(None),
            Booking.auto_confirm_at <= now,
        )
        logger.info(f"[payout-cron] Found {len(booking_ids)} bookings past auto-confirm deadline")

        results: list[SweepItemResult] = []
        for booking_id in booking_ids:
            try:
                payout = await self.process_booking_payout(db, booking_id, actor="sweeper")
                results.append(
                    SweepItemResult(
                        booking_id=booking_id,
                        success=payout.status in (PayoutResultStatus.HELD, PayoutResultStatus.PAID_OUT),
                        result=payout,
                        error=payout.skip_reason.value if payout.skip_reason else None,
                    )
                )
            except Exception as e:
                await db.rollback()
                logger.error(f"[payout-cron] Failed to auto-confirm booking {booking_id}: {e}")
                results.append(SweepItemResult(booking_id=booking_id, success=False, error=str(e)))

        return results

    # ============ Student confirmation ============

    async def confirm_booking(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor: str = "student",
    ) -> ConfirmationResult:
        """Record the student's confirmation, verify the booking, then try the payout.

        A failed payout never undoes the confirmation; the error is returned
        and the next sweep or call retries it.

        Raises:
            NotFoundError: If the booking does not exist
            InvalidBookingStatus: If the booking is unpaid or fraud-reported
        """
        recorded = await self.gate.record_student_confirmation(db, booking_id, actor=actor)
        if not recorded:
            return ConfirmationResult(booking_id=booking_id, confirmed=True, already_confirmed=True)

        verification = await self.ledger.verify_booking(db, booking_id, actor=actor)

        payout: PayoutResult | None = None
        payout_error: str | None = None
        try:
            payout = await self.process_booking_payout(db, booking_id, actor=actor)
        except PayoutTransferError as e:
            await db.rollback()
            logger.error(f"[payout] Payout after confirmation failed for booking {booking_id}: {e.detail}")
            payout_error = e.detail

        return ConfirmationResult(
            booking_id=booking_id,
            confirmed=True,
            already_confirmed=False,
            verification=verification,
            payout=payout,
            payout_error=payout_error,
        )

    # ============ Status view ============

    async def describe_payout(self, db: AsyncSession, booking_id: UUID) -> PayoutView:
        """Derived payout phase of a booking, without side effects."""
        booking = await get_booking(db, booking_id)
        mentor = await get_mentor(db, booking.mentor_id)
        phase = resolve_payout_phase(booking, mentor, self.clock())

        details = asdict(phase)
        details.update(
            {
                "total_price": booking.total_price,
                "platform_fee": booking.platform_fee,
                "mentor_payout": booking.mentor_payout,
                "is_verified": booking.is_verified,
                "mentor_verified_count": mentor.verified_bookings_count,
            }
        )
        return PayoutView(
            booking_id=booking_id,
            phase=phase.name,
            payout_status=booking.payout_status,
            details=details,
        )


payout_service = PayoutService()
