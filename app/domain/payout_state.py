"""Mentor payout state machine.

Stored status (``Booking.payout_status``):
- NONE: Nothing decided yet
- HELD: Anti-fraud hold, released at ``payout_released_at``
- PAID_OUT: Transfer confirmed by the provider (terminal)
- REFUNDED: Blocked because fraud was reported (terminal)

The phase a booking is in is derived from several stored fields. ``resolve_payout_phase``
computes it in one place so the precedence (mentor account, payment, terminal payout,
fraud, confirmation, hold) is a single ordered decision instead of scattered checks.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, ClassVar
from uuid import UUID

from app.core.exceptions import ValidationError

if TYPE_CHECKING:
    from app.models.booking import Booking
    from app.models.mentor import Mentor


class PayoutStatus(str, Enum):
    """Stored payout status of a booking."""

    NONE = "NONE"
    HELD = "HELD"
    PAID_OUT = "PAID_OUT"
    REFUNDED = "REFUNDED"  # blocked due to fraud, not a generic refund


PAYOUT_TRANSITIONS: dict[PayoutStatus, set[PayoutStatus]] = {
    PayoutStatus.NONE: {PayoutStatus.HELD, PayoutStatus.PAID_OUT, PayoutStatus.REFUNDED},
    PayoutStatus.HELD: {PayoutStatus.PAID_OUT, PayoutStatus.REFUNDED},
    PayoutStatus.PAID_OUT: set(),
    PayoutStatus.REFUNDED: set(),
}


def assert_payout_transition(current: PayoutStatus, target: PayoutStatus) -> None:
    """Validate payout state transition.

    Args:
        current: Current payout status
        target: Target payout status

    Raises:
        ValidationError: If transition is not allowed
    """
    allowed = PAYOUT_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise ValidationError(
            f"Invalid payout transition: {current.value} → {target.value}"
        )


# ============ Derived phases ============


@dataclass(frozen=True)
class NotConnected:
    """Mentor has no connected, onboarded payout account."""

    name: ClassVar[str] = "NOT_CONNECTED"
    mentor_id: UUID


@dataclass(frozen=True)
class Unpaid:
    """Student payment has not been confirmed."""

    name: ClassVar[str] = "NOT_PAID"


@dataclass(frozen=True)
class PaidOut:
    name: ClassVar[str] = "PAID_OUT"
    transfer_id: str | None
    paid_out_at: datetime | None


@dataclass(frozen=True)
class FraudBlocked:
    name: ClassVar[str] = "FRAUD_BLOCKED"
    reported_at: datetime | None


@dataclass(frozen=True)
class AwaitingConfirmation:
    name: ClassVar[str] = "AWAITING_CONFIRMATION"
    auto_confirm_at: datetime | None


@dataclass(frozen=True)
class Held:
    """Funds on hold; ``release_due`` once the release date has passed."""

    name: ClassVar[str] = "HELD"
    release_date: datetime | None
    release_due: bool
    mentor_trusted: bool


@dataclass(frozen=True)
class ReadyForPayout:
    """Confirmed and unblocked; trusted mentors are paid now, others are held.

    ``needs_auto_confirm`` means confirmation is implied by the deadline and has
    not been recorded on the booking yet.
    """

    mentor_trusted: bool
    needs_auto_confirm: bool

    @property
    def name(self) -> str:
        return "READY_TRUSTED" if self.mentor_trusted else "READY_NEW"


PayoutPhase = (
    NotConnected
    | Unpaid
    | PaidOut
    | FraudBlocked
    | AwaitingConfirmation
    | Held
    | ReadyForPayout
)


def mentor_can_receive_payouts(mentor: Mentor) -> bool:
    """Payout requires both a connected account and completed onboarding."""
    return bool(mentor.stripe_connect_id) and bool(mentor.stripe_onboarded)


def is_auto_confirm_ready(booking: Booking, now: datetime) -> bool:
    return booking.auto_confirm_at is not None and now >= booking.auto_confirm_at


def resolve_payout_phase(booking: Booking, mentor: Mentor, now: datetime) -> PayoutPhase:
    """Derive the payout phase of a booking.

    Checks run strictly in order and the first match wins. Fraud is checked
    before confirmation so a report always blocks, whatever the timers say.
    """
    if not mentor_can_receive_payouts(mentor):
        return NotConnected(mentor_id=mentor.id)

    if booking.paid_at is None:
        return Unpaid()

    if booking.payout_status == PayoutStatus.PAID_OUT:
        return PaidOut(transfer_id=booking.payout_id, paid_out_at=booking.payout_released_at)

    if booking.is_fraud_reported or booking.payout_status == PayoutStatus.REFUNDED:
        return FraudBlocked(reported_at=booking.fraud_reported_at)

    student_confirmed = booking.student_confirmed_at is not None
    auto_ready = is_auto_confirm_ready(booking, now)
    if not student_confirmed and not auto_ready:
        return AwaitingConfirmation(auto_confirm_at=booking.auto_confirm_at)

    if booking.payout_status == PayoutStatus.HELD:
        release_date = booking.payout_released_at
        return Held(
            release_date=release_date,
            release_due=release_date is not None and release_date <= now,
            mentor_trusted=bool(mentor.is_trusted),
        )

    return ReadyForPayout(
        mentor_trusted=bool(mentor.is_trusted),
        needs_auto_confirm=not student_confirmed,
    )
