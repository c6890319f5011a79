"""Payout state machine tests."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from app.core.exceptions import InvalidBookingStatus, NotFoundError, PayoutTransferError
from app.core.idempotency import payout_transfer_key
from app.domain.payout_state import PayoutStatus
from app.models.audit import PayoutAuditLog
from app.models.booking import Booking
from app.services.payout_service import (
    FRAUD_HOLD_REASON,
    NEW_MENTOR_HOLD_REASON,
    PayoutResultStatus,
    SkipReason,
)


async def _audit_actions(db) -> list[str]:
    result = await db.execute(select(PayoutAuditLog.action).order_by(PayoutAuditLog.created_at))
    return list(result.scalars().all())


# ============ Hold vs immediate payout ============


@pytest.mark.asyncio
async def test_new_mentor_is_held_for_seven_days(db, payouts, gateway, clock, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor)

    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status == PayoutResultStatus.HELD
    assert result.reason == NEW_MENTOR_HOLD_REASON
    assert result.release_date == clock.now + timedelta(days=7)
    assert result.amount == 8500
    assert gateway.transfers == []

    await db.refresh(booking)
    assert booking.payout_status == PayoutStatus.HELD
    assert booking.payout_released_at == clock.now + timedelta(days=7)
    assert booking.platform_fee == 1500
    assert booking.mentor_payout == 8500
    assert "payout_hold" in await _audit_actions(db)


@pytest.mark.asyncio
async def test_trusted_mentor_is_paid_immediately(db, payouts, gateway, clock, make_mentor, make_booking):
    mentor = await make_mentor(is_trusted=True, verified_bookings_count=5)
    booking = await make_booking(mentor)

    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status == PayoutResultStatus.PAID_OUT
    assert result.transfer_id == "tr_test_1"
    assert result.amount == 8500

    assert len(gateway.transfers) == 1
    transfer = gateway.transfers[0]
    assert transfer["destination_account"] == mentor.stripe_connect_id
    assert transfer["amount"] == 8500
    assert transfer["metadata"]["booking_id"] == str(booking.id)
    assert transfer["idempotency_key"] == payout_transfer_key(booking.id, 8500)

    await db.refresh(booking)
    assert booking.payout_status == PayoutStatus.PAID_OUT
    assert booking.payout_id == "tr_test_1"
    assert booking.payout_released_at == clock.now
    assert booking.payout_claim_token is None
    assert "payout_hold" not in await _audit_actions(db)


@pytest.mark.asyncio
async def test_repeat_processing_transfers_once(db, payouts, gateway, make_mentor, make_booking):
    mentor = await make_mentor(is_trusted=True)
    booking = await make_booking(mentor)

    first = await payouts.process_booking_payout(db, booking.id)
    second = await payouts.process_booking_payout(db, booking.id)

    assert first.status == PayoutResultStatus.PAID_OUT
    assert second.status is None
    assert second.skip_reason == SkipReason.ALREADY_PAID_OUT
    assert second.transfer_id == first.transfer_id
    assert len(gateway.transfers) == 1

    await db.refresh(booking)
    assert booking.payout_status == PayoutStatus.PAID_OUT


@pytest.mark.asyncio
async def test_stored_fee_split_is_not_recomputed(db, payouts, gateway, make_mentor, make_booking):
    mentor = await make_mentor(is_trusted=True)
    booking = await make_booking(mentor, platform_fee=1000, mentor_payout=9000)

    result = await payouts.process_booking_payout(db, booking.id)

    assert result.amount == 9000
    assert gateway.transfers[0]["amount"] == 9000
    await db.refresh(booking)
    assert booking.platform_fee == 1000


# ============ Deferred outcomes ============


@pytest.mark.asyncio
async def test_mentor_without_account_is_skipped(db, payouts, gateway, make_mentor, make_booking):
    mentor = await make_mentor(stripe_connect_id=None, stripe_onboarded=False)
    booking = await make_booking(mentor)

    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status is None
    assert result.skip_reason == SkipReason.MENTOR_NOT_CONNECTED
    await db.refresh(booking)
    assert booking.payout_status == PayoutStatus.NONE
    assert booking.platform_fee is None


@pytest.mark.asyncio
async def test_unpaid_booking_is_skipped(db, payouts, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor, paid_at=None)

    result = await payouts.process_booking_payout(db, booking.id)

    assert result.skip_reason == SkipReason.NOT_PAID


@pytest.mark.asyncio
async def test_awaiting_confirmation_leaves_booking_untouched(db, payouts, gateway, clock, make_mentor, make_booking):
    mentor = await make_mentor(is_trusted=True)
    booking = await make_booking(
        mentor, student_confirmed_at=None, auto_confirm_at=clock.now + timedelta(hours=5)
    )

    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status == PayoutResultStatus.AWAITING_CONFIRMATION
    assert result.auto_confirm_at == clock.now + timedelta(hours=5)
    assert gateway.transfers == []
    await db.refresh(booking)
    assert booking.payout_status == PayoutStatus.NONE
    assert booking.student_confirmed_at is None
    assert booking.platform_fee is None


@pytest.mark.asyncio
async def test_unknown_booking_raises(db, payouts):
    with pytest.raises(NotFoundError):
        await payouts.process_booking_payout(db, uuid.uuid4())


# ============ Auto-confirmation ============


@pytest.mark.asyncio
async def test_auto_confirm_after_deadline(db, payouts, clock, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(
        mentor, student_confirmed_at=None, auto_confirm_at=clock.now - timedelta(minutes=1)
    )

    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status == PayoutResultStatus.HELD
    await db.refresh(booking)
    await db.refresh(mentor)
    assert booking.student_confirmed_at == clock.now
    assert booking.is_verified is True
    assert booking.verified_at == clock.now
    assert mentor.verified_bookings_count == 1
    assert "booking_auto_confirm" in await _audit_actions(db)


@pytest.mark.asyncio
async def test_auto_confirm_does_not_recount_verified_booking(db, payouts, clock, make_mentor, make_booking):
    mentor = await make_mentor(verified_bookings_count=3)
    booking = await make_booking(
        mentor,
        student_confirmed_at=None,
        auto_confirm_at=clock.now - timedelta(hours=1),
        is_verified=True,
        verified_at=clock.now - timedelta(days=1),
    )

    await payouts.process_booking_payout(db, booking.id)

    await db.refresh(booking)
    await db.refresh(mentor)
    assert booking.student_confirmed_at == clock.now
    assert booking.verified_at == clock.now - timedelta(days=1)
    assert mentor.verified_bookings_count == 3


@pytest.mark.asyncio
async def test_auto_confirm_that_grants_trust_pays_immediately(db, payouts, gateway, clock, make_mentor, make_booking):
    mentor = await make_mentor(verified_bookings_count=4)
    booking = await make_booking(
        mentor, student_confirmed_at=None, auto_confirm_at=clock.now - timedelta(hours=1)
    )

    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status == PayoutResultStatus.PAID_OUT
    assert len(gateway.transfers) == 1
    await db.refresh(mentor)
    assert mentor.is_trusted is True
    assert mentor.verified_bookings_count == 5


# ============ Fraud ============


@pytest.mark.asyncio
async def test_fraud_reported_booking_is_blocked(db, payouts, gateway, make_mentor, make_booking):
    mentor = await make_mentor(is_trusted=True)
    booking = await make_booking(mentor, is_fraud_reported=True)

    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status == PayoutResultStatus.HELD
    assert result.reason == FRAUD_HOLD_REASON
    assert result.fraud_blocked is True
    assert gateway.transfers == []
    await db.refresh(booking)
    assert booking.payout_status == PayoutStatus.REFUNDED
    assert booking.payout_released_at is None


# ============ Provider failures and claims ============


@pytest.mark.asyncio
async def test_provider_failure_leaves_booking_retryable(db, payouts, gateway, make_mentor, make_booking):
    mentor = await make_mentor(is_trusted=True)
    booking = await make_booking(mentor)
    gateway.fail_with = "insufficient platform balance"

    with pytest.raises(PayoutTransferError) as exc_info:
        await payouts.process_booking_payout(db, booking.id)

    assert exc_info.value.status_code == 502
    assert "insufficient platform balance" in exc_info.value.detail
    await db.refresh(booking)
    assert booking.payout_status == PayoutStatus.NONE
    assert booking.payout_id is None
    assert booking.payout_claim_token is None
    assert "payout_transfer_failed" in await _audit_actions(db)

    gateway.fail_with = None
    retry = await payouts.process_booking_payout(db, booking.id)

    assert retry.status == PayoutResultStatus.PAID_OUT
    assert len(gateway.transfers) == 1


@pytest.mark.asyncio
async def test_provider_exception_releases_claim(db, payouts, gateway, make_mentor, make_booking):
    mentor = await make_mentor(is_trusted=True)
    booking = await make_booking(mentor)
    gateway.raise_exc = ConnectionError("connection reset")

    with pytest.raises(PayoutTransferError):
        await payouts.process_booking_payout(db, booking.id)

    await db.refresh(booking)
    assert booking.payout_status == PayoutStatus.NONE
    assert booking.payout_claim_token is None


@pytest.mark.asyncio
async def test_active_claim_blocks_second_transfer(db, payouts, gateway, clock, make_mentor, make_booking):
    mentor = await make_mentor(is_trusted=True)
    booking = await make_booking(
        mentor,
        payout_claim_token="held-by-webhook",
        payout_claimed_at=clock.now - timedelta(seconds=30),
    )

    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status is None
    assert result.skip_reason == SkipReason.HANDLED_CONCURRENTLY
    assert gateway.transfers == []
    await db.refresh(booking)
    assert booking.payout_claim_token == "held-by-webhook"


@pytest.mark.asyncio
async def test_stale_claim_is_taken_over(db, payouts, gateway, clock, make_mentor, make_booking):
    mentor = await make_mentor(is_trusted=True)
    booking = await make_booking(
        mentor,
        payout_claim_token="crashed-worker",
        payout_claimed_at=clock.now - timedelta(hours=1),
    )

    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status == PayoutResultStatus.PAID_OUT
    assert len(gateway.transfers) == 1


@pytest.mark.asyncio
async def test_claim_taken_over_mid_transfer_is_not_reported_as_fraud(
    db, session_maker, payouts, gateway, make_mentor, make_booking
):
    mentor = await make_mentor(is_trusted=True)
    booking = await make_booking(mentor)

    async def other_worker_finishes(call):
        async with session_maker() as other:
            await other.execute(
                update(Booking)
                .where(Booking.id == booking.id)
                .values(
                    payout_status=PayoutStatus.PAID_OUT,
                    payout_id="tr_other_worker",
                    payout_claim_token=None,
                    payout_claimed_at=None,
                )
            )
            await other.commit()

    gateway.on_transfer = other_worker_finishes
    result = await payouts.process_booking_payout(db, booking.id)

    assert result.skip_reason == SkipReason.HANDLED_CONCURRENTLY
    assert result.fraud_blocked is False
    assert result.transfer_id == "tr_other_worker"

    await db.refresh(booking)
    assert booking.payout_status == PayoutStatus.PAID_OUT
    blocks = await db.execute(select(PayoutAuditLog).where(PayoutAuditLog.action == "fraud_block"))
    assert blocks.scalars().all() == []


# ============ Re-processing held bookings ============


@pytest.mark.asyncio
async def test_reprocessing_hold_keeps_release_date(db, payouts, clock, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor)

    first = await payouts.process_booking_payout(db, booking.id)
    clock.advance(days=2)
    second = await payouts.process_booking_payout(db, booking.id)

    assert second.status == PayoutResultStatus.HELD
    assert second.release_date == first.release_date


@pytest.mark.asyncio
async def test_hold_released_when_mentor_becomes_trusted(db, payouts, gateway, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor)
    await payouts.process_booking_payout(db, booking.id)

    mentor.is_trusted = True
    await db.commit()
    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status == PayoutResultStatus.PAID_OUT
    assert len(gateway.transfers) == 1


@pytest.mark.asyncio
async def test_due_hold_is_paid_on_reprocessing(db, payouts, gateway, clock, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor)
    await payouts.process_booking_payout(db, booking.id)

    clock.advance(days=7)
    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status == PayoutResultStatus.PAID_OUT
    await db.refresh(booking)
    assert booking.payout_status == PayoutStatus.PAID_OUT


# ============ Student confirmation ============


@pytest.mark.asyncio
async def test_confirm_verifies_and_holds(db, payouts, clock, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor, student_confirmed_at=None)

    result = await payouts.confirm_booking(db, booking.id)

    assert result.confirmed is True
    assert result.already_confirmed is False
    assert result.verification.mentor_verified_count == 1
    assert result.payout.status == PayoutResultStatus.HELD
    assert result.payout_error is None

    await db.refresh(booking)
    assert booking.student_confirmed_at == clock.now
    assert booking.is_verified is True


@pytest.mark.asyncio
async def test_confirm_is_idempotent(db, payouts, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor, student_confirmed_at=None)

    await payouts.confirm_booking(db, booking.id)
    again = await payouts.confirm_booking(db, booking.id)

    assert again.already_confirmed is True
    assert again.payout is None
    await db.refresh(mentor)
    assert mentor.verified_bookings_count == 1


@pytest.mark.asyncio
async def test_confirm_requires_payment(db, payouts, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor, paid_at=None, student_confirmed_at=None)

    with pytest.raises(InvalidBookingStatus):
        await payouts.confirm_booking(db, booking.id)


@pytest.mark.asyncio
async def test_confirm_rejects_fraud_reported_booking(db, payouts, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor, student_confirmed_at=None, is_fraud_reported=True)

    with pytest.raises(InvalidBookingStatus):
        await payouts.confirm_booking(db, booking.id)


@pytest.mark.asyncio
async def test_confirmation_stands_when_payout_fails(db, payouts, gateway, make_mentor, make_booking):
    mentor = await make_mentor(is_trusted=True, verified_bookings_count=7)
    booking = await make_booking(mentor, student_confirmed_at=None)
    gateway.fail_with = "card_declined"

    result = await payouts.confirm_booking(db, booking.id)

    assert result.confirmed is True
    assert result.payout is None
    assert "card_declined" in result.payout_error
    await db.refresh(booking)
    assert booking.student_confirmed_at is not None
    assert booking.is_verified is True
    assert booking.payout_status == PayoutStatus.NONE


# ============ Status view ============


@pytest.mark.asyncio
async def test_describe_payout_phases(db, payouts, clock, make_mentor, make_booking):
    mentor = await make_mentor()
    waiting = await make_booking(mentor, student_confirmed_at=None)
    held = await make_booking(mentor)
    await payouts.process_booking_payout(db, held.id)

    waiting_view = await payouts.describe_payout(db, waiting.id)
    held_view = await payouts.describe_payout(db, held.id)

    assert waiting_view.phase == "AWAITING_CONFIRMATION"
    assert waiting_view.payout_status == PayoutStatus.NONE
    assert held_view.phase == "HELD"
    assert held_view.details["release_date"] == clock.now + timedelta(days=7)
    assert held_view.details["release_due"] is False
    assert held_view.details["mentor_payout"] == 8500


@pytest.mark.asyncio
async def test_describe_payout_has_no_side_effects(db, payouts, clock, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(
        mentor, student_confirmed_at=None, auto_confirm_at=clock.now - timedelta(hours=1)
    )

    view = await payouts.describe_payout(db, booking.id)

    assert view.phase == "READY_NEW"
    assert view.details["needs_auto_confirm"] is True
    await db.refresh(booking)
    assert booking.student_confirmed_at is None
    assert booking.payout_status == PayoutStatus.NONE
