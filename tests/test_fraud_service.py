"""Fraud intake tests."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from app.core.exceptions import InvalidBookingStatus, ValidationError
from app.domain.payout_state import PayoutStatus
from app.models.audit import PayoutAuditLog
from app.services.payout_service import PayoutResultStatus

NOTES = "Mentor did not attend the booked session"


@pytest.mark.asyncio
async def test_report_blocks_scheduled_hold(db, fraud, clock, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(
        mentor,
        platform_fee=1500,
        mentor_payout=8500,
        payout_status=PayoutStatus.HELD,
        payout_released_at=clock.now + timedelta(days=5),
    )

    result = await fraud.report_fraud(db, booking.id, NOTES)

    assert result.fraud_reported is True
    assert result.already_reported is False
    await db.refresh(booking)
    assert booking.is_fraud_reported is True
    assert booking.fraud_reported_at == clock.now
    assert booking.fraud_notes == NOTES
    assert booking.payout_status == PayoutStatus.REFUNDED
    assert booking.payout_released_at is None


@pytest.mark.asyncio
async def test_repeat_report_keeps_original_notes(db, fraud, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor)

    await fraud.report_fraud(db, booking.id, NOTES)
    again = await fraud.report_fraud(db, booking.id, "A different complaint entirely")

    assert again.already_reported is True
    await db.refresh(booking)
    assert booking.fraud_notes == NOTES

    reports = await db.execute(select(PayoutAuditLog).where(PayoutAuditLog.action == "fraud_report"))
    assert len(reports.scalars().all()) == 1


@pytest.mark.asyncio
async def test_report_after_payout_is_rejected(db, fraud, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(
        mentor,
        platform_fee=1500,
        mentor_payout=8500,
        payout_status=PayoutStatus.PAID_OUT,
        payout_id="tr_done",
    )

    with pytest.raises(InvalidBookingStatus):
        await fraud.report_fraud(db, booking.id, NOTES)

    await db.refresh(booking)
    assert booking.is_fraud_reported is False
    assert booking.payout_status == PayoutStatus.PAID_OUT


@pytest.mark.asyncio
async def test_blank_notes_rejected(db, fraud, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor)

    with pytest.raises(ValidationError):
        await fraud.report_fraud(db, booking.id, "   ")


@pytest.mark.asyncio
async def test_second_fraud_report_deactivates_mentor(db, fraud, clock, make_mentor, make_booking):
    mentor = await make_mentor()
    first = await make_booking(mentor)
    second = await make_booking(mentor)

    first_result = await fraud.report_fraud(db, first.id, NOTES)
    second_result = await fraud.report_fraud(db, second.id, NOTES)

    assert first_result.mentor_deactivated is False
    assert second_result.mentor_deactivated is True
    await db.refresh(mentor)
    assert mentor.is_active is False
    assert mentor.deactivated_at == clock.now


@pytest.mark.asyncio
async def test_fraud_during_transfer_is_not_marked_paid(db, session_maker, payouts, fraud, gateway, make_mentor, make_booking):
    mentor = await make_mentor(is_trusted=True)
    booking = await make_booking(mentor)

    async def report_mid_transfer(call):
        async with session_maker() as other:
            await fraud.report_fraud(other, booking.id, NOTES)

    gateway.on_transfer = report_mid_transfer
    result = await payouts.process_booking_payout(db, booking.id)

    assert result.status == PayoutResultStatus.HELD
    assert result.fraud_blocked is True
    assert result.transfer_id == "tr_test_1"

    await db.refresh(booking)
    assert booking.payout_status == PayoutStatus.REFUNDED
    assert booking.payout_id is None
    assert booking.payout_claim_token is None

    block = (
        await db.execute(select(PayoutAuditLog).where(PayoutAuditLog.action == "fraud_block"))
    ).scalar_one()
    assert block.new_values["status"] == PayoutStatus.REFUNDED.value
    assert block.new_values["transfer_id"] == "tr_test_1"
