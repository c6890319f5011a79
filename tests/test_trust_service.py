"""Trust ledger tests: idempotent verification and the one-time trust upgrade."""

import logging
import uuid

import pytest
from sqlalchemy import select

from app.core.exceptions import InvalidBookingStatus, NotFoundError
from app.models.audit import PayoutAuditLog
from app.models.mentor import Mentor


@pytest.mark.asyncio
async def test_verify_increments_count_once(db, ledger, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor)

    first = await ledger.verify_booking(db, booking.id)
    second = await ledger.verify_booking(db, booking.id)

    assert first.verified is True
    assert first.already_verified is False
    assert first.mentor_verified_count == 1
    assert second.already_verified is True
    assert second.mentor_verified_count == 1

    await db.refresh(mentor)
    await db.refresh(booking)
    assert mentor.verified_bookings_count == 1
    assert booking.is_verified is True
    assert booking.verified_at is not None


@pytest.mark.asyncio
async def test_crossing_threshold_grants_trust(db, ledger, clock, make_mentor, make_booking):
    mentor = await make_mentor(verified_bookings_count=4)
    booking = await make_booking(mentor)

    result = await ledger.verify_booking(db, booking.id)

    assert result.mentor_verified_count == 5
    assert result.mentor_now_trusted is True
    await db.refresh(mentor)
    assert mentor.is_trusted is True
    assert mentor.trusted_at == clock.now

    actions = (await db.execute(select(PayoutAuditLog.action))).scalars().all()
    assert "mentor_trusted" in actions
    assert "booking_verify" in actions


@pytest.mark.asyncio
async def test_trust_is_not_flagged_again_after_threshold(db, ledger, make_mentor, make_booking):
    mentor = await make_mentor(verified_bookings_count=4)
    fifth = await make_booking(mentor)
    sixth = await make_booking(mentor)

    assert (await ledger.verify_booking(db, fifth.id)).mentor_now_trusted is True
    result = await ledger.verify_booking(db, sixth.id)

    assert result.mentor_verified_count == 6
    assert result.mentor_now_trusted is False


@pytest.mark.asyncio
async def test_below_threshold_stays_untrusted(db, ledger, make_mentor, make_booking):
    mentor = await make_mentor(verified_bookings_count=2)
    booking = await make_booking(mentor)

    result = await ledger.verify_booking(db, booking.id)

    assert result.mentor_verified_count == 3
    assert result.mentor_now_trusted is False
    await db.refresh(mentor)
    assert mentor.is_trusted is False


@pytest.mark.asyncio
async def test_listeners_called_on_upgrade(db, ledger, make_mentor, make_booking):
    calls = []

    async def listener(mentor_id, count):
        calls.append((mentor_id, count))

    ledger.add_listener(listener)
    mentor = await make_mentor(verified_bookings_count=4)
    await ledger.verify_booking(db, (await make_booking(mentor)).id)
    await ledger.verify_booking(db, (await make_booking(mentor)).id)

    assert calls == [(mentor.id, 5)]


@pytest.mark.asyncio
async def test_listener_failure_does_not_undo_upgrade(db, ledger, make_mentor, make_booking, caplog):
    async def broken(mentor_id, count):
        raise RuntimeError("mail server down")

    ledger.add_listener(broken)
    mentor = await make_mentor(verified_bookings_count=4)
    booking = await make_booking(mentor)

    with caplog.at_level(logging.ERROR):
        result = await ledger.verify_booking(db, booking.id)

    assert result.mentor_now_trusted is True
    await db.refresh(mentor)
    assert mentor.is_trusted is True
    assert "listener failed" in caplog.text


@pytest.mark.asyncio
async def test_fraud_reported_booking_cannot_be_verified(db, ledger, make_mentor, make_booking):
    mentor = await make_mentor()
    booking = await make_booking(mentor, is_fraud_reported=True)

    with pytest.raises(InvalidBookingStatus):
        await ledger.verify_booking(db, booking.id)

    await db.refresh(mentor)
    assert mentor.verified_bookings_count == 0


@pytest.mark.asyncio
async def test_unknown_booking_raises(db, ledger):
    with pytest.raises(NotFoundError):
        await ledger.verify_booking(db, uuid.uuid4())


@pytest.mark.asyncio
async def test_verifications_from_separate_sessions_both_count(session_maker, ledger, make_mentor, make_booking):
    mentor = await make_mentor(verified_bookings_count=3)
    fourth = await make_booking(mentor)
    fifth = await make_booking(mentor)

    async with session_maker() as first, session_maker() as second:
        # Both sessions see the mentor at 3 before either verification lands
        assert (await first.get(Mentor, mentor.id)).verified_bookings_count == 3
        assert (await second.get(Mentor, mentor.id)).verified_bookings_count == 3

        results = [
            await ledger.verify_booking(first, fourth.id),
            await ledger.verify_booking(second, fifth.id),
        ]

    assert sorted(r.mentor_verified_count for r in results) == [4, 5]
    assert [r.mentor_now_trusted for r in results].count(True) == 1

    async with session_maker() as check:
        stored = await check.get(Mentor, mentor.id)
        assert stored.verified_bookings_count == 5
        assert stored.is_trusted is True
