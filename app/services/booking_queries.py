"""Fresh reads of bookings and mentors for the payout core.

Services mutate rows with conditional UPDATE statements, so the identity map
can hold stale copies; every read here repopulates from the database.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.models.booking import Booking
from app.models.mentor import Mentor


async def get_booking(db: AsyncSession, booking_id: UUID) -> Booking:
    """Get booking by ID or raise NotFoundError."""
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking", str(booking_id))
    return booking


async def get_mentor(db: AsyncSession, mentor_id: UUID) -> Mentor:
    """Get mentor by ID or raise NotFoundError."""
    mentor = await db.get(Mentor, mentor_id, populate_existing=True)
    if not mentor:
        raise NotFoundError("Mentor", str(mentor_id))
    return mentor


async def get_booking_with_mentor(
    db: AsyncSession, booking_id: UUID
) -> tuple[Booking, Mentor]:
    """Get a booking and its mentor, both freshly loaded."""
    booking = await get_booking(db, booking_id)
    mentor = await get_mentor(db, booking.mentor_id)
    return booking, mentor
