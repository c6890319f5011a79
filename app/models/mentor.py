"""Mentor payout-account and trust models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.database import Base
from app.models.types import UTCDateTime

if TYPE_CHECKING:
    from app.models.booking import Booking


class Mentor(Base):
    """Mentor as seen by the payout core.

    Profile data lives with the marketplace; only the payout account and
    trust ledger are kept here.
    """

    __tablename__ = "mentors"
    __table_args__ = (
        CheckConstraint("verified_bookings_count >= 0", name="ck_mentors_verified_count_nonneg"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)
    display_name: Mapped[str | None] = mapped_column(String(200))

    # Payment provider account
    stripe_connect_id: Mapped[str | None] = mapped_column(String(100), unique=True)
    stripe_onboarded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Trust ledger
    verified_bookings_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_trusted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    trusted_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Account standing
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deactivated_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    bookings: Mapped[list["Booking"]] = relationship("Booking", back_populates="mentor")
