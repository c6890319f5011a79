"""Booking payout model."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.database import Base
from app.domain.payout_state import PayoutStatus
from app.models.types import UTCDateTime

if TYPE_CHECKING:
    from app.models.mentor import Mentor


class Booking(Base):
    """A paid mentorship booking, the unit of payout and trust."""

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("total_price > 0", name="ck_bookings_total_price_positive"),
        CheckConstraint(
            "platform_fee IS NULL OR mentor_payout IS NULL "
            "OR platform_fee + mentor_payout = total_price",
            name="ck_bookings_fee_split",
        ),
        Index("ix_bookings_payout_sweep", "payout_status", "payout_released_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    mentor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("mentors.id"), nullable=False, index=True
    )
    student_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)

    # Pricing (in cents)
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd")
    platform_fee: Mapped[int | None] = mapped_column(Integer)  # set once, then immutable
    mentor_payout: Mapped[int | None] = mapped_column(Integer)  # total_price - platform_fee

    # Payment (written by the upstream payment confirmation)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(100))

    # Confirmation
    student_confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    auto_confirm_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Trust ledger guard: counted toward the mentor at most once
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Fraud (permanent once reported)
    is_fraud_reported: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fraud_reported_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    fraud_notes: Mapped[str | None] = mapped_column(Text)

    # Payout
    payout_status: Mapped[PayoutStatus] = mapped_column(
        Enum(
            PayoutStatus,
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        default=PayoutStatus.NONE,
        nullable=False,
    )
    payout_released_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime
    )  # HELD: scheduled release, PAID_OUT: actual payout time
    payout_id: Mapped[str | None] = mapped_column(String(100))  # provider transfer id

    # In-flight transfer claim, taken before calling the provider
    payout_claim_token: Mapped[str | None] = mapped_column(String(64))
    payout_claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    mentor: Mapped["Mentor"] = relationship("Mentor", back_populates="bookings")
