"""Payout-related Pydantic schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PayoutResultResponse(BaseModel):
    """Outcome of one payout call. ``status`` is null for deferred no-ops."""

    model_config = ConfigDict(from_attributes=True)

    booking_id: UUID
    status: str | None = None
    skip_reason: str | None = None
    reason: str | None = None
    release_date: datetime | None = None
    auto_confirm_at: datetime | None = None
    transfer_id: str | None = None
    amount: int | None = None
    fraud_blocked: bool = False


class PayoutStatusResponse(BaseModel):
    """Derived payout phase of a booking."""

    model_config = ConfigDict(from_attributes=True)

    booking_id: UUID
    phase: str
    payout_status: str
    details: dict[str, Any]


class VerificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    verified: bool
    already_verified: bool
    mentor_verified_count: int
    mentor_now_trusted: bool


class ConfirmationResponse(BaseModel):
    """Student confirmation, with the payout attempt that followed it."""

    model_config = ConfigDict(from_attributes=True)

    booking_id: UUID
    confirmed: bool
    already_confirmed: bool
    verification: VerificationResponse | None = None
    payout: PayoutResultResponse | None = None
    payout_error: str | None = None


class FraudReportCreate(BaseModel):
    """Schema for reporting fraud on a booking."""

    notes: str = Field(..., min_length=10, max_length=2000)


class FraudReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: UUID
    fraud_reported: bool
    already_reported: bool
    mentor_deactivated: bool


class SweepItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: UUID
    success: bool
    result: PayoutResultResponse | None = None
    error: str | None = None


class PayoutSweepResponse(BaseModel):
    """Results of the daily payout job."""

    auto_confirmed: list[SweepItemResponse]
    released: list[SweepItemResponse]
    processed_at: datetime

    @property
    def summary(self) -> dict[str, int]:
        return {
            "auto_confirmed": sum(1 for item in self.auto_confirmed if item.success),
            "released": sum(1 for item in self.released if item.success),
            "failed": sum(1 for item in self.auto_confirmed + self.released if not item.success),
        }
