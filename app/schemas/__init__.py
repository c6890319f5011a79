"""Pydantic schemas for API validation."""

from app.schemas.payout import (
    ConfirmationResponse,
    FraudReportCreate,
    FraudReportResponse,
    PayoutResultResponse,
    PayoutStatusResponse,
    PayoutSweepResponse,
    SweepItemResponse,
    VerificationResponse,
)

__all__ = [
    "ConfirmationResponse",
    "FraudReportCreate",
    "FraudReportResponse",
    "PayoutResultResponse",
    "PayoutStatusResponse",
    "PayoutSweepResponse",
    "SweepItemResponse",
    "VerificationResponse",
]
