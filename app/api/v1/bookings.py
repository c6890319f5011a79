"""Booking payout, verification, confirmation and fraud endpoints.

Called by the web tier after it has authenticated the end user.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_fraud_service, get_payout_service, get_trust_ledger
from app.schemas.payout import (
    ConfirmationResponse,
    FraudReportCreate,
    FraudReportResponse,
    PayoutResultResponse,
    PayoutStatusResponse,
    VerificationResponse,
)
from app.services.fraud_service import FraudReportResult, FraudService
from app.services.payout_service import (
    ConfirmationResult,
    PayoutResult,
    PayoutService,
    PayoutView,
)
from app.services.trust_service import TrustLedger, VerificationResult

router = APIRouter()


@router.post("/{booking_id}/payout", response_model=PayoutResultResponse)
async def process_payout(
    booking_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    payouts: Annotated[PayoutService, Depends(get_payout_service)],
) -> PayoutResult:
    """Run the payout decision for a booking (after payment confirmation)."""
    return await payouts.process_booking_payout(db, booking_id)


@router.get("/{booking_id}/payout", response_model=PayoutStatusResponse)
async def get_payout_status(
    booking_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    payouts: Annotated[PayoutService, Depends(get_payout_service)],
) -> PayoutView:
    """Get the derived payout phase of a booking."""
    return await payouts.describe_payout(db, booking_id)


@router.post("/{booking_id}/verify", response_model=VerificationResponse)
async def verify_booking(
    booking_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    ledger: Annotated[TrustLedger, Depends(get_trust_ledger)],
) -> VerificationResult:
    """Count a completed booking toward the mentor's trust."""
    return await ledger.verify_booking(db, booking_id)


@router.post("/{booking_id}/confirm", response_model=ConfirmationResponse)
async def confirm_booking(
    booking_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    payouts: Annotated[PayoutService, Depends(get_payout_service)],
) -> ConfirmationResult:
    """Student confirms the session took place.

    The payout is attempted right away; a failed transfer is reported in the
    response and retried later without undoing the confirmation.
    """
    return await payouts.confirm_booking(db, booking_id)


@router.post("/{booking_id}/fraud-report", response_model=FraudReportResponse)
async def report_fraud(
    booking_id: UUID,
    request: FraudReportCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    fraud: Annotated[FraudService, Depends(get_fraud_service)],
) -> FraudReportResult:
    """Report fraud on a booking and block its payout."""
    return await fraud.report_fraud(db, booking_id, request.notes)
