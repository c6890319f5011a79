"""Internal endpoints for the scheduler."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_payout_service, require_cron_secret
from app.core.clock import utcnow
from app.schemas.payout import PayoutSweepResponse
from app.services.payout_service import PayoutService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/payouts/run",
    response_model=PayoutSweepResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def run_payout_sweep(
    db: Annotated[AsyncSession, Depends(get_db)],
    payouts: Annotated[PayoutService, Depends(get_payout_service)],
) -> PayoutSweepResponse:
    """Auto-confirm overdue bookings, then release due holds.

    Failures of individual bookings are listed in the response; the run
    itself only fails on infrastructure errors.
    """
    auto_confirmed = await payouts.process_due_confirmations(db)
    released = await payouts.process_held_payouts(db)

    response = PayoutSweepResponse.model_validate(
        {"auto_confirmed": auto_confirmed, "released": released, "processed_at": utcnow()},
        from_attributes=True,
    )
    logger.info(f"[payout-cron] Sweep finished: {response.summary}")
    return response
