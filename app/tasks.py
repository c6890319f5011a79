"""Celery background tasks.

This module contains the scheduled payout work:
- Auto-confirming bookings past their confirmation deadline
- Releasing anti-fraud holds that are due
"""

import asyncio
import logging

from celery import shared_task

from app.core.clock import utcnow
from app.core.immutability import register_immutability_enforcement
from app.database import close_db, get_db_context
from app.schemas.payout import PayoutSweepResponse
from app.services.payout_service import payout_service

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


# ==================== PAYOUT TASKS ====================


@shared_task(bind=True, max_retries=3)
def run_payout_sweep(self):
    """Daily payout job.

    Runs at ``payout_sweep_hour``. Per-booking failures are part of the
    returned report; only infrastructure errors trigger a retry.
    """
    try:
        report = run_async(_run_payout_sweep())
    except Exception as exc:
        logger.error(f"[payout-cron] Payout sweep failed, retrying: {exc}")
        raise self.retry(exc=exc, countdown=300 * (self.request.retries + 1))

    return {"status": "success", **report.summary}


async def _run_payout_sweep() -> PayoutSweepResponse:
    """Async implementation of the daily payout sweep."""
    register_immutability_enforcement()
    try:
        async with get_db_context() as db:
            auto_confirmed = await payout_service.process_due_confirmations(db)
            released = await payout_service.process_held_payouts(db)
    finally:
        # Pooled connections belong to this event loop
        await close_db()

    report = PayoutSweepResponse.model_validate(
        {"auto_confirmed": auto_confirmed, "released": released, "processed_at": utcnow()},
        from_attributes=True,
    )
    logger.info(f"[payout-cron] Sweep finished: {report.summary}")
    return report
