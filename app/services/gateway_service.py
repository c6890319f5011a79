"""Payout gateway selection.

No business logic here - only picks the adapter the payout core talks to.
"""

import logging
from functools import lru_cache

from app.config import settings
from app.gateways.base import PayoutGateway
from app.gateways.manual import ManualGateway
from app.gateways.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


def _is_production() -> bool:
    """Check if running in production environment."""
    return settings.environment == "production"


@lru_cache
def get_payout_gateway() -> PayoutGateway:
    """Return the process-wide payout gateway.

    Real Stripe transfers only happen in production; every other environment
    uses the manual gateway so no money moves by accident.

    Raises:
        RuntimeError: If production has no Stripe key configured
    """
    if _is_production():
        if not settings.stripe_secret_key:
            raise RuntimeError(
                "STRIPE_SECRET_KEY must be set in production; refusing to fall back "
                "to the manual payout gateway."
            )
        return StripeGateway()

    logger.info(f"Using manual payout gateway in {settings.environment} environment")
    return ManualGateway()
