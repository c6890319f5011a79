"""API dependencies for internal authentication and service wiring."""

from typing import Annotated

from fastapi import Depends, Header

from app.core.security import verify_bearer_secret, verify_internal_key
from app.database import get_db
from app.services.fraud_service import FraudService, fraud_service
from app.services.payout_service import PayoutService, payout_service
from app.services.trust_service import TrustLedger, trust_ledger

__all__ = [
    "get_db",
    "get_fraud_service",
    "get_payout_service",
    "get_trust_ledger",
    "require_cron_secret",
    "require_internal_key",
]


async def require_internal_key(
    x_internal_key: Annotated[str | None, Header()] = None,
) -> None:
    """Only the web tier, holding the internal API key, may call booking routes."""
    verify_internal_key(x_internal_key)


async def require_cron_secret(
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Scheduler calls authenticate with ``Authorization: Bearer <cron secret>``."""
    verify_bearer_secret(authorization)


def get_payout_service() -> PayoutService:
    return payout_service


def get_trust_ledger() -> TrustLedger:
    return trust_ledger


def get_fraud_service() -> FraudService:
    return fraud_service

