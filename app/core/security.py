"""Shared-secret checks for internal callers.

End-user authentication happens in the web tier; this service only trusts
callers presenting the internal API key or, for the scheduler, the cron secret.
"""

import hmac

from app.config import settings
from app.core.exceptions import AuthenticationError


def _secrets_match(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode(), expected.encode())


def verify_internal_key(provided: str | None) -> None:
    """Raise AuthenticationError unless the internal API key matches."""
    if not provided or not _secrets_match(provided, settings.internal_api_key):
        raise AuthenticationError("Invalid internal API key")


def verify_bearer_secret(authorization: str | None) -> None:
    """Validate an ``Authorization: Bearer <cron secret>`` header.

    Raises:
        AuthenticationError: If the cron secret is missing, not configured,
            or does not match.
    """
    if not settings.cron_secret:
        raise AuthenticationError("Cron secret not configured")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Missing bearer token")

    if not _secrets_match(token, settings.cron_secret):
        raise AuthenticationError("Invalid cron secret")
