"""Idempotency keys for payment provider calls.

Duplicate protection inside this service comes from conditional updates on the
booking row. These keys are the second line: they are sent to the payment
provider so that a retried request for the same booking is collapsed into the
original transfer on the provider's side.
"""

import hashlib
import json
from typing import Any
from uuid import UUID


def generate_idempotency_key(
    operation: str,
    entity_id: UUID | str,
    params: dict[str, Any] | None = None,
) -> str:
    """Generate a deterministic idempotency key.

    Args:
        operation: Operation name (e.g., "payout_transfer")
        entity_id: Primary entity ID
        params: Additional parameters to include in key

    Returns:
        SHA256 hash of operation + entity + params
    """
    key_data = {
        "operation": operation,
        "entity_id": str(entity_id),
        "params": params or {},
    }
    key_str = json.dumps(key_data, sort_keys=True)
    return hashlib.sha256(key_str.encode()).hexdigest()


def payout_transfer_key(booking_id: UUID | str, amount: int) -> str:
    """Idempotency key for the single mentor transfer of a booking."""
    return generate_idempotency_key("payout_transfer", booking_id, {"amount": amount})
