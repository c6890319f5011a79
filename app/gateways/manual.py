"""Manual payout gateway for development and staging."""

import uuid
from collections import OrderedDict

from app.gateways.base import (
    GatewayType,
    PayoutGateway,
    RefundResult,
    ReversalResult,
    TransferResult,
)


class ManualGateway(PayoutGateway):
    """Gateway that moves no money.

    Transfers succeed with synthetic ids and are settled by an admin outside
    the platform. Repeated calls with the same idempotency key return the
    same transfer, mirroring provider behaviour. Only the most recent
    ``max_remembered`` keys are kept, the oldest are forgotten first.
    """

    def __init__(self, max_remembered: int = 10_000):
        self.max_remembered = max_remembered
        self.transfers: OrderedDict[str, TransferResult] = OrderedDict()

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.MANUAL

    async def create_transfer(
        self,
        destination_account: str,
        amount: int,
        currency: str,
        reference_id: str,
        description: str,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> TransferResult:
        """Record a manual transfer (always succeeds)."""
        key = idempotency_key or uuid.uuid4().hex
        if key in self.transfers:
            return self.transfers[key]

        result = TransferResult(
            success=True,
            transfer_id=f"manual_tr_{uuid.uuid4().hex[:16]}",
            raw_response={
                "type": "manual_transfer",
                "status": "pending_settlement",
                "destination": destination_account,
                "amount": amount,
                "currency": currency,
                "booking_id": reference_id,
            },
        )
        self.transfers[key] = result
        while len(self.transfers) > self.max_remembered:
            self.transfers.popitem(last=False)
        return result

    async def reverse_transfer(
        self,
        transfer_id: str,
        amount: int | None = None,
    ) -> ReversalResult:
        """Record a manual reversal (admin settles it off-platform)."""
        return ReversalResult(
            success=True,
            reversal_id=f"manual_trr_{transfer_id}",
            raw_response={"type": "manual_reversal", "amount": amount},
        )

    async def process_refund(
        self,
        payment_intent_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        """Process manual refund (requires admin action)."""
        return RefundResult(
            success=True,
            refund_id=f"refund_{payment_intent_id}",
            raw_response={
                "type": "manual_refund",
                "status": "pending",
                "amount": amount,
                "reason": reason,
            },
        )
