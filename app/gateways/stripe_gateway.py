"""Stripe Connect payout gateway adapter."""

import logging

import stripe

from app.config import settings
from app.gateways.base import (
    GatewayType,
    PayoutGateway,
    RefundResult,
    ReversalResult,
    TransferResult,
)

logger = logging.getLogger(__name__)


class StripeGateway(PayoutGateway):
    """Stripe Connect transfers to mentor Express accounts."""

    def __init__(self, secret_key: str | None = None):
        self.secret_key = secret_key or settings.stripe_secret_key

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.STRIPE

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
        """Create a Stripe Transfer tagged with the booking id."""
        if not self.secret_key:
            return TransferResult(
                success=False,
                error_message="Stripe not configured",
            )

        params: dict = {
            "api_key": self.secret_key,
            "amount": amount,
            "currency": currency.lower(),
            "destination": destination_account,
            "description": description,
            "metadata": {"booking_id": reference_id, **(metadata or {})},
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            transfer = await stripe.Transfer.create_async(**params)

            return TransferResult(
                success=True,
                transfer_id=transfer.id,
                raw_response={
                    "id": transfer.id,
                    "amount": transfer.amount,
                    "destination": transfer.destination,
                },
            )

        except stripe.StripeError as e:
            logger.error(f"[stripe] Transfer for {reference_id} failed: {e}")
            return TransferResult(
                success=False,
                error_message=str(e.user_message or e),
            )

    async def reverse_transfer(
        self,
        transfer_id: str,
        amount: int | None = None,
    ) -> ReversalResult:
        """Reverse a Stripe Transfer."""
        if not self.secret_key:
            return ReversalResult(
                success=False,
                error_message="Stripe not configured",
            )

        params: dict = {"api_key": self.secret_key}
        if amount is not None:
            params["amount"] = amount

        try:
            reversal = await stripe.Transfer.create_reversal_async(transfer_id, **params)

            return ReversalResult(
                success=True,
                reversal_id=reversal.id,
                raw_response={"id": reversal.id, "amount": reversal.amount},
            )

        except stripe.StripeError as e:
            logger.error(f"[stripe] Reversal of {transfer_id} failed: {e}")
            return ReversalResult(
                success=False,
                error_message=str(e.user_message or e),
            )

    async def process_refund(
        self,
        payment_intent_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        """Refund a student's PaymentIntent."""
        if not self.secret_key:
            return RefundResult(
                success=False,
                error_message="Stripe not configured",
            )

        try:
            refund = await stripe.Refund.create_async(
                api_key=self.secret_key,
                payment_intent=payment_intent_id,
                amount=amount,
                reason="fraudulent",
                metadata={"reason": reason[:500]},
            )

            return RefundResult(
                success=refund.status == "succeeded",
                refund_id=refund.id,
                raw_response={"status": refund.status, "id": refund.id},
            )

        except stripe.StripeError as e:
            logger.error(f"[stripe] Refund of {payment_intent_id} failed: {e}")
            return RefundResult(
                success=False,
                error_message=str(e.user_message or e),
            )
