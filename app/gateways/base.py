"""Base payout gateway interface.

All gateway adapters must implement this interface.
Business logic should NOT live in adapters - only provider communication.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class GatewayType(str, Enum):
    """Supported payout gateways."""

    STRIPE = "stripe"
    MANUAL = "manual"


@dataclass
class TransferResult:
    """Result of a transfer to a connected account."""

    success: bool
    transfer_id: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


@dataclass
class ReversalResult:
    """Result of reversing a transfer."""

    success: bool
    reversal_id: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


@dataclass
class RefundResult:
    """Result of a refund operation."""

    success: bool
    refund_id: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


class PayoutGateway(ABC):
    """Abstract base class for payout gateways."""

    @property
    @abstractmethod
    def gateway_type(self) -> GatewayType:
        """Return the gateway type."""
        pass

    @abstractmethod
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
        """Move funds from the platform balance to a connected account.

        Args:
            destination_account: Connected account id
            amount: Amount in smallest currency unit (cents)
            currency: Currency code
            reference_id: Internal reference (booking_id)
            description: Transfer description
            metadata: Additional metadata
            idempotency_key: Provider-side dedup key

        Returns:
            TransferResult with transfer details
        """
        pass

    @abstractmethod
    async def reverse_transfer(
        self,
        transfer_id: str,
        amount: int | None = None,
    ) -> ReversalResult:
        """Pull a transfer back to the platform (full when amount is None)."""
        pass

    @abstractmethod
    async def process_refund(
        self,
        payment_intent_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        """Refund a student payment."""
        pass
