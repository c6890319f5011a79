"""Platform fee calculation.

CRITICAL BUSINESS LOGIC:
- The platform keeps a flat 15% of every booking total
- The mentor receives the remainder, so fee + payout always equals the total
- Amounts are integer cents; the fee is rounded half-up to the nearest cent
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from app.config import settings
from app.core.exceptions import ValidationError


@dataclass(frozen=True)
class PayoutAmounts:
    """Split of a booking total between platform and mentor."""

    platform_fee: int
    mentor_payout: int

    @property
    def total_price(self) -> int:
        return self.platform_fee + self.mentor_payout


class CommissionService:
    """Service for splitting booking totals into platform fee and mentor payout."""

    def __init__(self, fee_percent: float | Decimal | None = None):
        percent = settings.platform_fee_percent if fee_percent is None else fee_percent
        self.fee_rate = Decimal(str(percent)) / Decimal("100")

    def calculate_platform_fee(self, total_price: int) -> int:
        """Calculate the platform fee in cents.

        Args:
            total_price: Booking total in cents

        Returns:
            int: Fee in cents, rounded half-up
        """
        fee = (Decimal(total_price) * self.fee_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return int(fee)

    def calculate_payout_amounts(self, total_price: int) -> PayoutAmounts:
        """Split a booking total into platform fee and mentor payout.

        The payout is derived by subtraction so the two parts never drift
        from the total through rounding.

        Args:
            total_price: Booking total in cents, must be positive

        Returns:
            PayoutAmounts

        Raises:
            ValidationError: If total_price is not a positive integer
        """
        if isinstance(total_price, bool) or not isinstance(total_price, int):
            raise ValidationError(f"total_price must be an integer amount of cents, got {total_price!r}")
        if total_price <= 0:
            raise ValidationError(f"total_price must be positive, got {total_price}")

        platform_fee = self.calculate_platform_fee(total_price)
        return PayoutAmounts(
            platform_fee=platform_fee,
            mentor_payout=total_price - platform_fee,
        )


commission_service = CommissionService()


def calculate_payout_amounts(total_price: int) -> PayoutAmounts:
    """Split using the configured platform fee."""
    return commission_service.calculate_payout_amounts(total_price)
