"""Conversions between settlement units (lamports) and USD.

Every monetary value travels as a pair: an integer in the smallest settlement
unit and a USD Decimal. When a caller only supplies one leg, the other is
derived from the configured reference rate.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Optional, Tuple

from luxhub.config import PLATFORM_FEE_RATE, MarketplaceConfig

USD_QUANTUM = Decimal("0.01")


def royalty_for(listing_price_usd: Optional[Decimal]) -> Optional[Decimal]:
    """Platform royalty on a USD listing price (exactly 3%)."""
    if listing_price_usd is None:
        return None
    return Decimal(listing_price_usd) * PLATFORM_FEE_RATE


class RateConverter:
    """Converts between lamports and USD at a fixed reference rate."""

    def __init__(self, config: MarketplaceConfig):
        self.rate = config.sol_usd_rate
        self.lamports_per_sol = config.lamports_per_sol

    def usd_to_lamports(self, amount_usd: Decimal) -> int:
        sol = Decimal(amount_usd) / self.rate
        return int((sol * self.lamports_per_sol).to_integral_value(rounding=ROUND_DOWN))

    def lamports_to_usd(self, lamports: int) -> Decimal:
        sol = Decimal(lamports) / Decimal(self.lamports_per_sol)
        return (sol * self.rate).quantize(USD_QUANTUM, rounding=ROUND_HALF_UP)

    def complete(
        self,
        amount: Optional[int] = None,
        amount_usd: Optional[Decimal] = None,
    ) -> Tuple[int, Decimal]:
        """Return (lamports, usd), deriving whichever leg is missing.

        Raises:
            ValueError: If neither leg is provided or a leg is not positive
        """
        if amount is None and amount_usd is None:
            raise ValueError("An amount in lamports or USD is required")
        if amount_usd is not None:
            amount_usd = Decimal(str(amount_usd))
            if amount_usd <= 0:
                raise ValueError("Amount must be positive")
        if amount is not None and int(amount) <= 0:
            raise ValueError("Amount must be positive")

        if amount is None:
            amount = self.usd_to_lamports(amount_usd)
            if amount <= 0:
                raise ValueError("Amount is too small to settle")
        elif amount_usd is None:
            amount_usd = self.lamports_to_usd(amount)
        return int(amount), amount_usd


@dataclass(frozen=True)
class ReleaseSplit:
    """How a settled amount is divided on release."""

    total: int
    seller_amount: int
    fee_amount: int


def split_release(total: int) -> ReleaseSplit:
    """Split a release into 97% seller proceeds and a 3% platform fee.

    The fee is rounded down so the seller never receives less than 97%.
    """
    if total < 0:
        raise ValueError("Release amount cannot be negative")
    fee = int((Decimal(total) * PLATFORM_FEE_RATE).to_integral_value(rounding=ROUND_DOWN))
    return ReleaseSplit(total=total, seller_amount=total - fee, fee_amount=fee)
