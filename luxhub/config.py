"""Configuration for the marketplace core."""

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

# Platform fee taken on every release. Fixed business rule, not configurable.
PLATFORM_FEE_RATE = Decimal("0.03")

LAMPORTS_PER_SOL = 1_000_000_000


@dataclass
class MarketplaceConfig:
    """Runtime settings shared by all marketplace services.

    The SOL/USD reference rate is injected here once instead of being
    hard-coded at each conversion site. It is never fetched live by the core.
    """

    sol_usd_rate: Decimal = Decimal("150")
    lamports_per_sol: int = LAMPORTS_PER_SOL
    fee_recipient_wallet: Optional[str] = None
    max_offer_expiry_hours: int = 24 * 30
    sweep_max_attempts: int = 3
    cas_max_attempts: int = 5

    def __post_init__(self):
        if not isinstance(self.sol_usd_rate, Decimal):
            self.sol_usd_rate = Decimal(str(self.sol_usd_rate))
        if self.sol_usd_rate <= 0:
            raise ValueError("sol_usd_rate must be positive")
        if self.lamports_per_sol <= 0:
            raise ValueError("lamports_per_sol must be positive")
        if self.sweep_max_attempts < 1 or self.cas_max_attempts < 1:
            raise ValueError("Retry attempts must be at least 1")

    @classmethod
    def from_env(cls) -> "MarketplaceConfig":
        """Build config from LUXHUB_* environment variables."""
        return cls(
            sol_usd_rate=Decimal(os.environ.get("LUXHUB_SOL_USD_RATE", "150")),
            fee_recipient_wallet=os.environ.get("LUXHUB_FEE_RECIPIENT_WALLET") or None,
            max_offer_expiry_hours=int(os.environ.get("LUXHUB_MAX_OFFER_EXPIRY_HOURS", 24 * 30)),
        )
