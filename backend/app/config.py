"""Configuration settings for the LuxHub marketplace backend."""

from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings

from luxhub.config import MarketplaceConfig


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase
    supabase_url: str
    supabase_secret_key: str | None = None  # Backend/admin access
    # Legacy key name, still accepted
    supabase_service_role_key: str | None = None

    # JWT (wallet sessions are issued by the web app after a signed-message login)
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24  # 1 day

    # Admins configured by env get every permission; others come from admin_roles
    admin_wallets: list[str] = []
    super_admin_wallets: list[str] = []

    # Marketplace
    sol_usd_rate: Decimal = Decimal("150")
    fee_recipient_wallet: str | None = None
    max_offer_expiry_hours: int = 24 * 30

    # Settlement bridge (multisig proposal service)
    settlement_api_url: str | None = None
    settlement_api_key: str | None = None

    # Shipping
    easypost_api_key: str | None = None
    http_timeout_seconds: float = 15.0

    # App
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "https://luxhub.gold",
        "https://www.luxhub.gold",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    def marketplace_config(self) -> MarketplaceConfig:
        """Core settings shared by every marketplace service."""
        return MarketplaceConfig(
            sol_usd_rate=self.sol_usd_rate,
            fee_recipient_wallet=self.fee_recipient_wallet,
            max_offer_expiry_hours=self.max_offer_expiry_hours,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
