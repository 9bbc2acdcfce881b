"""Marketplace service wiring for the API."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from luxhub.errors import UnauthorizedError
from luxhub.marketplace import Marketplace, build_marketplace
from luxhub.protocols import Permission

from .collaborators import (
    EasyPostShippingProvider,
    HttpSettlementAuthority,
    SupabaseAssetStore,
    SupabaseAuthorizationService,
    SupabaseNotificationSink,
)
from .config import get_settings
from .database import get_supabase_client
from .logging_config import get_logger
from .storage import SupabaseEscrowStorage, SupabaseOfferStorage

logger = get_logger("services")


@lru_cache
def get_marketplace() -> Marketplace:
    """Build the marketplace services once per process."""
    settings = get_settings()
    db = get_supabase_client(settings)

    authority = None
    if settings.settlement_api_url:
        authority = HttpSettlementAuthority(
            settings.settlement_api_url,
            api_key=settings.settlement_api_key,
            timeout=settings.http_timeout_seconds,
        )
    else:
        logger.warning("SETTLEMENT_API_URL not set; release proposals are disabled")

    provider = None
    if settings.easypost_api_key:
        provider = EasyPostShippingProvider(
            settings.easypost_api_key, timeout=settings.http_timeout_seconds
        )

    return build_marketplace(
        escrow_storage=SupabaseEscrowStorage(db),
        offer_storage=SupabaseOfferStorage(db),
        config=settings.marketplace_config(),
        assets=SupabaseAssetStore(db),
        notifications=SupabaseNotificationSink(db),
        authorization=SupabaseAuthorizationService(
            db, env_admins={*settings.admin_wallets, *settings.super_admin_wallets}
        ),
        settlement_authority=authority,
        shipping_provider=provider,
    )


# Type alias for dependency injection
MarketplaceServices = Annotated[Marketplace, Depends(get_marketplace)]


def require_permission(
    market: Marketplace, wallet: str, permission: Permission = Permission.MANAGE_ESCROWS
) -> None:
    """Guard for admin-only endpoints that have no service-level check."""
    authorization = market.escrows.authorization
    if authorization is None or not authorization.is_authorized(wallet, permission.value):
        logger.warning(f"Wallet {wallet} denied {permission.value}")
        raise UnauthorizedError(
            f"Wallet lacks the {permission.value} permission",
            wallet=wallet,
            permission=permission.value,
        )
