"""Wiring for the marketplace services."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from luxhub.config import MarketplaceConfig
from luxhub.escrow.service import EscrowService
from luxhub.escrow.storage import EscrowStorage, InMemoryEscrowStorage
from luxhub.offers.service import OfferService
from luxhub.offers.storage import InMemoryOfferStorage, OfferStorage
from luxhub.protocols import (
    AssetStore,
    AuthorizationService,
    NotificationSink,
    SettlementAuthority,
    ShippingProvider,
)
from luxhub.settlement.service import SettlementService
from luxhub.shipping.service import ShipmentService


@dataclass
class Marketplace:
    """All marketplace services sharing one set of stores and collaborators."""

    config: MarketplaceConfig
    escrow_storage: EscrowStorage
    offer_storage: OfferStorage
    offers: OfferService
    escrows: EscrowService
    shipments: ShipmentService
    settlement: SettlementService


def build_marketplace(
    escrow_storage: Optional[EscrowStorage] = None,
    offer_storage: Optional[OfferStorage] = None,
    config: Optional[MarketplaceConfig] = None,
    assets: Optional[AssetStore] = None,
    notifications: Optional[NotificationSink] = None,
    authorization: Optional[AuthorizationService] = None,
    settlement_authority: Optional[SettlementAuthority] = None,
    shipping_provider: Optional[ShippingProvider] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Marketplace:
    """Build the services once. Missing stores default to in-memory ones."""
    config = config or MarketplaceConfig()
    escrow_storage = escrow_storage if escrow_storage is not None else InMemoryEscrowStorage()
    offer_storage = offer_storage if offer_storage is not None else InMemoryOfferStorage()

    offers = OfferService(
        offer_storage,
        escrow_storage,
        config=config,
        notifications=notifications,
        authorization=authorization,
        clock=clock,
    )
    escrows = EscrowService(
        escrow_storage,
        offers,
        config=config,
        assets=assets,
        notifications=notifications,
        authorization=authorization,
        clock=clock,
    )
    settlement = SettlementService(
        escrow_storage,
        authority=settlement_authority,
        config=config,
        assets=assets,
        notifications=notifications,
        authorization=authorization,
        clock=clock,
    )
    shipments = ShipmentService(
        escrow_storage,
        config=config,
        provider=shipping_provider,
        settlement=settlement,
        notifications=notifications,
        authorization=authorization,
        clock=clock,
    )
    return Marketplace(
        config=config,
        escrow_storage=escrow_storage,
        offer_storage=offer_storage,
        offers=offers,
        escrows=escrows,
        shipments=shipments,
        settlement=settlement,
    )
