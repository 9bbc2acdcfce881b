"""
Pytest fixtures and test configuration for LuxHub marketplace tests.
"""

import uuid
from decimal import Decimal

import pytest

from luxhub.config import MarketplaceConfig
from luxhub.marketplace import build_marketplace
from luxhub.protocols import Permission
from luxhub.testing import (
    FakeSettlementAuthority,
    FakeShippingProvider,
    InMemoryAssetStore,
    RecordingNotificationSink,
    StaticAuthorizationService,
)

from marketplace_data import ADDRESS, ADMIN, BUYER, PROOF_URLS, SELLER, FakeClock, usd


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return MarketplaceConfig(sol_usd_rate=Decimal("100"), fee_recipient_wallet="luxhub-treasury")


@pytest.fixture
def notifications():
    return RecordingNotificationSink()


@pytest.fixture
def authorization():
    auth = StaticAuthorizationService()
    auth.grant(
        ADMIN,
        Permission.APPROVE_LISTINGS,
        Permission.MANAGE_ESCROWS,
        Permission.EXECUTE_SQUADS,
    )
    return auth


@pytest.fixture
def assets():
    return InMemoryAssetStore()


@pytest.fixture
def authority():
    return FakeSettlementAuthority()


@pytest.fixture
def provider():
    return FakeShippingProvider()


@pytest.fixture
def market(config, notifications, authorization, assets, authority, provider, clock):
    """All services wired to in-memory stores and fakes."""
    return build_marketplace(
        config=config,
        assets=assets,
        notifications=notifications,
        authorization=authorization,
        settlement_authority=authority,
        shipping_provider=provider,
        clock=clock,
    )


@pytest.fixture
def make_escrow(market):
    """Create a listed escrow. Keyword arguments override the default terms."""

    def _make(listed: bool = True, asset_ref: str = None, seller: str = SELLER, **terms):
        defaults = {
            "escrow_address": f"escrow-{uuid.uuid4().hex[:12]}",
            "listing_price_usd": usd(10000),
            "sale_mode": "accepting_offers",
            "accepting_offers": True,
        }
        defaults.update(terms)
        result = market.escrows.create_escrow(
            asset_ref or f"asset-{uuid.uuid4().hex[:8]}", seller, defaults
        )
        escrow = result.escrow
        if listed:
            escrow = market.escrows.mark_listed(escrow.id, ADMIN).escrow
        return escrow

    return _make


@pytest.fixture
def make_offer(market):
    """Submit an offer in USD from a buyer."""

    def _make(escrow_id: str, buyer: str = BUYER, amount_usd=9000, **kwargs):
        return market.offers.create_offer(
            escrow_id,
            buyer,
            kwargs.pop("shipping_address", ADDRESS),
            offer_price_usd=usd(amount_usd),
            **kwargs,
        ).offer

    return _make


@pytest.fixture
def funded_escrow(market, make_escrow):
    """An escrow bought directly by BUYER at the listing price."""
    escrow = make_escrow()
    return market.escrows.transition_on_funding(escrow.id, BUYER, shipping_address=ADDRESS).escrow


@pytest.fixture
def shipped_escrow(market, funded_escrow):
    return market.shipments.submit_shipment(
        funded_escrow.id, SELLER, "FedEx", "7712 3456 7890", PROOF_URLS
    ).escrow
