"""Pytest configuration and fixtures."""

import os
import secrets
import sys
import uuid
from decimal import Decimal

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

# For unit tests, set mock values ONLY if not running integration tests
if not os.environ.get("RUN_INTEGRATION"):
    os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
    os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
    os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
    os.environ.setdefault("SOL_USD_RATE", "100")
else:
    # For integration tests, load from .env
    from pathlib import Path

    from dotenv import load_dotenv

    env_path = Path(__file__).parent.parent / ".env"

    # Safety check: require explicit confirmation for integration tests
    if not os.environ.get("CONFIRM_INTEGRATION_CREDENTIALS"):
        print(
            "\nIntegration tests use REAL credentials from .env. "
            "Set CONFIRM_INTEGRATION_CREDENTIALS=yes to proceed.\n",
            file=sys.stderr,
        )
        pytest.exit(
            "Integration tests require CONFIRM_INTEGRATION_CREDENTIALS=yes",
            returncode=1,
        )
    load_dotenv(env_path, override=True)

from app.main import app  # noqa: E402
from app.rate_limit import limiter  # noqa: E402
from app.services import get_marketplace  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from luxhub.config import MarketplaceConfig  # noqa: E402
from luxhub.marketplace import build_marketplace  # noqa: E402
from luxhub.protocols import Permission  # noqa: E402
from luxhub.testing import (  # noqa: E402
    FakeSettlementAuthority,
    FakeShippingProvider,
    InMemoryAssetStore,
    RecordingNotificationSink,
    StaticAuthorizationService,
)

from api_data import ADDRESS, ADMIN, BUYER, PROOF_URLS, SELLER  # noqa: E402


@pytest.fixture
def authority():
    return FakeSettlementAuthority()


@pytest.fixture
def notifications():
    return RecordingNotificationSink()


@pytest.fixture
def market(authority, notifications):
    """Marketplace services on in-memory stores and fakes."""
    authorization = StaticAuthorizationService()
    authorization.grant(
        ADMIN,
        Permission.APPROVE_LISTINGS,
        Permission.MANAGE_ESCROWS,
        Permission.EXECUTE_SQUADS,
    )
    return build_marketplace(
        config=MarketplaceConfig(sol_usd_rate=Decimal("100"), fee_recipient_wallet="treasury"),
        assets=InMemoryAssetStore(),
        notifications=notifications,
        authorization=authorization,
        settlement_authority=authority,
        shipping_provider=FakeShippingProvider(),
    )


@pytest.fixture
def client(market):
    """Test client with the marketplace dependency overridden."""
    app.dependency_overrides[get_marketplace] = lambda: market
    limiter.enabled = False
    yield TestClient(app)
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture
def headers_for():
    """Build auth headers for a wallet."""
    from app.auth import create_access_token
    from app.config import get_settings

    def _headers(wallet: str) -> dict:
        token = create_access_token(wallet, get_settings())
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def listed_escrow(market):
    """A listed escrow at $10,000 that accepts offers from $5,000."""
    escrow = market.escrows.create_escrow(
        f"asset-{uuid.uuid4().hex[:8]}",
        SELLER,
        {
            "escrow_address": f"escrow-{uuid.uuid4().hex[:12]}",
            "listing_price_usd": Decimal("10000"),
            "minimum_offer_usd": Decimal("5000"),
            "sale_mode": "accepting_offers",
            "accepting_offers": True,
        },
    ).escrow
    return market.escrows.mark_listed(escrow.id, ADMIN).escrow


@pytest.fixture
def funded_escrow(market, listed_escrow):
    return market.escrows.transition_on_funding(
        listed_escrow.id, BUYER, shipping_address=ADDRESS
    ).escrow


@pytest.fixture
def shipped_escrow(market, funded_escrow):
    return market.shipments.submit_shipment(
        funded_escrow.id, SELLER, "ups", "1Z999AA10123456784", PROOF_URLS
    ).escrow
