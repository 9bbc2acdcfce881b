"""Tests for the maintenance routes."""

from datetime import datetime, timedelta, timezone

import pytest
from api_data import ADDRESS, ADMIN, BUYER, OTHER_BUYER, SELLER


@pytest.fixture
def stale_offer(market, listed_escrow):
    """An offer whose expiry passed an hour ago."""
    offer = market.offers.create_offer(
        listed_escrow.id, BUYER, ADDRESS, offer_price_usd="6000", expires_in_hours=24
    ).offer
    offer.expires_at = datetime.now(timezone.utc) - timedelta(hours=1)
    assert market.offer_storage.update_offer(offer, expected_version=offer.version)
    return offer


class TestHealth:
    def test_healthy(self, client, headers_for):
        response = client.get("/api/v1/maintenance/health", headers=headers_for(ADMIN))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["stale_offers"] == 0
        assert data["pending_shipments"] == 0

    def test_reports_pending_work(self, client, headers_for, stale_offer):
        response = client.get("/api/v1/maintenance/health", headers=headers_for(ADMIN))

        data = response.json()
        assert data["status"] == "action_needed"
        assert data["stale_offers"] == 1

    def test_admin_only(self, client, headers_for):
        response = client.get("/api/v1/maintenance/health", headers=headers_for(SELLER))

        assert response.status_code == 403

    def test_requires_session(self, client):
        assert client.get("/api/v1/maintenance/health").status_code == 401


class TestExpireOffers:
    def test_dry_run_changes_nothing(self, client, headers_for, market, stale_offer):
        response = client.post(
            "/api/v1/maintenance/expire-offers",
            json={"dry_run": True},
            headers=headers_for(ADMIN),
        )

        assert response.status_code == 200
        assert response.json()["offer_ids"] == [stale_offer.id]
        assert market.offers.get_offer(stale_offer.id).status == "pending"

    def test_expires_stale_offers_only(self, client, headers_for, market, listed_escrow, stale_offer):
        fresh = market.offers.create_offer(
            listed_escrow.id, OTHER_BUYER, ADDRESS, offer_price_usd="5500"
        ).offer

        response = client.post(
            "/api/v1/maintenance/expire-offers", json={}, headers=headers_for(ADMIN)
        )

        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert market.offers.get_offer(stale_offer.id).status == "expired"
        assert market.offers.get_offer(fresh.id).status == "pending"
        escrow = market.escrows.get_escrow(listed_escrow.id)
        assert escrow.active_offer_count == 1
        assert escrow.highest_offer_id == fresh.id

    def test_stale_offer_listing(self, client, headers_for, stale_offer):
        response = client.get("/api/v1/maintenance/stale-offers", headers=headers_for(ADMIN))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["offers"][0]["id"] == stale_offer.id


class TestRefreshTracking:
    def test_refreshes_shipped_escrows(self, client, headers_for, shipped_escrow):
        response = client.post(
            "/api/v1/maintenance/refresh-tracking", json={}, headers=headers_for(ADMIN)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["failed"] == 0
        assert data["refreshed"][0] == {
            "escrow_id": shipped_escrow.id,
            "carrier_status": "in_transit",
            "error": None,
        }

    def test_carrier_failure_is_reported_per_escrow(self, client, headers_for, market, shipped_escrow):
        def broken(carrier, tracking_number):
            raise ConnectionError("carrier API down")

        market.shipments.provider.get_tracking = broken

        response = client.post(
            "/api/v1/maintenance/refresh-tracking", json={}, headers=headers_for(ADMIN)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["failed"] == 1
        assert data["refreshed"][0]["error"] == "carrier lookup failed"
