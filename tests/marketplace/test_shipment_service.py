"""Tests for vendor shipment submission and admin verification."""

import pytest

from luxhub.errors import (
    InvalidStateError,
    UnauthorizedError,
    UnsupportedCarrier,
    ValidationError,
)

from marketplace_data import ADMIN, BUYER, OUTSIDER, PROOF_URLS, SELLER

FROM_ADDRESS = {
    "full_name": "LuxHub Vault",
    "street1": "1 Vault Way",
    "city": "Miami",
    "state": "FL",
    "postal_code": "33101",
    "country": "US",
}
PARCEL = {"length": 8, "width": 6, "height": 4, "weight_oz": 32}


class TestSubmitShipment:
    def test_submit(self, market, funded_escrow, notifications, clock):
        result = market.shipments.submit_shipment(
            funded_escrow.id, SELLER, "Fed Ex", " 7712 3456 7890 ", PROOF_URLS
        )

        escrow = result.escrow
        assert escrow.status == "shipped"
        assert escrow.shipment_status == "proof_submitted"
        assert escrow.tracking_carrier == "fedex"
        assert escrow.tracking_number == "7712 3456 7890"
        assert escrow.proof_urls == PROOF_URLS
        assert escrow.shipment_submitted_at == clock.now
        assert escrow.shipped_at == clock.now
        assert result.tracking_url == "https://www.fedex.com/fedextrack/?trknbr=7712 3456 7890"
        assert "order_shipped" in notifications.types_for(BUYER)
        assert "shipment_submitted" in notifications.types_for(SELLER)

    def test_other_carrier_has_no_link(self, market, funded_escrow):
        result = market.shipments.submit_shipment(
            funded_escrow.id, SELLER, "other", "LOCAL-1", ["https://img.example.com/box.jpg"]
        )

        assert result.escrow.tracking_carrier == "other"
        assert result.tracking_url is None

    def test_only_seller(self, market, funded_escrow):
        with pytest.raises(UnauthorizedError):
            market.shipments.submit_shipment(funded_escrow.id, BUYER, "ups", "1Z999", PROOF_URLS)

    def test_needs_buyer(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(InvalidStateError, match="no buyer"):
            market.shipments.submit_shipment(escrow.id, SELLER, "ups", "1Z999", PROOF_URLS)

    def test_needs_funding(self, market, make_escrow, make_offer):
        escrow = make_escrow()
        offer = make_offer(escrow.id, BUYER)
        market.offers.vendor_respond(offer.id, SELLER, "accept")

        with pytest.raises(InvalidStateError, match="funded or shipped"):
            market.shipments.submit_shipment(escrow.id, SELLER, "ups", "1Z999", PROOF_URLS)

    def test_unsupported_carrier(self, market, funded_escrow):
        with pytest.raises(UnsupportedCarrier):
            market.shipments.submit_shipment(
                funded_escrow.id, SELLER, "Pony Express", "PX1", PROOF_URLS
            )

    def test_tracking_number_required(self, market, funded_escrow):
        with pytest.raises(ValidationError):
            market.shipments.submit_shipment(funded_escrow.id, SELLER, "ups", "  ", PROOF_URLS)

    def test_proof_required(self, market, funded_escrow):
        with pytest.raises(ValidationError):
            market.shipments.submit_shipment(funded_escrow.id, SELLER, "ups", "1Z999", [])

    def test_invalid_proof_url(self, market, funded_escrow):
        with pytest.raises(ValidationError) as exc_info:
            market.shipments.submit_shipment(
                funded_escrow.id,
                SELLER,
                "ups",
                "1Z999",
                ["https://img.example.com/ok.jpg", "ftp://img.example.com/bad.jpg"],
            )

        assert exc_info.value.details["invalid_urls"] == ["ftp://img.example.com/bad.jpg"]


class TestVerifyShipment:
    def test_approve(self, market, shipped_escrow, notifications):
        result = market.shipments.verify_shipment(shipped_escrow.id, ADMIN, approved=True)

        escrow = result.escrow
        assert result.message == "Shipment verified."
        assert escrow.status == "delivered"
        assert escrow.shipment_status == "verified"
        assert escrow.shipment_verified_by == ADMIN
        assert escrow.settlement_status == "none"
        assert "shipment_verified" in notifications.types_for(BUYER)
        assert "shipment_verified" in notifications.types_for(SELLER)

    def test_approve_and_propose(self, market, shipped_escrow, authority):
        result = market.shipments.verify_shipment(
            shipped_escrow.id, ADMIN, approved=True, request_settlement_proposal=True
        )

        assert result.escrow.settlement_status == "proposed"
        assert result.extra == {"settlement_proposal_ref": "proposal-1"}
        assert "proposal-1" in authority.proposals

    def test_proposal_failure_keeps_verification(self, market, shipped_escrow, authority):
        authority.fail_propose = True

        result = market.shipments.verify_shipment(
            shipped_escrow.id, ADMIN, approved=True, request_settlement_proposal=True
        )

        assert result.escrow.status == "delivered"
        assert result.escrow.settlement_status == "none"
        assert "retry later" in result.message

    def test_reject_keeps_tracking(self, market, shipped_escrow, notifications, clock):
        result = market.shipments.verify_shipment(
            shipped_escrow.id, ADMIN, approved=False, rejection_reason="Photo is blurry"
        )

        escrow = result.escrow
        assert escrow.status == "shipped"
        assert escrow.shipment_status == "pending"
        assert escrow.tracking_number == "7712 3456 7890"
        assert len(escrow.rejection_history) == 1
        rejection = escrow.rejection_history[0]
        assert rejection.reason == "Photo is blurry"
        assert rejection.rejected_by == ADMIN
        assert rejection.rejected_at == clock.now
        assert rejection.previous_carrier == "fedex"
        assert rejection.previous_proof_urls == PROOF_URLS
        assert "shipment_rejected" in notifications.types_for(SELLER)

    def test_resubmit_after_rejection(self, market, shipped_escrow):
        market.shipments.verify_shipment(
            shipped_escrow.id, ADMIN, approved=False, rejection_reason="Wrong parcel"
        )

        result = market.shipments.submit_shipment(
            shipped_escrow.id, SELLER, "UPS", "1Z12345E0205271688", ["https://img.example.com/2.jpg"]
        )

        assert result.escrow.shipment_status == "proof_submitted"
        assert result.escrow.tracking_carrier == "ups"
        assert len(result.escrow.rejection_history) == 1

        approved = market.shipments.verify_shipment(shipped_escrow.id, ADMIN, approved=True)
        assert approved.escrow.status == "delivered"

    def test_reject_requires_reason(self, market, shipped_escrow):
        with pytest.raises(ValidationError):
            market.shipments.verify_shipment(shipped_escrow.id, ADMIN, approved=False)

    def test_requires_admin(self, market, shipped_escrow):
        with pytest.raises(UnauthorizedError):
            market.shipments.verify_shipment(shipped_escrow.id, SELLER, approved=True)

    def test_nothing_to_verify(self, market, funded_escrow):
        with pytest.raises(InvalidStateError):
            market.shipments.verify_shipment(funded_escrow.id, ADMIN, approved=True)

    def test_cannot_verify_twice(self, market, shipped_escrow):
        market.shipments.verify_shipment(shipped_escrow.id, ADMIN, approved=True)

        with pytest.raises(InvalidStateError):
            market.shipments.verify_shipment(shipped_escrow.id, ADMIN, approved=True)

    def test_pending_queue(self, market, shipped_escrow):
        assert [e.id for e in market.shipments.pending_shipments()] == [shipped_escrow.id]

        market.shipments.verify_shipment(shipped_escrow.id, ADMIN, approved=True)

        assert market.shipments.pending_shipments() == []


class TestTrackingAndLabels:
    def test_refresh_tracking(self, market, shipped_escrow, provider, clock):
        clock.advance(hours=6)

        result = market.shipments.refresh_tracking(shipped_escrow.id)

        escrow = result.escrow
        assert escrow.carrier_status == "in_transit"
        assert escrow.last_tracking_update == clock.now
        assert escrow.status == "shipped"
        assert escrow.shipment_status == "proof_submitted"
        assert result.extra["carrier_status"] == "in_transit"
        assert provider.tracking_requests == [("fedex", "7712 3456 7890")]

    def test_carrier_delivered_does_not_verify(self, market, shipped_escrow, provider):
        provider.tracking_status = "delivered"

        escrow = market.shipments.refresh_tracking(shipped_escrow.id).escrow

        assert escrow.carrier_status == "delivered"
        assert escrow.shipment_status == "proof_submitted"

    def test_refresh_without_tracking(self, market, funded_escrow):
        with pytest.raises(InvalidStateError):
            market.shipments.refresh_tracking(funded_escrow.id)

    def test_rates_quoted_to_buyer_address(self, market, funded_escrow):
        rates = market.shipments.get_shipping_rates(
            funded_escrow.id, SELLER, FROM_ADDRESS, PARCEL
        )

        assert [r.rate_id for r in rates] == ["rate-ground", "rate-express"]

    def test_purchase_label(self, market, funded_escrow):
        label = market.shipments.purchase_label(funded_escrow.id, SELLER, "rate-express")

        assert label.carrier == "fedex"
        assert label.tracking_number == "TRK-rate-express"

    def test_label_only_for_seller(self, market, funded_escrow):
        with pytest.raises(UnauthorizedError):
            market.shipments.purchase_label(funded_escrow.id, OUTSIDER, "rate-express")

    def test_no_provider(self, market, funded_escrow):
        market.shipments.provider = None

        with pytest.raises(InvalidStateError):
            market.shipments.purchase_label(funded_escrow.id, SELLER, "rate-express")
