"""Tests for escrow creation, listing terms, funding and ending a listing."""

import pytest

from luxhub.errors import (
    DuplicateEscrow,
    EscrowNotFoundError,
    InvalidStateError,
    InvalidTransitionError,
    PriceLockedAfterBuyerAssigned,
    SelfDealing,
    UnauthorizedError,
    ValidationError,
)
from luxhub.escrow.service import EscrowTerms

from marketplace_data import (
    ADDRESS,
    ADMIN,
    BUYER,
    LAMPORTS_PER_USD,
    OTHER_BUYER,
    OUTSIDER,
    SELLER,
    usd,
)


class TestCreateEscrow:
    def test_create_escrow(self, market, assets, clock):
        result = market.escrows.create_escrow(
            "asset-rolex",
            SELLER,
            {"escrow_address": "escrow-rolex", "listing_price_usd": usd(10000)},
        )

        escrow = result.escrow
        assert escrow.status == "initiated"
        assert escrow.version == 1
        assert escrow.sale_mode == "fixed_price"
        assert escrow.listing_price == 10000 * LAMPORTS_PER_USD
        assert escrow.royalty_amount == usd(300)
        assert escrow.created_at == clock.now
        assert assets.statuses["asset-rolex"] == "in_escrow"

        history = market.escrows.get_escrow_history(escrow.id)
        assert [(t.from_status, t.to_status) for t in history] == [(None, "initiated")]

    def test_accepts_terms_object(self, market):
        terms = EscrowTerms(
            escrow_address="escrow-omega",
            listing_price=50 * 1_000_000_000,
            sale_mode="accepting_offers",
            minimum_offer_usd=usd(4000),
        )

        escrow = market.escrows.create_escrow("asset-omega", SELLER, terms).escrow

        assert escrow.listing_price_usd == usd("5000.00")
        assert escrow.accepting_offers is True
        assert escrow.minimum_offer == 4000 * LAMPORTS_PER_USD

    def test_escrow_address_required(self, market):
        with pytest.raises(ValidationError):
            market.escrows.create_escrow("asset-1", SELLER, {"listing_price_usd": usd(10)})

    def test_price_required(self, market):
        with pytest.raises(ValidationError):
            market.escrows.create_escrow("asset-1", SELLER, {"escrow_address": "escrow-1"})

    def test_crowdfunded_rejected(self, market):
        with pytest.raises(ValidationError):
            market.escrows.create_escrow(
                "asset-1",
                SELLER,
                {"escrow_address": "escrow-1", "listing_price_usd": usd(10), "sale_mode": "crowdfunded"},
            )

    def test_one_active_escrow_per_asset(self, market, make_escrow):
        make_escrow(asset_ref="asset-dup")

        with pytest.raises(DuplicateEscrow):
            make_escrow(asset_ref="asset-dup")

    def test_escrow_address_is_unique(self, market, make_escrow):
        make_escrow(escrow_address="escrow-shared")

        with pytest.raises(DuplicateEscrow):
            make_escrow(escrow_address="escrow-shared")

    def test_asset_can_be_relisted_after_cancel(self, market, make_escrow):
        first = make_escrow(asset_ref="asset-again")
        market.escrows.cancel(first.id, SELLER, "Changed my mind")

        second = make_escrow(asset_ref="asset-again")

        assert second.id != first.id

    def test_lookup_by_address(self, market, make_escrow):
        escrow = make_escrow(escrow_address="escrow-lookup")

        assert market.escrows.get_escrow_by_address("escrow-lookup").id == escrow.id
        with pytest.raises(EscrowNotFoundError):
            market.escrows.get_escrow_by_address("escrow-nowhere")


class TestMarkListed:
    def test_admin_lists(self, market, make_escrow, clock):
        escrow = make_escrow(listed=False)
        clock.advance(minutes=10)

        listed = market.escrows.mark_listed(escrow.id, ADMIN, proposal_ref="proposal-7").escrow

        assert listed.status == "listed"
        assert listed.listed_at == clock.now
        assert listed.version == 2
        last = market.escrows.get_escrow_history(escrow.id)[-1]
        assert last.actor == ADMIN
        assert last.metadata == {"proposal_ref": "proposal-7"}

    def test_requires_permission(self, market, make_escrow):
        escrow = make_escrow(listed=False)

        with pytest.raises(UnauthorizedError):
            market.escrows.mark_listed(escrow.id, SELLER)

    def test_cannot_list_twice(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(InvalidTransitionError):
            market.escrows.mark_listed(escrow.id, ADMIN)


class TestUpdatePrice:
    def test_update_usd_price(self, market, make_escrow):
        escrow = make_escrow()

        updated = market.escrows.update_price(
            escrow.id, SELLER, {"listing_price_usd": usd(12000)}
        ).escrow

        assert updated.listing_price_usd == usd(12000)
        assert updated.listing_price == 12000 * LAMPORTS_PER_USD
        assert updated.royalty_amount == usd(360)
        assert updated.version == escrow.version + 1

    def test_update_minimum_offer(self, market, make_escrow):
        escrow = make_escrow()

        updated = market.escrows.update_price(
            escrow.id, SELLER, {"minimum_offer_usd": usd(8000)}
        ).escrow

        assert updated.minimum_offer == 8000 * LAMPORTS_PER_USD
        assert updated.listing_price_usd == usd(10000)

    def test_switch_to_offers(self, market, make_escrow):
        escrow = make_escrow(sale_mode="fixed_price", accepting_offers=False)

        updated = market.escrows.update_price(
            escrow.id, SELLER, {"sale_mode": "accepting_offers"}
        ).escrow

        assert updated.sale_mode == "accepting_offers"
        assert updated.accepting_offers is True

    def test_only_seller(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(UnauthorizedError):
            market.escrows.update_price(escrow.id, OUTSIDER, {"listing_price_usd": usd(1)})

    def test_locked_after_accept(self, market, make_escrow, make_offer):
        escrow = make_escrow()
        offer = make_offer(escrow.id, BUYER)
        market.offers.vendor_respond(offer.id, SELLER, "accept")

        with pytest.raises(PriceLockedAfterBuyerAssigned):
            market.escrows.update_price(escrow.id, SELLER, {"listing_price_usd": usd(20000)})

    def test_unknown_field(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(ValidationError, match="buyer_wallet"):
            market.escrows.update_price(escrow.id, SELLER, {"buyer_wallet": OUTSIDER})

    def test_cannot_switch_to_crowdfunded(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(ValidationError):
            market.escrows.update_price(escrow.id, SELLER, {"sale_mode": "crowdfunded"})

    def test_empty_update(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(ValidationError):
            market.escrows.update_price(escrow.id, SELLER, {})


class TestFunding:
    def test_direct_purchase(self, market, make_escrow, make_offer, notifications, clock):
        escrow = make_escrow()
        offer = make_offer(escrow.id, OTHER_BUYER)

        result = market.escrows.transition_on_funding(escrow.id, BUYER, shipping_address=ADDRESS)

        funded = result.escrow
        assert funded.status == "funded"
        assert funded.buyer_wallet == BUYER
        assert funded.funded_amount == funded.listing_price
        assert funded.shipment_status == "pending"
        assert funded.funded_at == clock.now
        assert funded.active_offer_count == 0
        assert result.auto_rejected_offer_ids == [offer.id]
        closed = market.offers.get_offer(offer.id)
        assert closed.auto_rejected_reason == "Item was purchased directly"
        assert "order_funded" in notifications.types_for(SELLER)

    def test_direct_purchase_needs_address(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(ValidationError):
            market.escrows.transition_on_funding(escrow.id, BUYER)

    def test_seller_cannot_buy(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(SelfDealing):
            market.escrows.transition_on_funding(escrow.id, SELLER, shipping_address=ADDRESS)

    def test_underfunded(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(ValidationError):
            market.escrows.transition_on_funding(
                escrow.id, BUYER, funded_amount=escrow.listing_price - 1, shipping_address=ADDRESS
            )

    def test_accepted_buyer_funds(self, market, make_escrow, make_offer):
        escrow = make_escrow()
        offer = make_offer(escrow.id, BUYER, amount_usd=9000)
        market.offers.vendor_respond(offer.id, SELLER, "accept")

        funded = market.escrows.transition_on_funding(escrow.id, BUYER).escrow

        assert funded.status == "funded"
        assert funded.funded_amount == 9000 * LAMPORTS_PER_USD
        assert funded.buyer_shipping_address.full_name == "Ada Lovelace"

    def test_other_buyer_cannot_fund_accepted_offer(self, market, make_escrow, make_offer):
        escrow = make_escrow()
        offer = make_offer(escrow.id, BUYER)
        market.offers.vendor_respond(offer.id, SELLER, "accept")

        with pytest.raises(UnauthorizedError):
            market.escrows.transition_on_funding(escrow.id, OTHER_BUYER, shipping_address=ADDRESS)

    def test_cannot_fund_twice(self, market, funded_escrow):
        with pytest.raises(InvalidStateError):
            market.escrows.transition_on_funding(
                funded_escrow.id, OTHER_BUYER, shipping_address=ADDRESS
            )

    def test_history(self, market, funded_escrow):
        history = market.escrows.get_escrow_history(funded_escrow.id)

        assert [t.to_status for t in history] == ["initiated", "listed", "funded"]
        assert history[-1].reason == "Direct purchase"


class TestCancel:
    def test_seller_cancels(self, market, make_escrow, make_offer, assets):
        escrow = make_escrow()
        offer = make_offer(escrow.id, BUYER)

        result = market.escrows.cancel(escrow.id, SELLER, "No longer selling")

        assert result.escrow.status == "cancelled"
        assert result.escrow.deleted is True
        assert result.escrow.cancel_reason == "No longer selling"
        assert result.auto_rejected_offer_ids == [offer.id]
        assert market.offers.get_offer(offer.id).auto_rejected_reason == "Listing was cancelled"
        assert assets.statuses[escrow.asset_ref] == "listed"

    def test_cancelled_escrow_hidden(self, market, make_escrow):
        escrow = make_escrow()
        market.escrows.cancel(escrow.id, SELLER, "No longer selling")

        assert market.escrows.get_escrow(escrow.id).status == "cancelled"
        assert market.escrows.list_escrows(seller_wallet=SELLER) == []
        assert len(market.escrows.list_escrows(seller_wallet=SELLER, include_deleted=True)) == 1
        with pytest.raises(EscrowNotFoundError):
            market.offers.create_offer(escrow.id, BUYER, ADDRESS, offer_price_usd=usd(9000))

    def test_admin_cancels(self, market, make_escrow):
        escrow = make_escrow()

        result = market.escrows.cancel(escrow.id, ADMIN, "Listing violates policy")

        assert result.escrow.status == "cancelled"

    def test_outsider_cannot_cancel(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(UnauthorizedError):
            market.escrows.cancel(escrow.id, OUTSIDER, "Because")

    def test_reason_required(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(ValidationError):
            market.escrows.cancel(escrow.id, SELLER, "  ")

    def test_cannot_cancel_with_buyer(self, market, funded_escrow):
        with pytest.raises(InvalidStateError):
            market.escrows.cancel(funded_escrow.id, SELLER, "Too late")


class TestConvertToPool:
    def test_convert(self, market, make_escrow, make_offer, assets):
        escrow = make_escrow()
        offer = make_offer(escrow.id, BUYER)

        result = market.escrows.convert_to_pool(escrow.id, SELLER, "pool-42")

        assert result.escrow.status == "converted"
        assert result.escrow.sale_mode == "crowdfunded"
        assert result.escrow.pool_ref == "pool-42"
        assert result.extra == {"pool_ref": "pool-42"}
        closed = market.offers.get_offer(offer.id)
        assert closed.auto_rejected_reason == "Listing converted to crowdfunded pool"
        assert assets.statuses[escrow.asset_ref] == "pooled"

    def test_pool_admin_converts(self, market, make_escrow, authorization):
        authorization.grant(OUTSIDER, "can_manage_pools")
        escrow = make_escrow()

        result = market.escrows.convert_to_pool(escrow.id, OUTSIDER, "pool-43")

        assert result.escrow.status == "converted"

    def test_escrow_admin_cannot_convert(self, market, make_escrow):
        escrow = make_escrow()

        with pytest.raises(UnauthorizedError):
            market.escrows.convert_to_pool(escrow.id, ADMIN, "pool-44")

    def test_cannot_convert_with_buyer(self, market, funded_escrow):
        with pytest.raises(InvalidStateError):
            market.escrows.convert_to_pool(funded_escrow.id, SELLER, "pool-45")


class TestMarkFailed:
    def test_failed_keeps_refund_wallet(self, market, funded_escrow, notifications):
        result = market.escrows.mark_failed(funded_escrow.id, ADMIN, "Item lost before shipping")

        assert result.escrow.status == "failed"
        assert result.escrow.refund_wallet == BUYER
        assert result.escrow.buyer_wallet is None
        assert result.escrow.failure_reason == "Item lost before shipping"
        assert result.next_step == "Refund the buyer"
        assert "order_cancelled" in notifications.types_for(BUYER)

    def test_failed_listing_closes_offers(self, market, make_escrow, make_offer):
        escrow = make_escrow()
        offer = make_offer(escrow.id, BUYER)

        result = market.escrows.mark_failed(escrow.id, ADMIN, "Authenticity concerns")

        assert result.auto_rejected_offer_ids == [offer.id]
        assert result.next_step is None

    def test_requires_admin(self, market, funded_escrow):
        with pytest.raises(UnauthorizedError):
            market.escrows.mark_failed(funded_escrow.id, SELLER, "Lost")

    def test_terminal_escrow_cannot_fail(self, market, make_escrow):
        escrow = make_escrow()
        market.escrows.cancel(escrow.id, SELLER, "Withdrawn")

        with pytest.raises(InvalidTransitionError):
            market.escrows.mark_failed(escrow.id, ADMIN, "Late failure")
