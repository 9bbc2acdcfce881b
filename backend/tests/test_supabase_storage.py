"""Tests for the Supabase storage adapters against a mocked client."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from api_data import ADDRESS, BUYER, SELLER
from app.database import is_unique_violation
from app.storage import SupabaseEscrowStorage, SupabaseOfferStorage

from luxhub.errors import DuplicateRecordError
from luxhub.escrow.models import Escrow
from luxhub.offers.models import Offer


class PostgrestError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


def make_escrow(**overrides):
    fields = dict(
        id="esc-1",
        escrow_address="addr-1",
        asset_ref="asset-1",
        seller_wallet=SELLER,
        listing_price=100_000_000_000,
        listing_price_usd=Decimal("10000"),
        version=3,
    )
    fields.update(overrides)
    return Escrow(**fields)


def make_offer(**overrides):
    fields = dict(
        id="off-1",
        escrow_id="esc-1",
        buyer_wallet=BUYER,
        seller_wallet=SELLER,
        offer_amount=60_000_000_000,
        offer_price_usd=Decimal("6000"),
        shipping_address=ADDRESS,
    )
    fields.update(overrides)
    return Offer(**fields)


@pytest.fixture
def db():
    return MagicMock()


class TestUniqueViolation:
    def test_by_code(self):
        assert is_unique_violation(PostgrestError("conflict", code="23505"))

    def test_by_message(self):
        assert is_unique_violation(Exception('duplicate key value violates unique constraint "x"'))

    def test_other_errors(self):
        assert not is_unique_violation(PostgrestError("timeout", code="57014"))


class TestEscrowStorage:
    def test_save_inserts_row(self, db):
        escrow = make_escrow()

        SupabaseEscrowStorage(db).save_escrow(escrow)

        db.table.assert_called_with("escrows")
        db.table.return_value.insert.assert_called_once_with(escrow.to_dict())

    def test_save_duplicate_raises(self, db):
        db.table.return_value.insert.return_value.execute.side_effect = PostgrestError(
            "duplicate key", code="23505"
        )

        with pytest.raises(DuplicateRecordError):
            SupabaseEscrowStorage(db).save_escrow(make_escrow())

    def test_save_other_error_propagates(self, db):
        db.table.return_value.insert.return_value.execute.side_effect = PostgrestError(
            "connection reset"
        )

        with pytest.raises(PostgrestError):
            SupabaseEscrowStorage(db).save_escrow(make_escrow())

    def test_get_escrow(self, db):
        row = make_escrow().to_dict()
        db.table.return_value.select.return_value.eq.return_value.execute.return_value.data = [row]

        escrow = SupabaseEscrowStorage(db).get_escrow("esc-1")

        assert escrow.id == "esc-1"
        assert escrow.listing_price_usd == Decimal("10000")

    def test_get_missing_escrow(self, db):
        db.table.return_value.select.return_value.eq.return_value.execute.return_value.data = []

        assert SupabaseEscrowStorage(db).get_escrow("nope") is None

    def test_find_active_skips_terminal_rows(self, db):
        rows = [
            make_escrow(id="old", status="cancelled").to_dict(),
            make_escrow(id="live", status="listed").to_dict(),
        ]
        db.table.return_value.select.return_value.eq.return_value.execute.return_value.data = rows

        assert SupabaseEscrowStorage(db).find_active_escrow_for_asset("asset-1").id == "live"

    def test_update_is_version_checked(self, db):
        update = db.table.return_value.update.return_value
        update.eq.return_value.eq.return_value.execute.return_value.data = [{"id": "esc-1"}]
        escrow = make_escrow(version=4)

        assert SupabaseEscrowStorage(db).update_escrow(escrow, expected_version=3) is True

        payload = db.table.return_value.update.call_args.args[0]
        assert "id" not in payload
        assert payload["version"] == 4
        update.eq.assert_called_once_with("id", "esc-1")
        update.eq.return_value.eq.assert_called_once_with("version", 3)

    def test_update_with_stale_version(self, db):
        update = db.table.return_value.update.return_value
        update.eq.return_value.eq.return_value.execute.return_value.data = []

        assert SupabaseEscrowStorage(db).update_escrow(make_escrow(), expected_version=2) is False

    def test_list_filters(self, db):
        query = db.table.return_value.select.return_value
        query.in_.return_value = query
        query.eq.return_value = query
        query.order.return_value = query
        query.range.return_value.execute.return_value.data = [make_escrow().to_dict()]

        escrows = SupabaseEscrowStorage(db).list_escrows(
            status=["listed", "funded"], seller_wallet=SELLER, limit=20, offset=40
        )

        assert [e.id for e in escrows] == ["esc-1"]
        query.in_.assert_called_once_with("status", ["listed", "funded"])
        query.eq.assert_any_call("seller_wallet", SELLER)
        query.eq.assert_any_call("deleted", False)
        query.order.assert_called_once_with("created_at", desc=True)
        query.range.assert_called_once_with(40, 59)


class TestOfferStorage:
    def test_duplicate_active_offer(self, db):
        db.table.return_value.insert.return_value.execute.side_effect = PostgrestError(
            'duplicate key value violates unique constraint "offers_active_buyer_key"'
        )

        with pytest.raises(DuplicateRecordError):
            SupabaseOfferStorage(db).save_offer(make_offer())

    def test_get_offer_round_trips_row(self, db):
        row = make_offer().to_dict()
        db.table.return_value.select.return_value.eq.return_value.execute.return_value.data = [row]

        offer = SupabaseOfferStorage(db).get_offer("off-1")

        assert offer.buyer_wallet == BUYER
        assert offer.shipping_address.city == "Arlington"

    def test_update_offer_cas(self, db):
        update = db.table.return_value.update.return_value
        update.eq.return_value.eq.return_value.execute.return_value.data = [{"id": "off-1"}]

        assert SupabaseOfferStorage(db).update_offer(make_offer(version=2), expected_version=1)
        db.table.assert_called_with("offers")
