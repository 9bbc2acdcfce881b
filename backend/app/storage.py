"""Supabase-backed escrow and offer storage.

Rows are the ``to_dict()`` form of the marketplace models. Every update is a
compare-and-swap: the UPDATE filters on both ``id`` and the expected
``version`` and only counts as applied when a row comes back.

Uniqueness (one live escrow per asset, one escrow per address, one active
offer per buyer per escrow) is enforced by indexes in the migration; a
unique violation is surfaced as DuplicateRecordError.
"""

from luxhub.errors import DuplicateRecordError
from luxhub.escrow.models import TERMINAL_STATUSES, Escrow, EscrowStateTransition
from luxhub.offers.models import Offer

from .database import (
    ESCROW_TRANSITIONS_TABLE,
    ESCROWS_TABLE,
    OFFERS_TABLE,
    is_unique_violation,
)
from .logging_config import get_logger

logger = get_logger("storage")


def _status_list(status) -> list[str] | None:
    if status is None:
        return None
    if isinstance(status, (list, tuple, set, frozenset)):
        return [getattr(s, "value", s) for s in status]
    return [getattr(status, "value", status)]


def _insert(db, table: str, row: dict) -> None:
    try:
        db.table(table).insert(row).execute()
    except Exception as e:
        if is_unique_violation(e):
            raise DuplicateRecordError(str(e)) from e
        raise


def _compare_and_swap(db, table: str, row: dict, expected_version: int) -> bool:
    payload = {k: v for k, v in row.items() if k not in ("id", "created_at")}
    result = (
        db.table(table)
        .update(payload)
        .eq("id", row["id"])
        .eq("version", expected_version)
        .execute()
    )
    if not result.data:
        logger.debug(f"CAS miss on {table} {row['id']} at version {expected_version}")
        return False
    return True


class SupabaseEscrowStorage:
    """Escrow persistence on the ``escrows`` and transition tables."""

    def __init__(self, db):
        self.db = db

    def save_escrow(self, escrow: Escrow) -> str:
        _insert(self.db, ESCROWS_TABLE, escrow.to_dict())
        return escrow.id

    def get_escrow(self, escrow_id: str) -> Escrow | None:
        result = self.db.table(ESCROWS_TABLE).select("*").eq("id", escrow_id).execute()
        return Escrow.from_dict(result.data[0]) if result.data else None

    def get_escrow_by_address(self, escrow_address: str) -> Escrow | None:
        result = (
            self.db.table(ESCROWS_TABLE)
            .select("*")
            .eq("escrow_address", escrow_address)
            .execute()
        )
        return Escrow.from_dict(result.data[0]) if result.data else None

    def find_active_escrow_for_asset(self, asset_ref: str) -> Escrow | None:
        result = self.db.table(ESCROWS_TABLE).select("*").eq("asset_ref", asset_ref).execute()
        for row in result.data or []:
            if row.get("status") not in TERMINAL_STATUSES:
                return Escrow.from_dict(row)
        return None

    def list_escrows(
        self,
        status=None,
        seller_wallet: str | None = None,
        buyer_wallet: str | None = None,
        asset_ref: str | None = None,
        shipment_status=None,
        include_deleted: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Escrow]:
        query = self.db.table(ESCROWS_TABLE).select("*")
        statuses = _status_list(status)
        if statuses is not None:
            query = query.in_("status", statuses)
        shipment_statuses = _status_list(shipment_status)
        if shipment_statuses is not None:
            query = query.in_("shipment_status", shipment_statuses)
        if seller_wallet is not None:
            query = query.eq("seller_wallet", seller_wallet)
        if buyer_wallet is not None:
            query = query.eq("buyer_wallet", buyer_wallet)
        if asset_ref is not None:
            query = query.eq("asset_ref", asset_ref)
        if not include_deleted:
            query = query.eq("deleted", False)
        result = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
        return [Escrow.from_dict(row) for row in result.data or []]

    def update_escrow(self, escrow: Escrow, expected_version: int) -> bool:
        return _compare_and_swap(self.db, ESCROWS_TABLE, escrow.to_dict(), expected_version)

    def save_transition(self, transition: EscrowStateTransition) -> str:
        self.db.table(ESCROW_TRANSITIONS_TABLE).insert(transition.to_dict()).execute()
        return transition.id

    def get_transitions(self, escrow_id: str) -> list[EscrowStateTransition]:
        result = (
            self.db.table(ESCROW_TRANSITIONS_TABLE)
            .select("*")
            .eq("escrow_id", escrow_id)
            .order("created_at")
            .execute()
        )
        return [EscrowStateTransition.from_dict(row) for row in result.data or []]


class SupabaseOfferStorage:
    """Offer persistence on the ``offers`` table."""

    def __init__(self, db):
        self.db = db

    def save_offer(self, offer: Offer) -> str:
        _insert(self.db, OFFERS_TABLE, offer.to_dict())
        return offer.id

    def get_offer(self, offer_id: str) -> Offer | None:
        result = self.db.table(OFFERS_TABLE).select("*").eq("id", offer_id).execute()
        return Offer.from_dict(result.data[0]) if result.data else None

    def list_offers(
        self,
        escrow_id: str | None = None,
        buyer_wallet: str | None = None,
        seller_wallet: str | None = None,
        status=None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Offer]:
        query = self.db.table(OFFERS_TABLE).select("*")
        if escrow_id is not None:
            query = query.eq("escrow_id", escrow_id)
        if buyer_wallet is not None:
            query = query.eq("buyer_wallet", buyer_wallet)
        if seller_wallet is not None:
            query = query.eq("seller_wallet", seller_wallet)
        statuses = _status_list(status)
        if statuses is not None:
            query = query.in_("status", statuses)
        result = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
        return [Offer.from_dict(row) for row in result.data or []]

    def update_offer(self, offer: Offer, expected_version: int) -> bool:
        return _compare_and_swap(self.db, OFFERS_TABLE, offer.to_dict(), expected_version)
