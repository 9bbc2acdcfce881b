"""
Offer storage layer.

Backends must enforce at most one active (pending or countered) offer per
buyer per escrow at insert time, the way a partial unique index would.
"""

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Union

from luxhub.errors import ConcurrentModification, DuplicateRecordError
from luxhub.offers.models import ACTIVE_OFFER_STATUSES, Offer

logger = logging.getLogger(__name__)

StatusFilter = Union[str, List[str], None]


class OfferStorage(Protocol):
    """Protocol for offer persistence backends."""

    def save_offer(self, offer: Offer) -> str:
        """Insert a new offer. Returns the offer ID.

        Raises:
            DuplicateRecordError: If the buyer already has an active offer on
                the escrow
        """
        ...

    def get_offer(self, offer_id: str) -> Optional[Offer]:
        """Get an offer by ID."""
        ...

    def list_offers(
        self,
        escrow_id: Optional[str] = None,
        buyer_wallet: Optional[str] = None,
        seller_wallet: Optional[str] = None,
        status: StatusFilter = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Offer]:
        """List offers with optional filters, newest first."""
        ...

    def update_offer(self, offer: Offer, expected_version: int) -> bool:
        """Replace the stored offer if its version still equals expected_version."""
        ...


class InMemoryOfferStorage:
    """In-memory offer storage for testing and local development."""

    def __init__(self):
        """Initialize empty storage."""
        self._offers: Dict[str, Offer] = {}
        self._lock = threading.Lock()

    def _utc_now(self) -> datetime:
        """Get current UTC timestamp."""
        return datetime.now(timezone.utc)

    def save_offer(self, offer: Offer) -> str:
        """Insert a new offer."""
        with self._lock:
            if offer.id in self._offers:
                raise DuplicateRecordError(f"Offer {offer.id} already exists")
            if offer.status in ACTIVE_OFFER_STATUSES:
                for existing in self._offers.values():
                    if (
                        existing.escrow_id == offer.escrow_id
                        and existing.buyer_wallet == offer.buyer_wallet
                        and existing.status in ACTIVE_OFFER_STATUSES
                    ):
                        raise DuplicateRecordError(
                            f"Buyer {offer.buyer_wallet} already has an active offer "
                            f"on escrow {offer.escrow_id}"
                        )
            self._offers[offer.id] = copy.deepcopy(offer)
        return offer.id

    def get_offer(self, offer_id: str) -> Optional[Offer]:
        """Get an offer by ID."""
        with self._lock:
            offer = self._offers.get(offer_id)
            return copy.deepcopy(offer) if offer else None

    def list_offers(
        self,
        escrow_id: Optional[str] = None,
        buyer_wallet: Optional[str] = None,
        seller_wallet: Optional[str] = None,
        status: StatusFilter = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Offer]:
        """List offers with optional filters."""
        with self._lock:
            offers = [copy.deepcopy(o) for o in self._offers.values()]

        if escrow_id is not None:
            offers = [o for o in offers if o.escrow_id == escrow_id]
        if buyer_wallet is not None:
            offers = [o for o in offers if o.buyer_wallet == buyer_wallet]
        if seller_wallet is not None:
            offers = [o for o in offers if o.seller_wallet == seller_wallet]
        if status is not None:
            if isinstance(status, (list, tuple, set, frozenset)):
                wanted = {getattr(s, "value", s) for s in status}
            else:
                wanted = {getattr(status, "value", status)}
            offers = [o for o in offers if o.status in wanted]

        # Sort by created_at desc
        offers.sort(key=lambda o: o.created_at or self._utc_now(), reverse=True)

        return offers[offset : offset + limit]

    def update_offer(self, offer: Offer, expected_version: int) -> bool:
        """Compare-and-swap an offer on its version."""
        with self._lock:
            stored = self._offers.get(offer.id)
            if stored is None or stored.version != expected_version:
                return False
            self._offers[offer.id] = copy.deepcopy(offer)
            return True


def commit_offer(
    storage: OfferStorage,
    current: Offer,
    updated: Offer,
    now: Optional[datetime] = None,
) -> Offer:
    """Write ``updated`` over ``current`` with a version check.

    Raises:
        ConcurrentModification: If the offer changed since it was read
    """
    updated.version = current.version + 1
    updated.updated_at = now or datetime.now(timezone.utc)
    if not storage.update_offer(updated, expected_version=current.version):
        logger.warning(
            f"Concurrent modification on offer {current.id} "
            f"(version {current.version}, {current.status} -> {updated.status})"
        )
        raise ConcurrentModification(
            "Offer was modified by another request. Please retry.",
            offer_id=current.id,
        )
    return updated
