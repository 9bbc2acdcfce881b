"""Offer negotiation subsystem for the LuxHub marketplace.

Models:
- Offer: A buyer's offer on an escrow
- OfferStatus: Offer lifecycle status
- CounterOffer: One entry in the negotiation history

Service:
- OfferService: Create offers, vendor/buyer responses, accept + auto-reject sweep
"""

from luxhub.offers.models import (
    ACTIVE_OFFER_STATUSES,
    VALID_OFFER_TRANSITIONS,
    CounterOffer,
    CounterRole,
    Offer,
    OfferStatus,
)
from luxhub.offers.service import BuyerAction, OfferService, VendorAction
from luxhub.offers.storage import InMemoryOfferStorage, OfferStorage

__all__ = [
    # Models
    "Offer",
    "OfferStatus",
    "CounterOffer",
    "CounterRole",
    "ACTIVE_OFFER_STATUSES",
    "VALID_OFFER_TRANSITIONS",
    # Storage
    "OfferStorage",
    "InMemoryOfferStorage",
    # Service
    "OfferService",
    "VendorAction",
    "BuyerAction",
]
