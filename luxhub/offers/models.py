"""
Offer data models.

An Offer is a buyer's proposal to purchase the asset held by an escrow. The
vendor and buyer may trade counter offers until one side accepts, rejects or
the buyer withdraws.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from luxhub.addresses import ShippingAddress
from luxhub.utils import (
    decimal_str,
    enum_value,
    format_datetime,
    parse_datetime,
    to_decimal,
    utc_now,
)


class OfferStatus(str, Enum):
    """Offer lifecycle status."""

    PENDING = "pending"
    COUNTERED = "countered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    AUTO_REJECTED = "auto_rejected"  # Closed because another offer won or the listing closed
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"


class CounterRole(str, Enum):
    BUYER = "buyer"
    VENDOR = "vendor"


ACTIVE_OFFER_STATUSES = frozenset({OfferStatus.PENDING.value, OfferStatus.COUNTERED.value})

_ACTIVE_EXITS = {
    OfferStatus.COUNTERED,
    OfferStatus.ACCEPTED,
    OfferStatus.REJECTED,
    OfferStatus.AUTO_REJECTED,
    OfferStatus.WITHDRAWN,
    OfferStatus.EXPIRED,
}

VALID_OFFER_TRANSITIONS: Dict[OfferStatus, set] = {
    OfferStatus.PENDING: set(_ACTIVE_EXITS),
    OfferStatus.COUNTERED: set(_ACTIVE_EXITS),
    OfferStatus.ACCEPTED: set(),
    OfferStatus.REJECTED: set(),
    OfferStatus.AUTO_REJECTED: set(),
    OfferStatus.WITHDRAWN: set(),
    OfferStatus.EXPIRED: set(),
}

_STATUS_VALUES = {s.value for s in OfferStatus}


@dataclass
class CounterOffer:
    """One entry in an offer's negotiation history."""

    amount: int
    amount_usd: Decimal
    from_role: str
    from_wallet: str
    message: Optional[str] = None
    at: Optional[datetime] = None

    def __post_init__(self):
        self.from_role = enum_value(self.from_role)
        self.amount_usd = to_decimal(self.amount_usd)
        if self.from_role not in {r.value for r in CounterRole}:
            raise ValueError(f"Invalid counter role: {self.from_role}")
        if self.amount <= 0 or self.amount_usd <= 0:
            raise ValueError("Counter amount must be positive")

    def to_dict(self) -> dict:
        return {
            "amount": self.amount,
            "amount_usd": decimal_str(self.amount_usd),
            "from_role": self.from_role,
            "from_wallet": self.from_wallet,
            "message": self.message,
            "at": format_datetime(self.at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CounterOffer":
        return cls(
            amount=int(data["amount"]),
            amount_usd=data["amount_usd"],
            from_role=data["from_role"],
            from_wallet=data["from_wallet"],
            message=data.get("message"),
            at=parse_datetime(data.get("at")),
        )


@dataclass
class Offer:
    """A buyer's offer on an escrow.

    Attributes:
        id: Unique offer identifier
        escrow_id: Escrow the offer targets
        buyer_wallet: Wallet making the offer
        seller_wallet: Escrow seller at the time of the offer
        offer_amount: Original amount in lamports
        offer_price_usd: Original amount in USD
        shipping_address: Where the item goes if the offer wins
        counter_offers: Append-only negotiation history
        status: Current status
        version: Optimistic-concurrency counter
    """

    id: str
    escrow_id: str
    buyer_wallet: str
    seller_wallet: str
    offer_amount: int
    offer_price_usd: Decimal
    shipping_address: ShippingAddress
    message: Optional[str] = None
    expires_at: Optional[datetime] = None
    counter_offers: List[CounterOffer] = field(default_factory=list)
    status: str = OfferStatus.PENDING.value
    version: int = 1
    responded_at: Optional[datetime] = None
    responded_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    auto_rejected_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate fields after initialization."""
        self.status = enum_value(self.status)
        if self.status not in _STATUS_VALUES:
            raise ValueError(f"Invalid status: {self.status}")
        self.offer_price_usd = to_decimal(self.offer_price_usd)
        if self.offer_amount is None or self.offer_amount <= 0:
            raise ValueError("Offer amount must be positive")
        if self.offer_price_usd is None or self.offer_price_usd <= 0:
            raise ValueError("Offer price must be positive")
        if self.shipping_address is None:
            raise ValueError("Shipping address is required")
        self.shipping_address = ShippingAddress.coerce(self.shipping_address)
        if self.message and len(self.message) > 2000:
            raise ValueError("Message too long (max 2000 chars)")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_OFFER_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the offer has passed its expiry time."""
        if self.expires_at is None:
            return False
        return (now or utc_now()) >= self.expires_at

    @property
    def latest_counter(self) -> Optional[CounterOffer]:
        return self.counter_offers[-1] if self.counter_offers else None

    def latest_amounts(self, from_role: Optional[CounterRole] = None) -> tuple:
        """Most recent (lamports, usd) proposed, optionally by one side only.

        Falls back to the original offer when no matching counter exists.
        """
        for counter in reversed(self.counter_offers):
            if from_role is None or counter.from_role == CounterRole(from_role).value:
                return counter.amount, counter.amount_usd
        return self.offer_amount, self.offer_price_usd

    @property
    def current_amount(self) -> int:
        return self.latest_amounts()[0]

    @property
    def current_amount_usd(self) -> Decimal:
        return self.latest_amounts()[1]

    def can_transition_to(self, new_status: OfferStatus) -> bool:
        """Check if transition to new status is valid."""
        current = OfferStatus(self.status)
        return OfferStatus(new_status) in VALID_OFFER_TRANSITIONS.get(current, set())

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "escrow_id": self.escrow_id,
            "buyer_wallet": self.buyer_wallet,
            "seller_wallet": self.seller_wallet,
            "offer_amount": self.offer_amount,
            "offer_price_usd": decimal_str(self.offer_price_usd),
            "shipping_address": self.shipping_address.to_dict(),
            "message": self.message,
            "expires_at": format_datetime(self.expires_at),
            "counter_offers": [c.to_dict() for c in self.counter_offers],
            "status": self.status,
            "version": self.version,
            "responded_at": format_datetime(self.responded_at),
            "responded_by": self.responded_by,
            "rejection_reason": self.rejection_reason,
            "auto_rejected_reason": self.auto_rejected_reason,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Offer":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            escrow_id=data["escrow_id"],
            buyer_wallet=data["buyer_wallet"],
            seller_wallet=data["seller_wallet"],
            offer_amount=int(data["offer_amount"]),
            offer_price_usd=data["offer_price_usd"],
            shipping_address=data["shipping_address"],
            message=data.get("message"),
            expires_at=parse_datetime(data.get("expires_at")),
            counter_offers=[CounterOffer.from_dict(c) for c in data.get("counter_offers") or []],
            status=data.get("status", OfferStatus.PENDING.value),
            version=data.get("version", 1),
            responded_at=parse_datetime(data.get("responded_at")),
            responded_by=data.get("responded_by"),
            rejection_reason=data.get("rejection_reason"),
            auto_rejected_reason=data.get("auto_rejected_reason"),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )
