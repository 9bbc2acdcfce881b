"""
Escrow data models.

An Escrow holds one listed asset from listing through sale. It carries the
listing terms, the shipment sub-record, offer aggregates, the delivery
confirmation and the settlement linkage.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from luxhub.addresses import ShippingAddress
from luxhub.utils import (
    decimal_str,
    enum_value,
    format_datetime,
    parse_datetime,
    to_decimal,
)


class EscrowStatus(str, Enum):
    """Escrow lifecycle status."""

    INITIATED = "initiated"  # Created, awaiting multisig approval of the listing
    LISTED = "listed"  # Visible in the marketplace
    OFFER_ACCEPTED = "offer_accepted"  # Vendor accepted an offer, awaiting funds
    FUNDED = "funded"  # Buyer deposited funds
    SHIPPED = "shipped"  # Vendor submitted shipment proof
    DELIVERED = "delivered"  # Shipment verified or delivery confirmed
    RELEASED = "released"  # Funds released to the seller
    CANCELLED = "cancelled"
    FAILED = "failed"
    CONVERTED = "converted"  # Turned into a crowdfunded pool


class SaleMode(str, Enum):
    FIXED_PRICE = "fixed_price"
    ACCEPTING_OFFERS = "accepting_offers"
    CROWDFUNDED = "crowdfunded"


class ShipmentStatus(str, Enum):
    """Vendor shipment sub-state, independent from the escrow status."""

    PENDING = "pending"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    PROOF_SUBMITTED = "proof_submitted"
    VERIFIED = "verified"
    DELIVERED = "delivered"


class SettlementStatus(str, Enum):
    NONE = "none"
    READY = "ready"
    PROPOSED = "proposed"
    EXECUTED = "executed"


class ConfirmationType(str, Enum):
    BUYER = "buyer"
    ADMIN = "admin"


TERMINAL_STATUSES = frozenset(
    {
        EscrowStatus.RELEASED.value,
        EscrowStatus.CANCELLED.value,
        EscrowStatus.FAILED.value,
        EscrowStatus.CONVERTED.value,
    }
)

# A buyer wallet is set exactly while the escrow is in one of these states
BUYER_ASSIGNED_STATUSES = frozenset(
    {
        EscrowStatus.OFFER_ACCEPTED.value,
        EscrowStatus.FUNDED.value,
        EscrowStatus.SHIPPED.value,
        EscrowStatus.DELIVERED.value,
        EscrowStatus.RELEASED.value,
    }
)

LISTABLE_STATUSES = frozenset({EscrowStatus.INITIATED.value, EscrowStatus.LISTED.value})

VALID_ESCROW_TRANSITIONS: Dict[EscrowStatus, set] = {
    EscrowStatus.INITIATED: {
        EscrowStatus.LISTED,
        EscrowStatus.OFFER_ACCEPTED,
        EscrowStatus.FUNDED,
        EscrowStatus.CANCELLED,
        EscrowStatus.FAILED,
        EscrowStatus.CONVERTED,
    },
    EscrowStatus.LISTED: {
        EscrowStatus.OFFER_ACCEPTED,
        EscrowStatus.FUNDED,
        EscrowStatus.CANCELLED,
        EscrowStatus.FAILED,
        EscrowStatus.CONVERTED,
    },
    EscrowStatus.OFFER_ACCEPTED: {
        EscrowStatus.FUNDED,
        EscrowStatus.CANCELLED,
        EscrowStatus.FAILED,
    },
    EscrowStatus.FUNDED: {
        EscrowStatus.SHIPPED,
        EscrowStatus.CANCELLED,
        EscrowStatus.FAILED,
    },
    EscrowStatus.SHIPPED: {
        EscrowStatus.DELIVERED,
        EscrowStatus.CANCELLED,
        EscrowStatus.FAILED,
    },
    EscrowStatus.DELIVERED: {
        EscrowStatus.RELEASED,
        EscrowStatus.FAILED,
    },
    EscrowStatus.RELEASED: set(),
    EscrowStatus.CANCELLED: set(),
    EscrowStatus.FAILED: set(),
    EscrowStatus.CONVERTED: set(),
}

# Timestamp stamped when the escrow enters each status
STATUS_TIMESTAMP_FIELDS = {
    EscrowStatus.LISTED.value: "listed_at",
    EscrowStatus.OFFER_ACCEPTED.value: "offer_accepted_at",
    EscrowStatus.FUNDED.value: "funded_at",
    EscrowStatus.SHIPPED.value: "shipped_at",
    EscrowStatus.DELIVERED.value: "delivered_at",
    EscrowStatus.RELEASED.value: "released_at",
    EscrowStatus.CANCELLED.value: "cancelled_at",
    EscrowStatus.FAILED.value: "failed_at",
    EscrowStatus.CONVERTED.value: "converted_at",
}

_STATUS_VALUES = {s.value for s in EscrowStatus}
_SALE_MODES = {m.value for m in SaleMode}
_SHIPMENT_STATUSES = {s.value for s in ShipmentStatus}
_SETTLEMENT_STATUSES = {s.value for s in SettlementStatus}


@dataclass
class ShipmentRejection:
    """One admin rejection of submitted shipment proof."""

    rejected_at: datetime
    rejected_by: str
    reason: str
    previous_carrier: Optional[str] = None
    previous_tracking_number: Optional[str] = None
    previous_proof_urls: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "rejected_at": format_datetime(self.rejected_at),
            "rejected_by": self.rejected_by,
            "reason": self.reason,
            "previous_carrier": self.previous_carrier,
            "previous_tracking_number": self.previous_tracking_number,
            "previous_proof_urls": list(self.previous_proof_urls),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ShipmentRejection":
        return cls(
            rejected_at=parse_datetime(data["rejected_at"]),
            rejected_by=data["rejected_by"],
            reason=data["reason"],
            previous_carrier=data.get("previous_carrier"),
            previous_tracking_number=data.get("previous_tracking_number"),
            previous_proof_urls=list(data.get("previous_proof_urls") or []),
        )


@dataclass(frozen=True)
class DeliveryConfirmation:
    """Buyer or admin confirmation that the item arrived. Never modified."""

    confirmed_by: str
    confirmation_type: str
    confirmed_at: datetime
    rating: Optional[int] = None
    review_text: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self):
        if self.confirmation_type not in {c.value for c in ConfirmationType}:
            raise ValueError(f"Invalid confirmation type: {self.confirmation_type}")
        if self.rating is not None and not 1 <= self.rating <= 5:
            raise ValueError("Rating must be between 1 and 5")

    def to_dict(self) -> dict:
        return {
            "confirmed_by": self.confirmed_by,
            "confirmation_type": self.confirmation_type,
            "confirmed_at": format_datetime(self.confirmed_at),
            "rating": self.rating,
            "review_text": self.review_text,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DeliveryConfirmation":
        return cls(
            confirmed_by=data["confirmed_by"],
            confirmation_type=data["confirmation_type"],
            confirmed_at=parse_datetime(data["confirmed_at"]),
            rating=data.get("rating"),
            review_text=data.get("review_text"),
            notes=data.get("notes"),
        )


@dataclass
class Escrow:
    """A single listed asset moving through the sale lifecycle.

    Attributes:
        id: Store-generated identifier
        escrow_address: On-chain escrow account, used as the settlement reference
        asset_ref: The NFT-backed asset held by this escrow
        seller_wallet: Vendor wallet
        buyer_wallet: Set once an offer is accepted or the escrow is funded
        listing_price: Price in the smallest settlement unit (lamports)
        listing_price_usd: Price in USD
        royalty_amount: Platform fee on the USD listing price
        version: Optimistic-concurrency counter, bumped on every write
    """

    id: str
    escrow_address: str
    asset_ref: str
    seller_wallet: str
    sale_mode: str = SaleMode.FIXED_PRICE.value
    listing_price: Optional[int] = None
    listing_price_usd: Optional[Decimal] = None
    minimum_offer: Optional[int] = None
    minimum_offer_usd: Optional[Decimal] = None
    accepting_offers: bool = False
    royalty_amount: Optional[Decimal] = None
    buyer_wallet: Optional[str] = None
    buyer_shipping_address: Optional[ShippingAddress] = None
    status: str = EscrowStatus.INITIATED.value
    version: int = 1

    # Shipment
    shipment_status: Optional[str] = None
    tracking_carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    proof_urls: List[str] = field(default_factory=list)
    shipment_submitted_at: Optional[datetime] = None
    shipment_verified_at: Optional[datetime] = None
    shipment_verified_by: Optional[str] = None
    rejection_history: List[ShipmentRejection] = field(default_factory=list)
    carrier_status: Optional[str] = None
    last_tracking_update: Optional[datetime] = None

    # Offer aggregates
    active_offer_count: int = 0
    highest_offer: Optional[int] = None
    highest_offer_usd: Optional[Decimal] = None
    highest_offer_id: Optional[str] = None
    accepted_offer_id: Optional[str] = None

    # Delivery and settlement
    delivery_confirmation: Optional[DeliveryConfirmation] = None
    settlement_status: str = SettlementStatus.NONE.value
    settlement_proposal_ref: Optional[str] = None
    settlement_executed_at: Optional[datetime] = None
    settlement_tx_ref: Optional[str] = None

    funded_amount: Optional[int] = None
    refund_wallet: Optional[str] = None
    pool_ref: Optional[str] = None
    cancel_reason: Optional[str] = None
    failure_reason: Optional[str] = None
    deleted: bool = False

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    listed_at: Optional[datetime] = None
    offer_accepted_at: Optional[datetime] = None
    funded_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate and normalize fields."""
        self.status = enum_value(self.status)
        self.sale_mode = enum_value(self.sale_mode)
        self.shipment_status = enum_value(self.shipment_status)
        self.settlement_status = enum_value(self.settlement_status)

        if self.status not in _STATUS_VALUES:
            raise ValueError(f"Invalid status: {self.status}")
        if self.sale_mode not in _SALE_MODES:
            raise ValueError(f"Invalid sale mode: {self.sale_mode}")
        if self.shipment_status is not None and self.shipment_status not in _SHIPMENT_STATUSES:
            raise ValueError(f"Invalid shipment status: {self.shipment_status}")
        if self.settlement_status not in _SETTLEMENT_STATUSES:
            raise ValueError(f"Invalid settlement status: {self.settlement_status}")
        if not self.asset_ref:
            raise ValueError("Escrow requires an asset reference")
        if not self.seller_wallet:
            raise ValueError("Escrow requires a seller wallet")

        self.listing_price_usd = to_decimal(self.listing_price_usd)
        self.minimum_offer_usd = to_decimal(self.minimum_offer_usd)
        self.royalty_amount = to_decimal(self.royalty_amount)
        self.highest_offer_usd = to_decimal(self.highest_offer_usd)
        self.buyer_shipping_address = ShippingAddress.coerce(self.buyer_shipping_address)

        for name in ("listing_price", "minimum_offer"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.listing_price_usd is not None and self.listing_price_usd < 0:
            raise ValueError("listing_price_usd cannot be negative")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_listable(self) -> bool:
        """Whether new offers or a direct purchase can still land on this escrow."""
        return self.status in LISTABLE_STATUSES and not self.deleted and not self.buyer_wallet

    @property
    def accepts_offers(self) -> bool:
        return self.accepting_offers or self.sale_mode == SaleMode.ACCEPTING_OFFERS.value

    @property
    def price_locked(self) -> bool:
        return bool(self.buyer_wallet) or self.status not in LISTABLE_STATUSES

    def can_transition_to(self, new_status: EscrowStatus) -> bool:
        """Check if transition to new status is valid."""
        current = EscrowStatus(self.status)
        return EscrowStatus(new_status) in VALID_ESCROW_TRANSITIONS.get(current, set())

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "escrow_address": self.escrow_address,
            "asset_ref": self.asset_ref,
            "seller_wallet": self.seller_wallet,
            "buyer_wallet": self.buyer_wallet,
            "sale_mode": self.sale_mode,
            "listing_price": self.listing_price,
            "listing_price_usd": decimal_str(self.listing_price_usd),
            "minimum_offer": self.minimum_offer,
            "minimum_offer_usd": decimal_str(self.minimum_offer_usd),
            "accepting_offers": self.accepting_offers,
            "royalty_amount": decimal_str(self.royalty_amount),
            "buyer_shipping_address": (
                self.buyer_shipping_address.to_dict() if self.buyer_shipping_address else None
            ),
            "status": self.status,
            "version": self.version,
            "shipment_status": self.shipment_status,
            "tracking_carrier": self.tracking_carrier,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "proof_urls": list(self.proof_urls),
            "shipment_submitted_at": format_datetime(self.shipment_submitted_at),
            "shipment_verified_at": format_datetime(self.shipment_verified_at),
            "shipment_verified_by": self.shipment_verified_by,
            "rejection_history": [r.to_dict() for r in self.rejection_history],
            "carrier_status": self.carrier_status,
            "last_tracking_update": format_datetime(self.last_tracking_update),
            "active_offer_count": self.active_offer_count,
            "highest_offer": self.highest_offer,
            "highest_offer_usd": decimal_str(self.highest_offer_usd),
            "highest_offer_id": self.highest_offer_id,
            "accepted_offer_id": self.accepted_offer_id,
            "delivery_confirmation": (
                self.delivery_confirmation.to_dict() if self.delivery_confirmation else None
            ),
            "settlement_status": self.settlement_status,
            "settlement_proposal_ref": self.settlement_proposal_ref,
            "settlement_executed_at": format_datetime(self.settlement_executed_at),
            "settlement_tx_ref": self.settlement_tx_ref,
            "funded_amount": self.funded_amount,
            "refund_wallet": self.refund_wallet,
            "pool_ref": self.pool_ref,
            "cancel_reason": self.cancel_reason,
            "failure_reason": self.failure_reason,
            "deleted": self.deleted,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            **{name: format_datetime(getattr(self, name)) for name in STATUS_TIMESTAMP_FIELDS.values()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Escrow":
        """Create from dictionary."""
        confirmation = data.get("delivery_confirmation")
        return cls(
            id=data["id"],
            escrow_address=data["escrow_address"],
            asset_ref=data["asset_ref"],
            seller_wallet=data["seller_wallet"],
            buyer_wallet=data.get("buyer_wallet"),
            sale_mode=data.get("sale_mode") or SaleMode.FIXED_PRICE.value,
            listing_price=data.get("listing_price"),
            listing_price_usd=data.get("listing_price_usd"),
            minimum_offer=data.get("minimum_offer"),
            minimum_offer_usd=data.get("minimum_offer_usd"),
            accepting_offers=bool(data.get("accepting_offers", False)),
            royalty_amount=data.get("royalty_amount"),
            buyer_shipping_address=data.get("buyer_shipping_address"),
            status=data.get("status", EscrowStatus.INITIATED.value),
            version=data.get("version", 1),
            shipment_status=data.get("shipment_status"),
            tracking_carrier=data.get("tracking_carrier"),
            tracking_number=data.get("tracking_number"),
            tracking_url=data.get("tracking_url"),
            proof_urls=list(data.get("proof_urls") or []),
            shipment_submitted_at=parse_datetime(data.get("shipment_submitted_at")),
            shipment_verified_at=parse_datetime(data.get("shipment_verified_at")),
            shipment_verified_by=data.get("shipment_verified_by"),
            rejection_history=[
                ShipmentRejection.from_dict(r) for r in data.get("rejection_history") or []
            ],
            carrier_status=data.get("carrier_status"),
            last_tracking_update=parse_datetime(data.get("last_tracking_update")),
            active_offer_count=data.get("active_offer_count") or 0,
            highest_offer=data.get("highest_offer"),
            highest_offer_usd=data.get("highest_offer_usd"),
            highest_offer_id=data.get("highest_offer_id"),
            accepted_offer_id=data.get("accepted_offer_id"),
            delivery_confirmation=(
                DeliveryConfirmation.from_dict(confirmation) if confirmation else None
            ),
            settlement_status=data.get("settlement_status") or SettlementStatus.NONE.value,
            settlement_proposal_ref=data.get("settlement_proposal_ref"),
            settlement_executed_at=parse_datetime(data.get("settlement_executed_at")),
            settlement_tx_ref=data.get("settlement_tx_ref"),
            funded_amount=data.get("funded_amount"),
            refund_wallet=data.get("refund_wallet"),
            pool_ref=data.get("pool_ref"),
            cancel_reason=data.get("cancel_reason"),
            failure_reason=data.get("failure_reason"),
            deleted=bool(data.get("deleted", False)),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            **{name: parse_datetime(data.get(name)) for name in STATUS_TIMESTAMP_FIELDS.values()},
        )


@dataclass
class EscrowStateTransition:
    """Audit log entry for an escrow status change."""

    id: str
    escrow_id: str
    from_status: Optional[str]
    to_status: str
    actor: str
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "escrow_id": self.escrow_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor": self.actor,
            "reason": self.reason,
            "metadata": self.metadata,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EscrowStateTransition":
        return cls(
            id=data["id"],
            escrow_id=data["escrow_id"],
            from_status=data.get("from_status"),
            to_status=data["to_status"],
            actor=data["actor"],
            reason=data.get("reason"),
            metadata=data.get("metadata") or {},
            created_at=parse_datetime(data.get("created_at")),
        )
