"""Interfaces to the collaborators the marketplace core depends on.

The services only talk to the outside world through these protocols. The
backend wires Supabase and HTTP implementations; tests use the fakes in
``luxhub.testing``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol


class Permission(str, Enum):
    """Admin permissions checked through the AuthorizationService."""

    APPROVE_MINTS = "can_approve_mints"
    APPROVE_LISTINGS = "can_approve_listings"
    MANAGE_VENDORS = "can_manage_vendors"
    MANAGE_ESCROWS = "can_manage_escrows"
    MANAGE_POOLS = "can_manage_pools"
    EXECUTE_SQUADS = "can_execute_squads"


class AssetStatus(str, Enum):
    """Asset states the marketplace writes back to the asset catalogue."""

    LISTED = "listed"
    IN_ESCROW = "in_escrow"
    POOLED = "pooled"
    SOLD = "sold"


# =============================================================================
# Value objects crossing the boundary
# =============================================================================


@dataclass
class ShippingRate:
    rate_id: str
    carrier: str
    service: str
    amount_usd: Decimal
    delivery_days: Optional[int] = None


@dataclass
class ShippingLabel:
    carrier: str
    tracking_number: str
    label_url: Optional[str] = None


@dataclass
class TrackingInfo:
    """Carrier-reported tracking snapshot."""

    carrier: str
    tracking_number: str
    status: str
    estimated_delivery: Optional[datetime] = None
    events: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ReleaseInstruction:
    """Fund-release instruction handed to the settlement authority.

    ``seller_amount + fee_amount == total_amount`` always holds.
    """

    escrow_id: str
    escrow_address: str
    asset_ref: str
    seller_wallet: str
    buyer_wallet: str
    total_amount: int
    seller_amount: int
    fee_amount: int
    amount_usd: Optional[Decimal] = None
    fee_recipient: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "escrow_id": self.escrow_id,
            "escrow_address": self.escrow_address,
            "asset_ref": self.asset_ref,
            "seller_wallet": self.seller_wallet,
            "buyer_wallet": self.buyer_wallet,
            "total_amount": self.total_amount,
            "seller_amount": self.seller_amount,
            "fee_amount": self.fee_amount,
            "amount_usd": str(self.amount_usd) if self.amount_usd is not None else None,
            "fee_recipient": self.fee_recipient,
        }


@dataclass
class ProposalReceipt:
    proposal_ref: str
    status: str = "proposed"


@dataclass
class ExecutionReceipt:
    proposal_ref: str
    tx_ref: Optional[str] = None


# =============================================================================
# Protocols
# =============================================================================


class AssetStore(Protocol):
    """Asset catalogue that tracks where each physical item is."""

    def set_status(self, asset_ref: str, status: str) -> None:
        ...


class ShippingProvider(Protocol):
    """Carrier integration (rates, labels, tracking)."""

    def get_rates(
        self,
        from_address: Dict[str, Any],
        to_address: Dict[str, Any],
        parcel: Dict[str, Any],
    ) -> List[ShippingRate]:
        ...

    def purchase_label(self, rate_id: str) -> ShippingLabel:
        ...

    def get_tracking(self, carrier: str, tracking_number: str) -> TrackingInfo:
        ...


class SettlementAuthority(Protocol):
    """Multisig approval layer that moves escrowed funds."""

    def propose(self, instruction: ReleaseInstruction) -> ProposalReceipt:
        ...

    def execute(self, proposal_ref: str) -> ExecutionReceipt:
        ...


class NotificationSink(Protocol):
    def notify(
        self,
        recipient_wallet: str,
        notification_type: str,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


class AuthorizationService(Protocol):
    def is_authorized(self, wallet: str, permission: str) -> bool:
        ...
