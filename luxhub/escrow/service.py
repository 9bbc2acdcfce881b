"""
Escrow lifecycle service.

Creates escrows, manages listing terms while the escrow has no buyer, and
moves escrows through funding, cancellation, pool conversion and failure.
Shipment and settlement steps live in luxhub.shipping and luxhub.settlement.
"""

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from luxhub.addresses import ShippingAddress
from luxhub.base import BaseService
from luxhub.config import MarketplaceConfig
from luxhub.errors import (
    DuplicateEscrow,
    DuplicateRecordError,
    EscrowNotFoundError,
    InvalidStateError,
    InvalidTransitionError,
    PriceLockedAfterBuyerAssigned,
    SelfDealing,
    UnauthorizedError,
    ValidationError,
)
from luxhub.escrow.models import (
    LISTABLE_STATUSES,
    Escrow,
    EscrowStateTransition,
    EscrowStatus,
    SaleMode,
    ShipmentStatus,
)
from luxhub.escrow.storage import EscrowStorage, commit_escrow
from luxhub.money import royalty_for
from luxhub.notifications import NotificationType, notify_safely
from luxhub.protocols import (
    AssetStatus,
    AssetStore,
    AuthorizationService,
    NotificationSink,
    Permission,
)
from luxhub.results import OperationResult

if TYPE_CHECKING:
    from luxhub.offers.service import OfferService

logger = logging.getLogger(__name__)

REASON_POOL_CONVERSION = "Listing converted to crowdfunded pool"
REASON_CANCELLED = "Listing was cancelled"
REASON_PURCHASED = "Item was purchased directly"
REASON_FAILED = "Escrow failed"

PRICE_FIELDS = {
    "listing_price",
    "listing_price_usd",
    "minimum_offer",
    "minimum_offer_usd",
    "accepting_offers",
    "sale_mode",
}


@dataclass
class EscrowTerms:
    """Listing terms supplied when an escrow is created."""

    escrow_address: str
    listing_price: Optional[int] = None
    listing_price_usd: Optional[Decimal] = None
    sale_mode: str = SaleMode.FIXED_PRICE.value
    minimum_offer: Optional[int] = None
    minimum_offer_usd: Optional[Decimal] = None
    accepting_offers: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscrowTerms":
        return cls(
            escrow_address=data.get("escrow_address") or "",
            listing_price=data.get("listing_price"),
            listing_price_usd=data.get("listing_price_usd"),
            sale_mode=data.get("sale_mode") or SaleMode.FIXED_PRICE.value,
            minimum_offer=data.get("minimum_offer"),
            minimum_offer_usd=data.get("minimum_offer_usd"),
            accepting_offers=bool(data.get("accepting_offers", False)),
        )


class EscrowService(BaseService):
    """Service for the escrow lifecycle."""

    def __init__(
        self,
        escrows: EscrowStorage,
        offers: "OfferService",
        config: Optional[MarketplaceConfig] = None,
        assets: Optional[AssetStore] = None,
        notifications: Optional[NotificationSink] = None,
        authorization: Optional[AuthorizationService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the escrow service.

        Args:
            escrows: Escrow storage backend
            offers: Offer service, used to close offers when a listing ends
            config: Marketplace configuration
            assets: Asset catalogue updated as the escrow moves
            notifications: Optional notification sink
            authorization: Admin permission lookup
        """
        super().__init__(escrows, config, notifications, authorization, clock, assets)
        self.offers = offers

    # =========================================================================
    # Queries
    # =========================================================================

    def get_escrow(self, escrow_id: str) -> Escrow:
        """Get an escrow by ID.

        Raises:
            EscrowNotFoundError: If the escrow doesn't exist
        """
        return self._load_escrow(escrow_id, include_deleted=True)

    def get_escrow_by_address(self, escrow_address: str) -> Escrow:
        escrow = self.escrows.get_escrow_by_address(escrow_address)
        if escrow is None:
            raise EscrowNotFoundError(
                f"Escrow {escrow_address} not found", escrow_address=escrow_address
            )
        return escrow

    def list_escrows(
        self,
        status=None,
        seller_wallet: Optional[str] = None,
        buyer_wallet: Optional[str] = None,
        asset_ref: Optional[str] = None,
        shipment_status=None,
        include_deleted: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Escrow]:
        return self.escrows.list_escrows(
            status=status,
            seller_wallet=seller_wallet,
            buyer_wallet=buyer_wallet,
            asset_ref=asset_ref,
            shipment_status=shipment_status,
            include_deleted=include_deleted,
            limit=limit,
            offset=offset,
        )

    def get_escrow_history(self, escrow_id: str) -> List[EscrowStateTransition]:
        """Get the status change log for an escrow, oldest first."""
        self._load_escrow(escrow_id, include_deleted=True)
        return self.escrows.get_transitions(escrow_id)

    # =========================================================================
    # Create and list
    # =========================================================================

    def create_escrow(self, asset_ref: str, seller_wallet: str, terms) -> OperationResult:
        """Create an escrow for an asset.

        Args:
            asset_ref: Asset to sell
            seller_wallet: Vendor wallet
            terms: EscrowTerms or a dict with the same keys

        Raises:
            ValidationError: If the terms are incomplete or inconsistent
            DuplicateEscrow: If the asset already has an active escrow
        """
        if not isinstance(terms, EscrowTerms):
            terms = EscrowTerms.from_dict(terms or {})
        if not asset_ref or not seller_wallet:
            raise ValidationError("asset_ref and seller_wallet are required")
        if not terms.escrow_address:
            raise ValidationError("escrow_address is required")
        sale_mode = getattr(terms.sale_mode, "value", terms.sale_mode)
        if sale_mode == SaleMode.CROWDFUNDED.value:
            raise ValidationError("Crowdfunded pools are created with convert_to_pool")

        try:
            price, price_usd = self.converter.complete(terms.listing_price, terms.listing_price_usd)
            min_offer, min_offer_usd = None, None
            if terms.minimum_offer is not None or terms.minimum_offer_usd is not None:
                min_offer, min_offer_usd = self.converter.complete(
                    terms.minimum_offer, terms.minimum_offer_usd
                )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        if self.escrows.find_active_escrow_for_asset(asset_ref) is not None:
            raise DuplicateEscrow(
                "An active escrow already exists for this asset", asset_ref=asset_ref
            )

        now = self._now()
        try:
            escrow = Escrow(
                id=str(uuid.uuid4()),
                escrow_address=terms.escrow_address,
                asset_ref=asset_ref,
                seller_wallet=seller_wallet,
                sale_mode=sale_mode,
                listing_price=price,
                listing_price_usd=price_usd,
                minimum_offer=min_offer,
                minimum_offer_usd=min_offer_usd,
                accepting_offers=terms.accepting_offers
                or sale_mode == SaleMode.ACCEPTING_OFFERS.value,
                royalty_amount=royalty_for(price_usd),
                created_at=now,
                updated_at=now,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        try:
            self.escrows.save_escrow(escrow)
        except DuplicateRecordError as e:
            raise DuplicateEscrow(
                "An active escrow already exists for this asset or escrow address",
                asset_ref=asset_ref,
            ) from e

        self.escrows.save_transition(
            EscrowStateTransition(
                id=str(uuid.uuid4()),
                escrow_id=escrow.id,
                from_status=None,
                to_status=escrow.status,
                actor=seller_wallet,
                reason="Escrow created",
                created_at=now,
            )
        )
        self._set_asset_status(escrow, AssetStatus.IN_ESCROW)
        logger.info(f"Created escrow {escrow.id} for asset {asset_ref} by {seller_wallet}")

        return OperationResult(
            message="Escrow created. Awaiting multisig approval of the listing.",
            next_step="An admin approves the escrow creation proposal",
            escrow=escrow,
        )

    def mark_listed(
        self, escrow_id: str, admin_wallet: str, proposal_ref: Optional[str] = None
    ) -> OperationResult:
        """Publish an initiated escrow once its creation proposal has executed."""
        self._require_permission(admin_wallet, Permission.APPROVE_LISTINGS)
        escrow = self._load_escrow(escrow_id)
        self._check_transition(escrow, EscrowStatus.LISTED)

        updated = copy.deepcopy(escrow)
        updated.status = EscrowStatus.LISTED.value
        updated = commit_escrow(
            self.escrows,
            escrow,
            updated,
            actor=admin_wallet,
            reason="Listing approved",
            metadata={"proposal_ref": proposal_ref} if proposal_ref else None,
            now=self._now(),
        )
        return OperationResult(message="Escrow listed.", escrow=updated)

    # =========================================================================
    # Terms
    # =========================================================================

    def update_price(
        self, escrow_id: str, vendor_wallet: str, fields: Dict[str, Any]
    ) -> OperationResult:
        """Change listing terms while the escrow has no buyer.

        When only one currency leg of a price is supplied, the other is
        derived from the reference rate. The royalty follows every change to
        the USD listing price.

        Raises:
            UnauthorizedError: If the caller isn't the seller
            PriceLockedAfterBuyerAssigned: If a buyer is already assigned
            ValidationError: On unknown fields or a switch to crowdfunded
        """
        escrow = self._load_escrow(escrow_id)
        if escrow.seller_wallet != vendor_wallet:
            raise UnauthorizedError("Only the seller can update the price")
        if escrow.price_locked:
            raise PriceLockedAfterBuyerAssigned(
                "Price cannot be changed after a buyer is assigned",
                escrow_id=escrow_id,
                status=escrow.status,
            )

        fields = {k: v for k, v in (fields or {}).items() if v is not None}
        unknown = set(fields) - PRICE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if not fields:
            raise ValidationError("No fields to update")

        updated = copy.deepcopy(escrow)
        try:
            if "listing_price" in fields or "listing_price_usd" in fields:
                updated.listing_price, updated.listing_price_usd = self.converter.complete(
                    fields.get("listing_price"), fields.get("listing_price_usd")
                )
                updated.royalty_amount = royalty_for(updated.listing_price_usd)
            if "minimum_offer" in fields or "minimum_offer_usd" in fields:
                updated.minimum_offer, updated.minimum_offer_usd = self.converter.complete(
                    fields.get("minimum_offer"), fields.get("minimum_offer_usd")
                )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        if "sale_mode" in fields:
            sale_mode = getattr(fields["sale_mode"], "value", fields["sale_mode"])
            if sale_mode == SaleMode.CROWDFUNDED.value:
                raise ValidationError(
                    "Cannot switch to crowdfunded here. Convert the listing to a pool instead."
                )
            if sale_mode not in {m.value for m in SaleMode}:
                raise ValidationError(f"Invalid sale mode: {sale_mode}")
            updated.sale_mode = sale_mode
            if sale_mode == SaleMode.ACCEPTING_OFFERS.value and "accepting_offers" not in fields:
                updated.accepting_offers = True
        if "accepting_offers" in fields:
            updated.accepting_offers = bool(fields["accepting_offers"])

        updated = commit_escrow(self.escrows, escrow, updated, actor=vendor_wallet, now=self._now())
        logger.info(f"Escrow {escrow_id} terms updated by {vendor_wallet}: {sorted(fields)}")
        return OperationResult(message="Price updated successfully", escrow=updated)

    # =========================================================================
    # Funding
    # =========================================================================

    def transition_on_funding(
        self,
        escrow_id: str,
        buyer_wallet: str,
        funded_amount: Optional[int] = None,
        shipping_address=None,
    ) -> OperationResult:
        """Record the buyer's deposit.

        After an accepted offer only that offer's buyer may fund. Without one
        this is a direct purchase at the listing price, which needs a shipping
        address and closes any outstanding offers.

        Raises:
            InvalidStateError: If the escrow can't be funded from its status
            UnauthorizedError: If someone other than the accepted buyer funds
            SelfDealing: If the seller tries to buy their own listing
        """
        escrow = self._load_escrow(escrow_id)
        allowed = LISTABLE_STATUSES | {EscrowStatus.OFFER_ACCEPTED.value}
        if escrow.status not in allowed:
            raise InvalidStateError(
                f"Escrow cannot be funded in status '{escrow.status}'", escrow_id=escrow_id
            )

        try:
            address = ShippingAddress.coerce(shipping_address)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        direct_purchase = escrow.status != EscrowStatus.OFFER_ACCEPTED.value
        if direct_purchase:
            if buyer_wallet == escrow.seller_wallet:
                raise SelfDealing("Cannot purchase your own listing")
            if address is None:
                raise ValidationError("Shipping address is required for a purchase")
        elif buyer_wallet != escrow.buyer_wallet:
            raise UnauthorizedError("Only the buyer whose offer was accepted can fund this escrow")

        if escrow.listing_price is None:
            raise InvalidStateError("Escrow has no listing price", escrow_id=escrow_id)
        amount = escrow.listing_price if funded_amount is None else int(funded_amount)
        if amount < escrow.listing_price:
            raise ValidationError(
                f"Funded amount {amount} is below the price of {escrow.listing_price}"
            )

        updated = copy.deepcopy(escrow)
        updated.status = EscrowStatus.FUNDED.value
        updated.buyer_wallet = buyer_wallet
        updated.funded_amount = amount
        updated.shipment_status = ShipmentStatus.PENDING.value
        if address is not None:
            updated.buyer_shipping_address = address
        updated = commit_escrow(
            self.escrows,
            escrow,
            updated,
            actor=buyer_wallet,
            reason="Direct purchase" if direct_purchase else "Accepted offer funded",
            metadata={"funded_amount": amount},
            now=self._now(),
        )

        rejected: List[str] = []
        if direct_purchase:
            rejected = self.offers.auto_reject_active_offers(escrow_id, REASON_PURCHASED)
            updated = self.offers.recompute_aggregates(escrow_id)

        logger.info(f"Escrow {escrow_id} funded by {buyer_wallet} ({amount} lamports)")
        notify_safely(
            self.notifications,
            escrow.seller_wallet,
            NotificationType.ORDER_FUNDED,
            "Order funded",
            "The buyer deposited funds. Please ship the item.",
            {"escrow_id": escrow_id},
        )

        return OperationResult(
            message="Purchase initiated successfully. Vendor will be notified to ship the item.",
            next_step="Vendor ships the item and submits tracking",
            escrow=updated,
            auto_rejected_offer_ids=rejected,
        )

    # =========================================================================
    # Ending a listing
    # =========================================================================

    def cancel(self, escrow_id: str, actor_wallet: str, reason: str) -> OperationResult:
        """Cancel an escrow that has no buyer.

        The seller or an escrow admin may cancel. The record is soft-deleted,
        open offers are auto-rejected and the asset goes back to listed.
        """
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")
        escrow = self._load_escrow(escrow_id)
        if escrow.seller_wallet != actor_wallet and not self._is_authorized(
            actor_wallet, Permission.MANAGE_ESCROWS
        ):
            raise UnauthorizedError("Only the seller or an admin can cancel this escrow")
        if escrow.buyer_wallet:
            raise InvalidStateError(
                "Cannot cancel an escrow after a buyer is assigned", escrow_id=escrow_id
            )
        self._check_transition(escrow, EscrowStatus.CANCELLED)

        updated = copy.deepcopy(escrow)
        updated.status = EscrowStatus.CANCELLED.value
        updated.cancel_reason = reason.strip()
        updated.deleted = True
        updated = commit_escrow(
            self.escrows, escrow, updated, actor=actor_wallet, reason=reason, now=self._now()
        )

        rejected = self.offers.auto_reject_active_offers(escrow_id, REASON_CANCELLED)
        updated = self.offers.recompute_aggregates(escrow_id)
        self._set_asset_status(updated, AssetStatus.LISTED)
        logger.info(f"Escrow {escrow_id} cancelled by {actor_wallet}")

        return OperationResult(
            message="Escrow cancelled.", escrow=updated, auto_rejected_offer_ids=rejected
        )

    def convert_to_pool(
        self, escrow_id: str, vendor_wallet: str, pool_ref: str
    ) -> OperationResult:
        """Turn a listing without a buyer into a crowdfunded pool."""
        if not pool_ref:
            raise ValidationError("pool_ref is required")
        escrow = self._load_escrow(escrow_id)
        if escrow.seller_wallet != vendor_wallet and not self._is_authorized(
            vendor_wallet, Permission.MANAGE_POOLS
        ):
            raise UnauthorizedError("Only the seller or a pool admin can convert this listing")
        if escrow.buyer_wallet or escrow.status not in LISTABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot convert escrow in status '{escrow.status}' to a pool",
                escrow_id=escrow_id,
            )

        updated = copy.deepcopy(escrow)
        updated.status = EscrowStatus.CONVERTED.value
        updated.sale_mode = SaleMode.CROWDFUNDED.value
        updated.accepting_offers = False
        updated.pool_ref = pool_ref
        updated = commit_escrow(
            self.escrows,
            escrow,
            updated,
            actor=vendor_wallet,
            reason=REASON_POOL_CONVERSION,
            metadata={"pool_ref": pool_ref},
            now=self._now(),
        )

        rejected = self.offers.auto_reject_active_offers(escrow_id, REASON_POOL_CONVERSION)
        updated = self.offers.recompute_aggregates(escrow_id)
        self._set_asset_status(updated, AssetStatus.POOLED)
        logger.info(f"Escrow {escrow_id} converted to pool {pool_ref}")

        return OperationResult(
            message="Listing converted to a crowdfunded pool.",
            escrow=updated,
            auto_rejected_offer_ids=rejected,
            extra={"pool_ref": pool_ref},
        )

    def mark_failed(self, escrow_id: str, admin_wallet: str, reason: str) -> OperationResult:
        """Move a stuck escrow to ``failed``.

        Any assigned buyer is kept as ``refund_wallet`` so the deposit can be
        returned.
        """
        self._require_permission(admin_wallet, Permission.MANAGE_ESCROWS)
        if not reason or not reason.strip():
            raise ValidationError("A failure reason is required")
        escrow = self._load_escrow(escrow_id, include_deleted=True)
        self._check_transition(escrow, EscrowStatus.FAILED)

        updated = copy.deepcopy(escrow)
        updated.status = EscrowStatus.FAILED.value
        updated.failure_reason = reason.strip()
        if escrow.buyer_wallet:
            updated.refund_wallet = escrow.buyer_wallet
            updated.buyer_wallet = None
        updated = commit_escrow(
            self.escrows, escrow, updated, actor=admin_wallet, reason=reason, now=self._now()
        )

        rejected = self.offers.auto_reject_active_offers(escrow_id, REASON_FAILED)
        updated = self.offers.recompute_aggregates(escrow_id)
        logger.warning(f"Escrow {escrow_id} marked failed by {admin_wallet}: {reason}")

        if updated.refund_wallet:
            notify_safely(
                self.notifications,
                updated.refund_wallet,
                NotificationType.ORDER_CANCELLED,
                "Order failed",
                f"Your order could not be completed: {reason}",
                {"escrow_id": escrow_id},
            )
        return OperationResult(
            message="Escrow marked as failed.",
            next_step="Refund the buyer" if updated.refund_wallet else None,
            escrow=updated,
            auto_rejected_offer_ids=rejected,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_transition(self, escrow: Escrow, new_status: EscrowStatus) -> None:
        if not escrow.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Cannot transition from '{escrow.status}' to '{new_status.value}'",
                escrow_id=escrow.id,
            )

