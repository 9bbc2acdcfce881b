"""
Shipment verification service.

Vendors submit carrier tracking and proof photos for a funded escrow; an
escrow admin then approves (the escrow becomes delivered) or rejects (the
vendor must resubmit). Carrier tracking snapshots are recorded separately and
never move the verification sub-state.
"""

import copy
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from luxhub.base import BaseService
from luxhub.config import MarketplaceConfig
from luxhub.errors import (
    ConcurrentModification,
    InvalidStateError,
    MarketplaceError,
    UnauthorizedError,
    UnsupportedCarrier,
    ValidationError,
)
from luxhub.escrow.models import Escrow, EscrowStatus, ShipmentRejection, ShipmentStatus
from luxhub.escrow.storage import EscrowStorage, commit_escrow
from luxhub.notifications import NotificationType, notify_safely
from luxhub.protocols import (
    AuthorizationService,
    NotificationSink,
    Permission,
    ShippingLabel,
    ShippingProvider,
    ShippingRate,
)
from luxhub.results import OperationResult
from luxhub.shipping.carriers import (
    SUPPORTED_CARRIERS,
    invalid_proof_urls,
    normalize_carrier,
    tracking_url,
)

if TYPE_CHECKING:
    from luxhub.settlement.service import SettlementService

logger = logging.getLogger(__name__)

SHIPPABLE_STATUSES = frozenset({EscrowStatus.FUNDED.value, EscrowStatus.SHIPPED.value})


class ShipmentService(BaseService):
    """Service for vendor shipments and admin verification."""

    def __init__(
        self,
        escrows: EscrowStorage,
        config: Optional[MarketplaceConfig] = None,
        provider: Optional[ShippingProvider] = None,
        settlement: Optional["SettlementService"] = None,
        notifications: Optional[NotificationSink] = None,
        authorization: Optional[AuthorizationService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(escrows, config, notifications, authorization, clock)
        self.provider = provider
        self.settlement = settlement

    # =========================================================================
    # Vendor
    # =========================================================================

    def submit_shipment(
        self,
        escrow_id: str,
        vendor_wallet: str,
        carrier: str,
        tracking_number: str,
        proof_urls: List[str],
    ) -> OperationResult:
        """Record tracking and proof photos for a funded escrow.

        Raises:
            UnauthorizedError: If the caller isn't the seller
            InvalidStateError: If there is no buyer or the escrow isn't funded/shipped
            UnsupportedCarrier: If the carrier isn't recognized
            ValidationError: If tracking or proof URLs are missing or invalid
        """
        escrow = self._load_escrow(escrow_id)
        if escrow.seller_wallet != vendor_wallet:
            raise UnauthorizedError("Only the seller can submit shipment proof")
        if not escrow.buyer_wallet:
            raise InvalidStateError("Cannot submit shipment proof - no buyer assigned yet")
        if escrow.status not in SHIPPABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot submit shipment when escrow status is '{escrow.status}'. "
                "Required: funded or shipped"
            )

        normalized = normalize_carrier(carrier)
        if normalized is None:
            raise UnsupportedCarrier(
                f"Unsupported carrier '{carrier}'. Supported: {', '.join(SUPPORTED_CARRIERS)}"
            )
        tracking_number = (tracking_number or "").strip()
        if not tracking_number:
            raise ValidationError("tracking_number is required")
        proof_urls = [u.strip() for u in proof_urls or [] if isinstance(u, str) and u.strip()]
        if not proof_urls:
            raise ValidationError("At least one shipment proof image URL is required")
        invalid = invalid_proof_urls(proof_urls)
        if invalid:
            raise ValidationError(
                "Invalid proof URLs detected. Must be HTTPS or IPFS URLs.", invalid_urls=invalid
            )

        link = tracking_url(normalized, tracking_number)
        updated = copy.deepcopy(escrow)
        updated.status = EscrowStatus.SHIPPED.value
        updated.shipment_status = ShipmentStatus.PROOF_SUBMITTED.value
        updated.tracking_carrier = normalized
        updated.tracking_number = tracking_number
        updated.tracking_url = link
        updated.proof_urls = proof_urls
        updated.shipment_submitted_at = self._now()
        updated = commit_escrow(
            self.escrows,
            escrow,
            updated,
            actor=vendor_wallet,
            reason="Shipment submitted",
            metadata={"carrier": normalized, "tracking_number": tracking_number},
            now=self._now(),
        )
        logger.info(f"Shipment submitted for escrow {escrow_id}: {normalized} {tracking_number}")

        notify_safely(
            self.notifications,
            escrow.buyer_wallet,
            NotificationType.ORDER_SHIPPED,
            "Your order has shipped",
            f"Tracking: {normalized.upper()} {tracking_number}",
            {"escrow_id": escrow_id, "tracking_url": link},
        )
        notify_safely(
            self.notifications,
            vendor_wallet,
            NotificationType.SHIPMENT_SUBMITTED,
            "Shipment proof submitted",
            "Your shipment proof is awaiting admin verification.",
            {"escrow_id": escrow_id},
        )

        return OperationResult(
            message="Shipment proof submitted. Awaiting admin verification.",
            next_step="An admin verifies the shipment proof",
            escrow=updated,
            tracking_url=link,
        )

    def get_shipping_rates(
        self,
        escrow_id: str,
        vendor_wallet: str,
        from_address: Dict[str, Any],
        parcel: Dict[str, Any],
    ) -> List[ShippingRate]:
        """Quote carrier rates from the vendor to the buyer's address."""
        escrow = self._require_shippable(escrow_id, vendor_wallet)
        if escrow.buyer_shipping_address is None:
            raise InvalidStateError("Escrow has no buyer shipping address")
        return self._provider().get_rates(
            from_address, escrow.buyer_shipping_address.to_dict(), parcel
        )

    def purchase_label(self, escrow_id: str, vendor_wallet: str, rate_id: str) -> ShippingLabel:
        """Buy a label for a quoted rate. The caller still submits the shipment."""
        self._require_shippable(escrow_id, vendor_wallet)
        if not rate_id:
            raise ValidationError("rate_id is required")
        try:
            label = self._provider().purchase_label(rate_id)
        except ValueError as e:
            raise ValidationError(str(e), rate_id=rate_id) from e
        logger.info(f"Label purchased for escrow {escrow_id}: {label.carrier} {label.tracking_number}")
        return label

    # =========================================================================
    # Admin
    # =========================================================================

    def verify_shipment(
        self,
        escrow_id: str,
        admin_wallet: str,
        approved: bool,
        rejection_reason: Optional[str] = None,
        request_settlement_proposal: bool = False,
    ) -> OperationResult:
        """Approve or reject submitted shipment proof.

        Approval marks the escrow delivered. When asked, a release proposal is
        then requested from the settlement bridge; if that fails the
        verification still stands.

        Raises:
            UnauthorizedError: If the caller can't manage escrows
            InvalidStateError: If no proof is awaiting verification
            ValidationError: If a rejection has no reason
        """
        self._require_permission(admin_wallet, Permission.MANAGE_ESCROWS)
        escrow = self._load_escrow(escrow_id)
        if escrow.shipment_status != ShipmentStatus.PROOF_SUBMITTED.value:
            raise InvalidStateError(
                f"No shipment proof awaiting verification (shipment status "
                f"'{escrow.shipment_status}')",
                escrow_id=escrow_id,
            )
        if not escrow.tracking_carrier or not escrow.tracking_number or not escrow.proof_urls:
            raise InvalidStateError("Shipment is missing tracking data", escrow_id=escrow_id)

        if approved:
            return self._approve(escrow, admin_wallet, request_settlement_proposal)

        if not rejection_reason or not rejection_reason.strip():
            raise ValidationError("rejection_reason is required when rejecting shipment")

        updated = copy.deepcopy(escrow)
        updated.shipment_status = ShipmentStatus.PENDING.value
        updated.rejection_history.append(
            ShipmentRejection(
                rejected_at=self._now(),
                rejected_by=admin_wallet,
                reason=rejection_reason.strip(),
                previous_carrier=escrow.tracking_carrier,
                previous_tracking_number=escrow.tracking_number,
                previous_proof_urls=list(escrow.proof_urls),
            )
        )
        updated = commit_escrow(self.escrows, escrow, updated, actor=admin_wallet, now=self._now())
        logger.info(f"Shipment for escrow {escrow_id} rejected by {admin_wallet}")

        notify_safely(
            self.notifications,
            escrow.seller_wallet,
            NotificationType.SHIPMENT_REJECTED,
            "Shipment proof rejected",
            f"Please resubmit tracking and proof: {rejection_reason.strip()}",
            {"escrow_id": escrow_id},
        )
        return OperationResult(
            message="Shipment rejected. Vendor must resubmit tracking and proof.",
            next_step="Vendor resubmits tracking and proof",
            escrow=updated,
        )

    def _approve(
        self, escrow: Escrow, admin_wallet: str, request_settlement_proposal: bool
    ) -> OperationResult:
        if not escrow.can_transition_to(EscrowStatus.DELIVERED):
            raise InvalidStateError(
                f"Cannot verify shipment for escrow in status '{escrow.status}'",
                escrow_id=escrow.id,
            )
        now = self._now()
        updated = copy.deepcopy(escrow)
        updated.status = EscrowStatus.DELIVERED.value
        updated.shipment_status = ShipmentStatus.VERIFIED.value
        updated.shipment_verified_at = now
        updated.shipment_verified_by = admin_wallet
        updated = commit_escrow(
            self.escrows,
            escrow,
            updated,
            actor=admin_wallet,
            reason="Shipment verified",
            now=now,
        )
        logger.info(f"Shipment for escrow {escrow.id} verified by {admin_wallet}")

        for wallet in (escrow.buyer_wallet, escrow.seller_wallet):
            notify_safely(
                self.notifications,
                wallet,
                NotificationType.SHIPMENT_VERIFIED,
                "Shipment verified",
                "The shipment was verified by LuxHub.",
                {"escrow_id": escrow.id},
            )

        message = "Shipment verified."
        proposal_ref = None
        if request_settlement_proposal:
            if self.settlement is None:
                logger.warning(f"No settlement bridge configured; skipping proposal for {escrow.id}")
            else:
                try:
                    result = self.settlement.propose_release(escrow.id, admin_wallet)
                    updated = result.escrow
                    proposal_ref = updated.settlement_proposal_ref
                    message = "Shipment verified. Release proposal submitted for approval."
                except MarketplaceError as e:
                    logger.warning(f"Release proposal for escrow {escrow.id} failed: {e}")
                    message = "Shipment verified. Release proposal could not be created; retry later."

        return OperationResult(
            message=message,
            next_step="Buyer confirms delivery",
            escrow=updated,
            extra={"settlement_proposal_ref": proposal_ref} if proposal_ref else {},
        )

    def pending_shipments(self, limit: int = 100) -> List[Escrow]:
        """Escrows with proof awaiting verification, newest submission first."""
        escrows = self.escrows.list_escrows(
            shipment_status=ShipmentStatus.PROOF_SUBMITTED.value, limit=10_000
        )
        escrows.sort(
            key=lambda e: e.shipment_submitted_at or e.created_at or self._now(), reverse=True
        )
        return escrows[:limit]

    # =========================================================================
    # Carrier tracking
    # =========================================================================

    def refresh_tracking(self, escrow_id: str) -> OperationResult:
        """Poll the carrier and store its status on the escrow.

        Only ``carrier_status`` and ``last_tracking_update`` are written.
        """
        escrow = self._load_escrow(escrow_id)
        if not escrow.tracking_carrier or not escrow.tracking_number:
            raise InvalidStateError("Escrow has no tracking information", escrow_id=escrow_id)

        info = self._provider().get_tracking(escrow.tracking_carrier, escrow.tracking_number)

        for _ in range(self.config.cas_max_attempts):
            current = self._load_escrow(escrow_id)
            updated = copy.deepcopy(current)
            updated.carrier_status = info.status
            updated.last_tracking_update = self._now()
            try:
                updated = commit_escrow(
                    self.escrows, current, updated, actor="system", now=self._now()
                )
                break
            except ConcurrentModification:
                continue
        else:
            raise ConcurrentModification(
                "Escrow kept changing while tracking was updated. Please retry.",
                escrow_id=escrow_id,
            )

        logger.info(f"Tracking for escrow {escrow_id}: {info.status}")
        return OperationResult(
            message="Tracking updated.",
            escrow=updated,
            tracking_url=updated.tracking_url,
            extra={"carrier_status": info.status, "events": info.events},
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _provider(self) -> ShippingProvider:
        if self.provider is None:
            raise InvalidStateError("No shipping provider is configured")
        return self.provider

    def _require_shippable(self, escrow_id: str, vendor_wallet: str) -> Escrow:
        escrow = self._load_escrow(escrow_id)
        if escrow.seller_wallet != vendor_wallet:
            raise UnauthorizedError("Only the seller can ship this escrow")
        if escrow.status not in SHIPPABLE_STATUSES:
            raise InvalidStateError(f"Escrow in status '{escrow.status}' is not awaiting shipment")
        return escrow
