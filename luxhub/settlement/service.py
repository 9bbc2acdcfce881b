"""
Settlement bridge.

Confirms delivery, builds the fund-release instruction and hands it to the
settlement authority (a multisig). The escrow only becomes ``released`` once
the caller confirms the multisig executed.
"""

import copy
import logging
from datetime import datetime
from typing import Callable, Optional

from luxhub.base import BaseService
from luxhub.config import MarketplaceConfig
from luxhub.errors import (
    AlreadyConfirmed,
    AlreadyProcessedError,
    InvalidStateError,
    SettlementError,
    UnauthorizedError,
    ValidationError,
)
from luxhub.escrow.models import (
    ConfirmationType,
    DeliveryConfirmation,
    Escrow,
    EscrowStatus,
    SettlementStatus,
    ShipmentStatus,
)
from luxhub.escrow.storage import EscrowStorage, commit_escrow
from luxhub.money import split_release
from luxhub.notifications import NotificationType, notify_safely
from luxhub.protocols import (
    AssetStatus,
    AssetStore,
    AuthorizationService,
    NotificationSink,
    Permission,
    ReleaseInstruction,
    SettlementAuthority,
)
from luxhub.results import OperationResult

logger = logging.getLogger(__name__)

# Either field may carry the shipped signal
DELIVERABLE_STATUSES = frozenset(
    {
        EscrowStatus.SHIPPED.value,
        ShipmentStatus.IN_TRANSIT.value,
        EscrowStatus.DELIVERED.value,
    }
)


class SettlementService(BaseService):
    """Service for delivery confirmation and fund release."""

    def __init__(
        self,
        escrows: EscrowStorage,
        authority: Optional[SettlementAuthority] = None,
        config: Optional[MarketplaceConfig] = None,
        assets: Optional[AssetStore] = None,
        notifications: Optional[NotificationSink] = None,
        authorization: Optional[AuthorizationService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(escrows, config, notifications, authorization, clock, assets)
        self.authority = authority

    def confirm_delivery(
        self,
        escrow_id: str,
        actor_wallet: str,
        confirmation_type="buyer",
        rating: Optional[int] = None,
        review_text: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> OperationResult:
        """Confirm the buyer received the item.

        Buyer confirmations must come from the buyer wallet; admin
        confirmations need the can_manage_escrows permission. The returned
        result carries the release instruction.

        Raises:
            UnauthorizedError: If the caller may not confirm
            AlreadyConfirmed: If delivery was already confirmed
            InvalidStateError: If the item hasn't shipped
            ValidationError: If the rating is outside 1-5
        """
        try:
            kind = ConfirmationType(getattr(confirmation_type, "value", confirmation_type))
        except ValueError:
            raise ValidationError("confirmation_type must be 'buyer' or 'admin'")
        if rating is not None and (
            isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5
        ):
            raise ValidationError("Rating must be between 1 and 5")

        escrow = self._load_escrow(escrow_id)
        if kind == ConfirmationType.BUYER:
            if not escrow.buyer_wallet or escrow.buyer_wallet != actor_wallet:
                raise UnauthorizedError("Only the buyer can confirm delivery")
        elif not self._is_authorized(actor_wallet, Permission.MANAGE_ESCROWS):
            raise UnauthorizedError("Admin access required")

        if escrow.delivery_confirmation is not None or escrow.status == EscrowStatus.RELEASED.value:
            raise AlreadyConfirmed("Delivery has already been confirmed", escrow_id=escrow_id)
        if (
            escrow.status not in DELIVERABLE_STATUSES
            and escrow.shipment_status not in DELIVERABLE_STATUSES
        ):
            raise InvalidStateError(
                "Cannot confirm delivery. Item must be shipped first. "
                f"Current status: {escrow.status}",
                escrow_id=escrow_id,
            )
        if escrow.status != EscrowStatus.DELIVERED.value and not escrow.can_transition_to(
            EscrowStatus.DELIVERED
        ):
            raise InvalidStateError(
                f"Cannot confirm delivery for escrow in status '{escrow.status}'",
                escrow_id=escrow_id,
            )

        now = self._now()
        updated = copy.deepcopy(escrow)
        updated.status = EscrowStatus.DELIVERED.value
        updated.shipment_status = ShipmentStatus.VERIFIED.value
        updated.shipment_verified_at = escrow.shipment_verified_at or now
        updated.shipment_verified_by = escrow.shipment_verified_by or actor_wallet
        updated.delivery_confirmation = DeliveryConfirmation(
            confirmed_by=actor_wallet,
            confirmation_type=kind.value,
            confirmed_at=now,
            rating=rating,
            review_text=review_text,
            notes=notes,
        )
        if escrow.settlement_status == SettlementStatus.NONE.value:
            updated.settlement_status = SettlementStatus.READY.value
        updated = commit_escrow(
            self.escrows,
            escrow,
            updated,
            actor=actor_wallet,
            reason=f"Delivery confirmed by {kind.value}",
            now=now,
        )
        logger.info(f"Delivery confirmed for escrow {escrow_id} by {kind.value} {actor_wallet}")

        notify_safely(
            self.notifications,
            escrow.seller_wallet,
            NotificationType.ORDER_DELIVERED,
            "Delivery confirmed",
            "Delivery was confirmed. Funds will be released after multisig approval.",
            {"escrow_id": escrow_id},
        )

        return OperationResult(
            message="Delivery confirmed successfully. Funds release process initiated.",
            next_step="Submit the release proposal to the multisig",
            escrow=updated,
            instruction=self.build_release_instruction(updated),
        )

    def build_release_instruction(self, escrow: Escrow) -> ReleaseInstruction:
        """Build the 97% seller / 3% platform fee split for an escrow."""
        total = escrow.funded_amount if escrow.funded_amount is not None else escrow.listing_price
        if total is None or not escrow.buyer_wallet:
            raise InvalidStateError(
                "Escrow has no funded amount or buyer to release", escrow_id=escrow.id
            )
        split = split_release(total)
        return ReleaseInstruction(
            escrow_id=escrow.id,
            escrow_address=escrow.escrow_address,
            asset_ref=escrow.asset_ref,
            seller_wallet=escrow.seller_wallet,
            buyer_wallet=escrow.buyer_wallet,
            total_amount=split.total,
            seller_amount=split.seller_amount,
            fee_amount=split.fee_amount,
            amount_usd=escrow.listing_price_usd,
            fee_recipient=self.config.fee_recipient_wallet,
        )

    def propose_release(self, escrow_id: str, actor_wallet: str) -> OperationResult:
        """Hand the release instruction to the settlement authority.

        On failure the escrow is left untouched and SettlementError is raised.
        """
        self._require_permission(actor_wallet, Permission.MANAGE_ESCROWS)
        escrow = self._load_escrow(escrow_id)
        if escrow.status != EscrowStatus.DELIVERED.value:
            raise InvalidStateError(
                f"Cannot release funds for escrow in status '{escrow.status}'",
                escrow_id=escrow_id,
            )
        if escrow.settlement_status in (
            SettlementStatus.PROPOSED.value,
            SettlementStatus.EXECUTED.value,
        ):
            raise AlreadyProcessedError(
                "A release proposal already exists for this escrow",
                escrow_id=escrow_id,
                proposal_ref=escrow.settlement_proposal_ref,
            )
        if self.authority is None:
            raise SettlementError("No settlement authority is configured")

        instruction = self.build_release_instruction(escrow)
        try:
            receipt = self.authority.propose(instruction)
        except Exception as e:
            logger.error(f"Release proposal for escrow {escrow_id} failed: {e}")
            raise SettlementError(
                f"Settlement authority rejected the release proposal: {e}", escrow_id=escrow_id
            ) from e

        updated = copy.deepcopy(escrow)
        updated.settlement_status = SettlementStatus.PROPOSED.value
        updated.settlement_proposal_ref = receipt.proposal_ref
        updated = commit_escrow(self.escrows, escrow, updated, actor=actor_wallet, now=self._now())
        logger.info(f"Release proposal {receipt.proposal_ref} created for escrow {escrow_id}")

        return OperationResult(
            message="Release proposal submitted. Awaiting multisig approval.",
            next_step="Multisig members approve and execute the proposal",
            escrow=updated,
            instruction=instruction,
            extra={"proposal_ref": receipt.proposal_ref},
        )

    def record_execution(
        self, escrow_id: str, actor_wallet: str, tx_ref: Optional[str] = None
    ) -> OperationResult:
        """Mark funds as released after the multisig executed the proposal.

        Without a tx_ref the authority is asked to execute the stored proposal.

        Raises:
            AlreadyProcessedError: If the release was already recorded
            SettlementError: If the authority fails to execute
        """
        self._require_permission(actor_wallet, Permission.EXECUTE_SQUADS)
        escrow = self._load_escrow(escrow_id)
        if (
            escrow.status == EscrowStatus.RELEASED.value
            or escrow.settlement_status == SettlementStatus.EXECUTED.value
        ):
            raise AlreadyProcessedError("Funds were already released", escrow_id=escrow_id)
        if not escrow.can_transition_to(EscrowStatus.RELEASED):
            raise InvalidStateError(
                f"Cannot release funds for escrow in status '{escrow.status}'",
                escrow_id=escrow_id,
            )
        if escrow.settlement_status != SettlementStatus.PROPOSED.value:
            raise InvalidStateError(
                "No release proposal has been submitted for this escrow", escrow_id=escrow_id
            )

        if tx_ref is None:
            if self.authority is None:
                raise SettlementError("No settlement authority is configured")
            try:
                tx_ref = self.authority.execute(escrow.settlement_proposal_ref).tx_ref
            except Exception as e:
                logger.error(f"Executing release for escrow {escrow_id} failed: {e}")
                raise SettlementError(
                    f"Settlement authority failed to execute the release: {e}",
                    escrow_id=escrow_id,
                ) from e

        now = self._now()
        updated = copy.deepcopy(escrow)
        updated.status = EscrowStatus.RELEASED.value
        updated.settlement_status = SettlementStatus.EXECUTED.value
        updated.settlement_executed_at = now
        updated.settlement_tx_ref = tx_ref
        updated = commit_escrow(
            self.escrows,
            escrow,
            updated,
            actor=actor_wallet,
            reason="Funds released",
            metadata={"tx_ref": tx_ref} if tx_ref else None,
            now=now,
        )
        self._set_asset_status(updated, AssetStatus.SOLD)
        logger.info(f"Funds released for escrow {escrow_id} (tx {tx_ref})")

        instruction = self.build_release_instruction(updated)
        notify_safely(
            self.notifications,
            escrow.seller_wallet,
            NotificationType.PAYMENT_RELEASED,
            "Payment released",
            f"{instruction.seller_amount} lamports were released to your wallet.",
            {"escrow_id": escrow_id, "tx_ref": tx_ref},
        )
        return OperationResult(
            message="Funds released. Transaction complete!",
            escrow=updated,
            instruction=instruction,
        )
