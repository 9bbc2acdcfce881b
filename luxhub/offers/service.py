"""
Offer negotiation service.

Handles the buyer/vendor negotiation on an escrow: creating offers, counter
offers, rejections, withdrawals and acceptance. Accepting an offer assigns the
buyer to the escrow and auto-rejects every other active offer on it.
"""

import copy
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable, List, Optional

from luxhub.addresses import ShippingAddress
from luxhub.base import BaseService
from luxhub.config import MarketplaceConfig
from luxhub.errors import (
    BelowMinimumOffer,
    ConcurrentModification,
    DuplicateActiveOffer,
    DuplicateRecordError,
    EscrowNotAcceptingOffers,
    EscrowNotFoundError,
    EscrowNotListable,
    InvalidStateError,
    OfferExpired,
    OfferNotFoundError,
    SelfDealing,
    UnauthorizedError,
    ValidationError,
)
from luxhub.escrow.models import Escrow, EscrowStatus
from luxhub.escrow.storage import EscrowStorage, commit_escrow
from luxhub.logging_config import log_offer_event
from luxhub.money import royalty_for
from luxhub.notifications import NotificationType, notify_safely
from luxhub.offers.models import (
    ACTIVE_OFFER_STATUSES,
    CounterOffer,
    CounterRole,
    Offer,
    OfferStatus,
)
from luxhub.offers.storage import OfferStorage, commit_offer
from luxhub.protocols import AuthorizationService, NotificationSink
from luxhub.results import OperationResult

logger = logging.getLogger(__name__)

REASON_OFFER_ACCEPTED = "Another offer was accepted"


class VendorAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"


class BuyerAction(str, Enum):
    ACCEPT_COUNTER = "accept_counter"
    REJECT_COUNTER = "reject_counter"
    COUNTER = "counter"
    WITHDRAW = "withdraw"


class OfferService(BaseService):
    """Service for offer negotiation.

    Every write is a compare-and-swap on the record version. Conflicting
    writes raise ConcurrentModification and the caller retries.
    """

    def __init__(
        self,
        offers: OfferStorage,
        escrows: EscrowStorage,
        config: Optional[MarketplaceConfig] = None,
        notifications: Optional[NotificationSink] = None,
        authorization: Optional[AuthorizationService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the offer service.

        Args:
            offers: Offer storage backend
            escrows: Escrow storage backend
            config: Marketplace configuration
            notifications: Optional notification sink
        """
        super().__init__(escrows, config, notifications, authorization, clock)
        self.offers = offers

    # =========================================================================
    # Queries
    # =========================================================================

    def get_offer(self, offer_id: str) -> Offer:
        """Get an offer by ID.

        Raises:
            OfferNotFoundError: If the offer doesn't exist
        """
        offer = self.offers.get_offer(offer_id)
        if offer is None:
            raise OfferNotFoundError(f"Offer {offer_id} not found", offer_id=offer_id)
        return offer

    def list_offers(
        self,
        escrow_id: Optional[str] = None,
        buyer_wallet: Optional[str] = None,
        seller_wallet: Optional[str] = None,
        status=None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Offer]:
        return self.offers.list_offers(
            escrow_id=escrow_id,
            buyer_wallet=buyer_wallet,
            seller_wallet=seller_wallet,
            status=status,
            limit=limit,
            offset=offset,
        )

    def _active_offers(self, escrow_id: str) -> List[Offer]:
        return self.offers.list_offers(
            escrow_id=escrow_id, status=list(ACTIVE_OFFER_STATUSES), limit=10_000
        )

    # =========================================================================
    # Create
    # =========================================================================

    def create_offer(
        self,
        escrow_id: str,
        buyer_wallet: str,
        shipping_address,
        offer_amount: Optional[int] = None,
        offer_price_usd: Optional[Decimal] = None,
        message: Optional[str] = None,
        expires_in_hours: Optional[int] = None,
    ) -> OperationResult:
        """Submit a new offer on an escrow.

        Args:
            escrow_id: Escrow to make the offer on
            buyer_wallet: Wallet making the offer
            shipping_address: ShippingAddress or dict with the same fields
            offer_amount: Amount in lamports (derived from USD if omitted)
            offer_price_usd: Amount in USD (derived from lamports if omitted)
            message: Optional note to the vendor
            expires_in_hours: Optional lifetime of the offer

        Raises:
            EscrowNotFoundError: If the escrow doesn't exist
            EscrowNotAcceptingOffers: If the listing doesn't take offers
            EscrowNotListable: If the escrow already has a buyer or is closed
            BelowMinimumOffer: If the amount is below the listing minimum
            SelfDealing: If the buyer is the seller
            DuplicateActiveOffer: If the buyer already has an active offer
        """
        escrow = self._load_escrow(escrow_id)

        if not escrow.accepts_offers:
            raise EscrowNotAcceptingOffers(
                "This listing is not accepting offers", escrow_id=escrow_id
            )
        if not escrow.is_listable:
            raise EscrowNotListable(
                f"Escrow is not accepting offers in status '{escrow.status}'",
                escrow_id=escrow_id,
            )

        try:
            address = ShippingAddress.coerce(shipping_address)
            amount, amount_usd = self.converter.complete(offer_amount, offer_price_usd)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if address is None:
            raise ValidationError("Shipping address is required")

        self._check_minimum(escrow, amount, amount_usd)
        if buyer_wallet == escrow.seller_wallet:
            raise SelfDealing("Cannot make an offer on your own listing")

        expires_at = None
        if expires_in_hours is not None:
            if expires_in_hours <= 0 or expires_in_hours > self.config.max_offer_expiry_hours:
                raise ValidationError(
                    f"expires_in_hours must be between 1 and {self.config.max_offer_expiry_hours}"
                )
            expires_at = self._now() + timedelta(hours=expires_in_hours)

        self._clear_buyer_offer_slot(escrow_id, buyer_wallet)

        now = self._now()
        try:
            offer = Offer(
                id=str(uuid.uuid4()),
                escrow_id=escrow.id,
                buyer_wallet=buyer_wallet,
                seller_wallet=escrow.seller_wallet,
                offer_amount=amount,
                offer_price_usd=amount_usd,
                shipping_address=address,
                message=message,
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        try:
            self.offers.save_offer(offer)
        except DuplicateRecordError as e:
            raise DuplicateActiveOffer(
                "You already have an active offer on this listing", escrow_id=escrow_id
            ) from e

        # An accept may have committed between our checks and the insert.
        latest = self._load_escrow(escrow_id, include_deleted=True)
        if not latest.is_listable:
            logger.warning(
                f"Escrow {escrow_id} closed while offer {offer.id} was being created; "
                "auto-rejecting it"
            )
            self._force_close(offer.id, REASON_OFFER_ACCEPTED, OfferStatus.AUTO_REJECTED)
            self.recompute_aggregates(escrow_id)
            raise EscrowNotListable(
                "Escrow stopped accepting offers while yours was being submitted",
                escrow_id=escrow_id,
            )

        escrow = self.recompute_aggregates(escrow_id)
        logger.info(
            f"Offer {offer.id} created on escrow {escrow_id} by {buyer_wallet} "
            f"({amount} lamports / ${amount_usd})"
        )

        notify_safely(
            self.notifications,
            escrow.seller_wallet,
            NotificationType.OFFER_RECEIVED,
            "New offer received",
            f"You received an offer of ${amount_usd}",
            {"escrow_id": escrow_id, "offer_id": offer.id},
        )

        return OperationResult(
            message="Offer submitted successfully. Awaiting vendor response.",
            next_step="Vendor can accept, reject, or counter the offer",
            escrow=escrow,
            offer=self.get_offer(offer.id),
        )

    def _clear_buyer_offer_slot(self, escrow_id: str, buyer_wallet: str) -> None:
        """Expire the buyer's lapsed offer, or refuse if one is still live."""
        existing = self.offers.list_offers(
            escrow_id=escrow_id,
            buyer_wallet=buyer_wallet,
            status=list(ACTIVE_OFFER_STATUSES),
        )
        now = self._now()
        for offer in existing:
            if not offer.is_expired(now):
                raise DuplicateActiveOffer(
                    "You already have an active offer on this listing",
                    escrow_id=escrow_id,
                    offer_id=offer.id,
                )
            self._force_close(offer.id, None, OfferStatus.EXPIRED)

    # =========================================================================
    # Vendor responses
    # =========================================================================

    def vendor_respond(
        self,
        offer_id: str,
        vendor_wallet: str,
        action,
        rejection_reason: Optional[str] = None,
        counter_amount: Optional[int] = None,
        counter_amount_usd: Optional[Decimal] = None,
        counter_message: Optional[str] = None,
    ) -> OperationResult:
        """Vendor accepts, rejects or counters an offer.

        Raises:
            OfferNotFoundError: If the offer doesn't exist
            UnauthorizedError: If the caller isn't the escrow seller
            InvalidStateError: If the offer is no longer active
            OfferExpired: If the offer has expired
        """
        action = self._parse_action(VendorAction, action)
        offer = self.get_offer(offer_id)
        escrow = self._load_escrow(offer.escrow_id)

        if escrow.seller_wallet != vendor_wallet:
            raise UnauthorizedError("Not authorized to respond to this offer")
        if action == VendorAction.ACCEPT and self._is_accepted_on(offer, escrow):
            result = self._resume_accept(offer, escrow)
            result.next_step = "Buyer deposits funds to the escrow"
            return result
        if not offer.is_active:
            raise InvalidStateError(f"Cannot respond to offer with status '{offer.status}'")
        self._check_not_expired(offer)

        if action == VendorAction.ACCEPT:
            amount, amount_usd = offer.latest_amounts(CounterRole.BUYER)
            result = self._accept(offer, escrow, vendor_wallet, amount, amount_usd)
            result.message = "Offer accepted. Buyer should now deposit funds to the escrow."
            result.next_step = "Buyer deposits funds to the escrow"
            return result

        if action == VendorAction.REJECT:
            if not rejection_reason or not rejection_reason.strip():
                raise ValidationError("rejection_reason is required when rejecting an offer")
            updated = copy.deepcopy(offer)
            updated.status = OfferStatus.REJECTED.value
            updated.rejection_reason = rejection_reason.strip()
            updated.responded_at = self._now()
            updated.responded_by = vendor_wallet
            updated = commit_offer(self.offers, offer, updated, now=self._now())
            escrow = self.recompute_aggregates(escrow.id)
            log_offer_event(offer_id, "rejected", vendor_wallet)

            notify_safely(
                self.notifications,
                offer.buyer_wallet,
                NotificationType.OFFER_REJECTED,
                "Offer rejected",
                f"Your offer was rejected: {updated.rejection_reason}",
                {"escrow_id": escrow.id, "offer_id": offer_id},
            )
            return OperationResult(message="Offer rejected.", escrow=escrow, offer=updated)

        updated = self._append_counter(
            offer, CounterRole.VENDOR, vendor_wallet, counter_amount, counter_amount_usd,
            counter_message, escrow,
        )
        escrow = self.recompute_aggregates(escrow.id)
        notify_safely(
            self.notifications,
            offer.buyer_wallet,
            NotificationType.OFFER_COUNTERED,
            "Counter offer received",
            f"The vendor countered with ${updated.latest_counter.amount_usd}",
            {"escrow_id": escrow.id, "offer_id": offer_id},
        )
        return OperationResult(
            message="Counter offer submitted. Awaiting buyer response.",
            next_step="Buyer can accept, reject, or counter",
            escrow=escrow,
            offer=updated,
        )

    # =========================================================================
    # Buyer responses
    # =========================================================================

    def buyer_respond(
        self,
        offer_id: str,
        buyer_wallet: str,
        action,
        counter_amount_usd: Optional[Decimal] = None,
        counter_amount: Optional[int] = None,
        counter_message: Optional[str] = None,
    ) -> OperationResult:
        """Buyer answers a counter offer or withdraws their offer.

        Withdraw works from pending or countered; the other actions need the
        offer to be countered.
        """
        action = self._parse_action(BuyerAction, action)
        offer = self.get_offer(offer_id)

        if offer.buyer_wallet != buyer_wallet:
            raise UnauthorizedError("Not authorized to respond to this offer")

        if action == BuyerAction.ACCEPT_COUNTER and offer.status == OfferStatus.ACCEPTED.value:
            escrow = self.escrows.get_escrow(offer.escrow_id)
            if escrow is not None and self._is_accepted_on(offer, escrow):
                result = self._resume_accept(offer, escrow)
                result.next_step = "Deposit funds to the escrow"
                return result

        if action == BuyerAction.WITHDRAW:
            if not offer.is_active:
                raise InvalidStateError(
                    f"Cannot withdraw offer with status '{offer.status}'. "
                    "Must be pending or countered."
                )
        elif offer.status != OfferStatus.COUNTERED.value:
            raise InvalidStateError(
                f"Cannot {action.value.replace('_', ' ')} - offer status is "
                f"'{offer.status}', expected 'countered'."
            )
        self._check_not_expired(offer)

        escrow = self.escrows.get_escrow(offer.escrow_id)
        if escrow is None or escrow.deleted:
            raise EscrowNotFoundError(
                "Associated escrow not found", escrow_id=offer.escrow_id
            )

        if action == BuyerAction.ACCEPT_COUNTER:
            latest = offer.latest_counter
            if latest is None or latest.from_role != CounterRole.VENDOR.value:
                raise InvalidStateError(
                    "Cannot accept counter - the latest counter offer is your own. "
                    "Wait for the vendor to respond."
                )
            amount, amount_usd = offer.latest_amounts(CounterRole.VENDOR)
            result = self._accept(offer, escrow, buyer_wallet, amount, amount_usd)
            result.message = "Counter-offer accepted. You can now deposit funds to the escrow."
            result.next_step = "Deposit funds to the escrow"
            return result

        if action == BuyerAction.COUNTER:
            updated = self._append_counter(
                offer, CounterRole.BUYER, buyer_wallet, counter_amount, counter_amount_usd,
                counter_message, escrow,
            )
            escrow = self.recompute_aggregates(escrow.id)
            notify_safely(
                self.notifications,
                escrow.seller_wallet,
                NotificationType.OFFER_COUNTERED,
                "Counter offer received",
                f"The buyer countered with ${updated.latest_counter.amount_usd}",
                {"escrow_id": escrow.id, "offer_id": offer_id},
            )
            return OperationResult(
                message="Counter-offer submitted. Awaiting vendor response.",
                next_step="Vendor can accept, reject, or counter",
                escrow=escrow,
                offer=updated,
            )

        updated = copy.deepcopy(offer)
        if action == BuyerAction.REJECT_COUNTER:
            updated.status = OfferStatus.REJECTED.value
            message = "Counter-offer rejected."
        else:
            updated.status = OfferStatus.WITHDRAWN.value
            message = "Offer withdrawn successfully."
        updated.responded_at = self._now()
        updated.responded_by = buyer_wallet
        updated = commit_offer(self.offers, offer, updated, now=self._now())
        escrow = self.recompute_aggregates(escrow.id)
        log_offer_event(offer_id, updated.status, buyer_wallet, previous=offer.status)
        return OperationResult(message=message, escrow=escrow, offer=updated)

    # =========================================================================
    # Accept + sweep
    # =========================================================================

    def _accept(
        self,
        offer: Offer,
        escrow: Escrow,
        actor: str,
        amount: int,
        amount_usd: Decimal,
    ) -> OperationResult:
        """Bind the offer to the escrow and close every competing offer.

        The escrow is claimed first so only one accept can win. If the offer
        itself changed in the meantime the escrow claim is reverted.
        """
        if not escrow.is_listable or escrow.accepted_offer_id:
            raise EscrowNotListable(
                f"Escrow can no longer accept an offer (status '{escrow.status}')",
                escrow_id=escrow.id,
            )

        claimed = copy.deepcopy(escrow)
        claimed.status = EscrowStatus.OFFER_ACCEPTED.value
        claimed.buyer_wallet = offer.buyer_wallet
        claimed.buyer_shipping_address = offer.shipping_address
        claimed.accepted_offer_id = offer.id
        claimed.listing_price = amount
        claimed.listing_price_usd = amount_usd
        claimed.royalty_amount = royalty_for(amount_usd)
        claimed = commit_escrow(
            self.escrows,
            escrow,
            claimed,
            actor=actor,
            reason="Offer accepted",
            metadata={"offer_id": offer.id},
            now=self._now(),
        )

        accepted = copy.deepcopy(offer)
        accepted.status = OfferStatus.ACCEPTED.value
        accepted.responded_at = self._now()
        accepted.responded_by = actor
        try:
            accepted = commit_offer(self.offers, offer, accepted, now=self._now())
        except ConcurrentModification:
            self._release_claim(escrow, offer.id, actor)
            raise

        rejected_ids = self.auto_reject_active_offers(
            escrow.id, REASON_OFFER_ACCEPTED, except_offer_id=offer.id
        )
        escrow = self.recompute_aggregates(escrow.id)
        logger.info(
            f"Offer {offer.id} accepted on escrow {escrow.id} by {actor}; "
            f"auto-rejected {len(rejected_ids)} other offer(s)"
        )

        notify_safely(
            self.notifications,
            offer.buyer_wallet if actor != offer.buyer_wallet else escrow.seller_wallet,
            NotificationType.OFFER_ACCEPTED,
            "Offer accepted",
            f"The offer of ${amount_usd} was accepted",
            {"escrow_id": escrow.id, "offer_id": offer.id},
        )
        self._notify_closed(escrow.id, rejected_ids)

        return OperationResult(
            message="Offer accepted.",
            escrow=escrow,
            offer=accepted,
            auto_rejected_offer_ids=rejected_ids,
        )

    @staticmethod
    def _is_accepted_on(offer: Offer, escrow: Escrow) -> bool:
        return offer.status == OfferStatus.ACCEPTED.value and escrow.accepted_offer_id == offer.id

    def _resume_accept(self, offer: Offer, escrow: Escrow) -> OperationResult:
        """Repeat an accept that already committed: finish its sweep and report success."""
        rejected_ids = self.auto_reject_active_offers(
            escrow.id, REASON_OFFER_ACCEPTED, except_offer_id=offer.id
        )
        if rejected_ids:
            logger.warning(
                f"Finished interrupted sweep for offer {offer.id} on escrow {escrow.id}; "
                f"auto-rejected {len(rejected_ids)} offer(s)"
            )
            self._notify_closed(escrow.id, rejected_ids)
        escrow = self.recompute_aggregates(escrow.id)
        return OperationResult(
            message="Offer already accepted.",
            escrow=escrow,
            offer=self.get_offer(offer.id),
            auto_rejected_offer_ids=rejected_ids,
        )

    def _notify_closed(self, escrow_id: str, offer_ids: List[str]) -> None:
        for offer_id in offer_ids:
            closed = self.offers.get_offer(offer_id)
            if closed is not None:
                notify_safely(
                    self.notifications,
                    closed.buyer_wallet,
                    NotificationType.OFFER_REJECTED,
                    "Offer closed",
                    REASON_OFFER_ACCEPTED,
                    {"escrow_id": escrow_id, "offer_id": offer_id},
                )

    def _release_claim(self, before: Escrow, offer_id: str, actor: str) -> None:
        """Undo an escrow claim whose offer could not be marked accepted."""
        for _ in range(self.config.cas_max_attempts):
            current = self.escrows.get_escrow(before.id)
            if current is None or current.accepted_offer_id != offer_id:
                return
            reverted = copy.deepcopy(current)
            reverted.status = before.status
            reverted.buyer_wallet = None
            reverted.buyer_shipping_address = None
            reverted.accepted_offer_id = None
            reverted.listing_price = before.listing_price
            reverted.listing_price_usd = before.listing_price_usd
            reverted.royalty_amount = before.royalty_amount
            reverted.offer_accepted_at = None
            try:
                commit_escrow(
                    self.escrows,
                    current,
                    reverted,
                    actor=actor,
                    reason="Accept rolled back: offer changed concurrently",
                    metadata={"offer_id": offer_id},
                    now=self._now(),
                )
                logger.warning(f"Rolled back accept of offer {offer_id} on escrow {before.id}")
                return
            except ConcurrentModification:
                continue
        logger.error(f"Could not roll back accept of offer {offer_id} on escrow {before.id}")

    def auto_reject_active_offers(
        self,
        escrow_id: str,
        reason: str,
        except_offer_id: Optional[str] = None,
    ) -> List[str]:
        """Force every active offer on an escrow into ``auto_rejected``.

        Idempotent: offers already closed are skipped, and offers that change
        underneath the sweep are re-read and retried.

        Returns:
            IDs of the offers this call closed

        Raises:
            ConcurrentModification: If offers keep changing after every retry
        """
        closed: List[str] = []
        for attempt in range(self.config.sweep_max_attempts):
            remaining = [o for o in self._active_offers(escrow_id) if o.id != except_offer_id]
            if not remaining:
                return closed
            if attempt:
                logger.warning(
                    f"Auto-reject sweep on escrow {escrow_id} retrying "
                    f"({len(remaining)} offer(s) left, attempt {attempt + 1})"
                )
            for offer in remaining:
                if self._force_close(offer.id, reason, OfferStatus.AUTO_REJECTED):
                    closed.append(offer.id)

        if any(o.id != except_offer_id for o in self._active_offers(escrow_id)):
            logger.error(f"Auto-reject sweep on escrow {escrow_id} did not converge")
            raise ConcurrentModification(
                "Offers on this escrow are still changing. Please retry.", escrow_id=escrow_id
            )
        return closed

    def _force_close(self, offer_id: str, reason: Optional[str], status: OfferStatus) -> bool:
        """Move an active offer to a terminal status, retrying on conflicts.

        Returns True if this call performed the transition.
        """
        for _ in range(self.config.cas_max_attempts):
            offer = self.offers.get_offer(offer_id)
            if offer is None or not offer.is_active:
                return False
            updated = copy.deepcopy(offer)
            updated.status = status.value
            updated.responded_at = self._now()
            if status == OfferStatus.AUTO_REJECTED:
                updated.auto_rejected_reason = reason
            try:
                commit_offer(self.offers, offer, updated, now=self._now())
                return True
            except ConcurrentModification:
                continue
        return False

    # =========================================================================
    # Aggregates and expiry
    # =========================================================================

    def recompute_aggregates(self, escrow_id: str) -> Escrow:
        """Rebuild the escrow's offer count and highest offer from the offer store.

        Only the aggregate fields are written; the write is retried on version
        conflicts. Ties on the highest amount go to the earliest offer.

        If the escrow has an accepted offer but competing offers are still
        active, the interrupted auto-reject sweep is finished first.
        """
        self._finish_stale_sweep(escrow_id)
        for _ in range(self.config.cas_max_attempts):
            escrow = self._load_escrow(escrow_id, include_deleted=True)
            now = self._now()
            active = [o for o in self._active_offers(escrow_id) if not o.is_expired(now)]

            highest: Optional[Offer] = None
            if active:
                highest = min(
                    active,
                    key=lambda o: (
                        -o.latest_amounts(CounterRole.BUYER)[0],
                        o.created_at or now,
                    ),
                )
            if highest is not None:
                high_amount, high_usd = highest.latest_amounts(CounterRole.BUYER)
            else:
                high_amount, high_usd = None, None

            if (
                escrow.active_offer_count == len(active)
                and escrow.highest_offer == high_amount
                and escrow.highest_offer_usd == high_usd
                and escrow.highest_offer_id == (highest.id if highest else None)
            ):
                return escrow

            updated = copy.deepcopy(escrow)
            updated.active_offer_count = len(active)
            updated.highest_offer = high_amount
            updated.highest_offer_usd = high_usd
            updated.highest_offer_id = highest.id if highest else None
            try:
                return commit_escrow(
                    self.escrows, escrow, updated, actor="system", now=now
                )
            except ConcurrentModification:
                continue
        raise ConcurrentModification(
            "Escrow kept changing while offer totals were updated. Please retry.",
            escrow_id=escrow_id,
        )

    def _finish_stale_sweep(self, escrow_id: str) -> None:
        escrow = self._load_escrow(escrow_id, include_deleted=True)
        if not escrow.accepted_offer_id:
            return
        accepted = self.offers.get_offer(escrow.accepted_offer_id)
        if accepted is None or accepted.status != OfferStatus.ACCEPTED.value:
            return
        rejected_ids = self.auto_reject_active_offers(
            escrow_id, REASON_OFFER_ACCEPTED, except_offer_id=accepted.id
        )
        if rejected_ids:
            logger.warning(
                f"Escrow {escrow_id} had {len(rejected_ids)} offer(s) left active after "
                f"accepting {accepted.id}; auto-rejected them"
            )
            self._notify_closed(escrow_id, rejected_ids)

    def expire_stale_offers(
        self, now: Optional[datetime] = None, dry_run: bool = False
    ) -> List[str]:
        """Mark every active offer past its expiry as ``expired``.

        Expiry is also enforced lazily on every response, so this sweep only
        keeps listings and aggregates tidy.

        Returns:
            IDs of the offers that were (or, with dry_run, would be) expired
        """
        now = now or self._now()
        stale = [
            o
            for o in self.offers.list_offers(status=list(ACTIVE_OFFER_STATUSES), limit=10_000)
            if o.is_expired(now)
        ]
        if dry_run:
            return [o.id for o in stale]

        expired: List[str] = []
        touched_escrows = set()
        for offer in stale:
            if self._force_close(offer.id, None, OfferStatus.EXPIRED):
                expired.append(offer.id)
                touched_escrows.add(offer.escrow_id)
        for escrow_id in touched_escrows:
            self.recompute_aggregates(escrow_id)
        if expired:
            logger.info(f"Expired {len(expired)} stale offer(s)")
        return expired

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _check_minimum(escrow: Escrow, amount: int, amount_usd: Decimal) -> None:
        if escrow.minimum_offer is not None and amount < escrow.minimum_offer:
            raise BelowMinimumOffer(
                f"Offer is below the minimum of {escrow.minimum_offer} lamports",
                minimum_offer=escrow.minimum_offer,
            )
        if escrow.minimum_offer_usd is not None and amount_usd < escrow.minimum_offer_usd:
            raise BelowMinimumOffer(
                f"Offer is below the minimum of ${escrow.minimum_offer_usd}",
                minimum_offer_usd=str(escrow.minimum_offer_usd),
            )

    def _check_not_expired(self, offer: Offer) -> None:
        if offer.is_expired(self._now()):
            self._force_close(offer.id, None, OfferStatus.EXPIRED)
            self.recompute_aggregates(offer.escrow_id)
            raise OfferExpired("This offer has expired", offer_id=offer.id)

    def _append_counter(
        self,
        offer: Offer,
        role: CounterRole,
        wallet: str,
        amount: Optional[int],
        amount_usd: Optional[Decimal],
        message: Optional[str],
        escrow: Escrow,
    ) -> Offer:
        """Append a counter offer. Counters alternate between buyer and vendor."""
        latest = offer.latest_counter
        if latest is not None and latest.from_role == role.value:
            raise InvalidStateError(
                f"Cannot counter twice in a row - waiting for the "
                f"{'buyer' if role == CounterRole.VENDOR else 'vendor'} to respond."
            )
        try:
            amount, amount_usd = self.converter.complete(amount, amount_usd)
        except ValueError as e:
            raise ValidationError(f"Invalid counter amount: {e}") from e
        if role == CounterRole.BUYER:
            self._check_minimum(escrow, amount, amount_usd)

        updated = copy.deepcopy(offer)
        updated.counter_offers.append(
            CounterOffer(
                amount=amount,
                amount_usd=amount_usd,
                from_role=role.value,
                from_wallet=wallet,
                message=message,
                at=self._now(),
            )
        )
        updated.status = OfferStatus.COUNTERED.value
        updated.responded_at = self._now()
        updated.responded_by = wallet
        updated = commit_offer(self.offers, offer, updated, now=self._now())
        log_offer_event(offer.id, "countered", wallet, role=role.value, amount_usd=amount_usd)
        return updated

    @staticmethod
    def _parse_action(action_type, action):
        try:
            return action_type(getattr(action, "value", action))
        except ValueError:
            valid = ", ".join(a.value for a in action_type)
            raise ValidationError(f"Invalid action '{action}'. Must be one of: {valid}")

