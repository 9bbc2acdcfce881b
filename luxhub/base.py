"""Plumbing shared by the marketplace services."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from luxhub.config import MarketplaceConfig
from luxhub.errors import EscrowNotFoundError, UnauthorizedError
from luxhub.money import RateConverter
from luxhub.protocols import (
    AssetStatus,
    AssetStore,
    AuthorizationService,
    NotificationSink,
    Permission,
)
from luxhub.utils import utc_now

if TYPE_CHECKING:
    from luxhub.escrow.models import Escrow
    from luxhub.escrow.storage import EscrowStorage

logger = logging.getLogger(__name__)


class BaseService:
    """Holds the collaborators every service needs.

    Services are built once at startup and are safe to share between
    requests; they keep no per-request state.
    """

    def __init__(
        self,
        escrows: "EscrowStorage",
        config: Optional[MarketplaceConfig] = None,
        notifications: Optional[NotificationSink] = None,
        authorization: Optional[AuthorizationService] = None,
        clock: Optional[Callable[[], datetime]] = None,
        assets: Optional[AssetStore] = None,
    ):
        self.escrows = escrows
        self.assets = assets
        self.config = config or MarketplaceConfig()
        self.converter = RateConverter(self.config)
        self.notifications = notifications
        self.authorization = authorization
        self._clock = clock or utc_now

    def _now(self) -> datetime:
        return self._clock()

    def _load_escrow(self, escrow_id: str, include_deleted: bool = False) -> "Escrow":
        escrow = self.escrows.get_escrow(escrow_id)
        if escrow is None or (escrow.deleted and not include_deleted):
            raise EscrowNotFoundError(f"Escrow {escrow_id} not found", escrow_id=escrow_id)
        return escrow

    def _is_authorized(self, wallet: Optional[str], permission: Permission) -> bool:
        if not wallet or self.authorization is None:
            return False
        return self.authorization.is_authorized(wallet, permission.value)

    def _require_permission(self, wallet: str, permission: Permission) -> None:
        if not self._is_authorized(wallet, permission):
            logger.warning(f"Wallet {wallet} denied {permission.value}")
            raise UnauthorizedError(
                f"Wallet lacks the {permission.value} permission",
                wallet=wallet,
                permission=permission.value,
            )

    def _set_asset_status(self, escrow: "Escrow", status: AssetStatus) -> None:
        """Mirror the escrow outcome onto the asset catalogue.

        The escrow write has already committed, so a catalogue failure is
        logged for reconciliation instead of failing the request.
        """
        if self.assets is None:
            return
        try:
            self.assets.set_status(escrow.asset_ref, status.value)
        except Exception as e:
            logger.error(
                f"Failed to set asset {escrow.asset_ref} to {status.value} "
                f"for escrow {escrow.id}: {e}"
            )
