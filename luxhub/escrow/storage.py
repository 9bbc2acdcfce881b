"""
Escrow storage layer.

Every write after creation is a compare-and-swap on ``version``: the update
only lands if the stored record still has the version the caller read.
"""

import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Union

from luxhub.errors import ConcurrentModification, DuplicateRecordError
from luxhub.logging_config import log_transition
from luxhub.escrow.models import (
    STATUS_TIMESTAMP_FIELDS,
    TERMINAL_STATUSES,
    Escrow,
    EscrowStateTransition,
)

logger = logging.getLogger(__name__)

StatusFilter = Union[str, List[str], None]


def _status_values(status: StatusFilter) -> Optional[set]:
    if status is None:
        return None
    if isinstance(status, (list, tuple, set, frozenset)):
        return {getattr(s, "value", s) for s in status}
    return {getattr(status, "value", status)}


class EscrowStorage(Protocol):
    """Protocol for escrow persistence backends."""

    def save_escrow(self, escrow: Escrow) -> str:
        """Insert a new escrow. Returns the escrow ID.

        Raises:
            DuplicateRecordError: If the asset already has a non-terminal escrow
                or the escrow address is taken
        """
        ...

    def get_escrow(self, escrow_id: str) -> Optional[Escrow]:
        """Get an escrow by ID."""
        ...

    def get_escrow_by_address(self, escrow_address: str) -> Optional[Escrow]:
        """Get an escrow by its settlement address."""
        ...

    def find_active_escrow_for_asset(self, asset_ref: str) -> Optional[Escrow]:
        """Get the non-terminal escrow holding an asset, if any."""
        ...

    def list_escrows(
        self,
        status: StatusFilter = None,
        seller_wallet: Optional[str] = None,
        buyer_wallet: Optional[str] = None,
        asset_ref: Optional[str] = None,
        shipment_status: StatusFilter = None,
        include_deleted: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Escrow]:
        """List escrows with optional filters, newest first."""
        ...

    def update_escrow(self, escrow: Escrow, expected_version: int) -> bool:
        """Replace the stored escrow if its version still equals expected_version.

        Returns False when the record is missing or was modified concurrently.
        """
        ...

    # Transitions (audit log)
    def save_transition(self, transition: EscrowStateTransition) -> str:
        """Save a state transition record. Returns the transition ID."""
        ...

    def get_transitions(self, escrow_id: str) -> List[EscrowStateTransition]:
        """Get all state transitions for an escrow, oldest first."""
        ...


class InMemoryEscrowStorage:
    """In-memory escrow storage for testing and local development.

    Records are copied in and out so callers never share state with the store.
    """

    def __init__(self):
        """Initialize empty storage."""
        self._escrows: Dict[str, Escrow] = {}
        self._transitions: Dict[str, List[EscrowStateTransition]] = {}  # escrow_id -> list
        self._lock = threading.Lock()

    def _utc_now(self) -> datetime:
        """Get current UTC timestamp."""
        return datetime.now(timezone.utc)

    # === Escrows ===

    def save_escrow(self, escrow: Escrow) -> str:
        """Insert a new escrow."""
        with self._lock:
            if escrow.id in self._escrows:
                raise DuplicateRecordError(f"Escrow {escrow.id} already exists")
            for existing in self._escrows.values():
                if existing.escrow_address == escrow.escrow_address:
                    raise DuplicateRecordError(
                        f"Escrow address {escrow.escrow_address} already in use"
                    )
                if (
                    existing.asset_ref == escrow.asset_ref
                    and existing.status not in TERMINAL_STATUSES
                    and escrow.status not in TERMINAL_STATUSES
                ):
                    raise DuplicateRecordError(
                        f"Asset {escrow.asset_ref} already has an active escrow"
                    )
            self._escrows[escrow.id] = copy.deepcopy(escrow)
            self._transitions.setdefault(escrow.id, [])
        return escrow.id

    def get_escrow(self, escrow_id: str) -> Optional[Escrow]:
        """Get an escrow by ID."""
        with self._lock:
            escrow = self._escrows.get(escrow_id)
            return copy.deepcopy(escrow) if escrow else None

    def get_escrow_by_address(self, escrow_address: str) -> Optional[Escrow]:
        with self._lock:
            for escrow in self._escrows.values():
                if escrow.escrow_address == escrow_address:
                    return copy.deepcopy(escrow)
        return None

    def find_active_escrow_for_asset(self, asset_ref: str) -> Optional[Escrow]:
        with self._lock:
            for escrow in self._escrows.values():
                if escrow.asset_ref == asset_ref and escrow.status not in TERMINAL_STATUSES:
                    return copy.deepcopy(escrow)
        return None

    def list_escrows(
        self,
        status: StatusFilter = None,
        seller_wallet: Optional[str] = None,
        buyer_wallet: Optional[str] = None,
        asset_ref: Optional[str] = None,
        shipment_status: StatusFilter = None,
        include_deleted: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Escrow]:
        """List escrows with optional filters."""
        with self._lock:
            escrows = [copy.deepcopy(e) for e in self._escrows.values()]

        statuses = _status_values(status)
        shipment_statuses = _status_values(shipment_status)

        # Apply filters
        if not include_deleted:
            escrows = [e for e in escrows if not e.deleted]
        if statuses is not None:
            escrows = [e for e in escrows if e.status in statuses]
        if shipment_statuses is not None:
            escrows = [e for e in escrows if e.shipment_status in shipment_statuses]
        if seller_wallet is not None:
            escrows = [e for e in escrows if e.seller_wallet == seller_wallet]
        if buyer_wallet is not None:
            escrows = [e for e in escrows if e.buyer_wallet == buyer_wallet]
        if asset_ref is not None:
            escrows = [e for e in escrows if e.asset_ref == asset_ref]

        # Sort by created_at desc
        escrows.sort(key=lambda e: e.created_at or self._utc_now(), reverse=True)

        return escrows[offset : offset + limit]

    def update_escrow(self, escrow: Escrow, expected_version: int) -> bool:
        """Compare-and-swap an escrow on its version."""
        with self._lock:
            stored = self._escrows.get(escrow.id)
            if stored is None:
                return False
            if stored.version != expected_version:
                logger.debug(
                    f"Version mismatch on escrow {escrow.id}: "
                    f"expected {expected_version}, found {stored.version}"
                )
                return False
            self._escrows[escrow.id] = copy.deepcopy(escrow)
            return True

    # === Transitions ===

    def save_transition(self, transition: EscrowStateTransition) -> str:
        """Save a state transition record."""
        with self._lock:
            self._transitions.setdefault(transition.escrow_id, []).append(
                copy.deepcopy(transition)
            )
        return transition.id

    def get_transitions(self, escrow_id: str) -> List[EscrowStateTransition]:
        """Get all state transitions for an escrow."""
        with self._lock:
            transitions = [copy.deepcopy(t) for t in self._transitions.get(escrow_id, [])]
        # Sort by created_at asc
        return sorted(transitions, key=lambda t: t.created_at or self._utc_now())


def commit_escrow(
    storage: EscrowStorage,
    current: Escrow,
    updated: Escrow,
    actor: str,
    reason: Optional[str] = None,
    metadata: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> Escrow:
    """Write ``updated`` over ``current`` with a version check.

    Bumps the version, stamps ``updated_at`` and the per-status timestamp, and
    appends an audit log entry when the status changed.

    Raises:
        ConcurrentModification: If another writer got there first
    """
    now = now or datetime.now(timezone.utc)
    updated.version = current.version + 1
    updated.updated_at = now
    status_changed = updated.status != current.status
    if status_changed:
        stamp = STATUS_TIMESTAMP_FIELDS.get(updated.status)
        if stamp and getattr(updated, stamp) is None:
            setattr(updated, stamp, now)

    if not storage.update_escrow(updated, expected_version=current.version):
        logger.warning(
            f"Concurrent modification on escrow {current.id} "
            f"(version {current.version}, {current.status} -> {updated.status})"
        )
        raise ConcurrentModification(
            "Escrow was modified by another request. Please retry.",
            escrow_id=current.id,
        )

    if status_changed:
        storage.save_transition(
            EscrowStateTransition(
                id=str(uuid.uuid4()),
                escrow_id=current.id,
                from_status=current.status,
                to_status=updated.status,
                actor=actor,
                reason=reason,
                metadata=metadata or {},
                created_at=now,
            )
        )
        log_transition(current.id, current.status, updated.status, actor, reason)
    return updated
