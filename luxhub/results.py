"""Uniform return value for marketplace operations."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from luxhub.escrow.models import Escrow
    from luxhub.offers.models import Offer
    from luxhub.protocols import ReleaseInstruction


@dataclass
class OperationResult:
    """Snapshot of the affected records plus a human-readable outcome.

    ``escrow`` and ``offer`` are copies taken after the write succeeded.
    """

    message: str
    escrow: Optional["Escrow"] = None
    offer: Optional["Offer"] = None
    next_step: Optional[str] = None
    instruction: Optional["ReleaseInstruction"] = None
    tracking_url: Optional[str] = None
    auto_rejected_offer_ids: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "next_step": self.next_step,
            "escrow": self.escrow.to_dict() if self.escrow else None,
            "offer": self.offer.to_dict() if self.offer else None,
            "instruction": self.instruction.to_dict() if self.instruction else None,
            "tracking_url": self.tracking_url,
            "auto_rejected_offer_ids": list(self.auto_rejected_offer_ids),
            **self.extra,
        }
