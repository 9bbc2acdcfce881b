"""Escrow subsystem for the LuxHub marketplace.

Models:
- Escrow: A listed asset moving through the sale lifecycle
- EscrowStatus: Escrow lifecycle status
- ShipmentStatus / SettlementStatus: Sub-states tracked on the escrow
- EscrowStateTransition: Audit log entry for status changes

Service:
- EscrowService: Create, price, fund, cancel, convert and fail escrows
"""

from luxhub.escrow.models import (
    VALID_ESCROW_TRANSITIONS,
    DeliveryConfirmation,
    Escrow,
    EscrowStateTransition,
    EscrowStatus,
    SaleMode,
    SettlementStatus,
    ShipmentRejection,
    ShipmentStatus,
)
from luxhub.escrow.service import EscrowService, EscrowTerms
from luxhub.escrow.storage import EscrowStorage, InMemoryEscrowStorage

__all__ = [
    # Models
    "Escrow",
    "EscrowStatus",
    "SaleMode",
    "ShipmentStatus",
    "SettlementStatus",
    "ShipmentRejection",
    "DeliveryConfirmation",
    "EscrowStateTransition",
    "VALID_ESCROW_TRANSITIONS",
    # Storage
    "EscrowStorage",
    "InMemoryEscrowStorage",
    # Service
    "EscrowService",
    "EscrowTerms",
]
