"""API routes."""

from .auth import router as auth_router
from .escrows import router as escrows_router
from .maintenance import router as maintenance_router
from .offers import router as offers_router
from .settlement import router as settlement_router
from .shipments import router as shipments_router

__all__ = [
    "auth_router",
    "escrows_router",
    "offers_router",
    "shipments_router",
    "settlement_router",
    "maintenance_router",
]
