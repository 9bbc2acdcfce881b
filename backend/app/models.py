"""Pydantic models shared by the API routes."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Common Models
# =============================================================================

class ShippingAddressIn(BaseModel):
    """Delivery address supplied by a buyer."""
    full_name: str = Field(..., min_length=1, max_length=200)
    street1: str = Field(..., min_length=1, max_length=200)
    street2: str | None = Field(default=None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=2, max_length=56)
    phone: str | None = Field(default=None, max_length=40)
    email: str | None = Field(default=None, max_length=254)
    delivery_instructions: str | None = Field(default=None, max_length=500)


class OperationResponse(BaseModel):
    """Outcome of a marketplace operation.

    ``escrow`` and ``offer`` are snapshots taken after the write. Operations
    can add fields of their own (e.g. ``settlement_proposal_ref``).
    """
    model_config = ConfigDict(extra="allow")

    message: str
    next_step: str | None = None
    escrow: dict[str, Any] | None = None
    offer: dict[str, Any] | None = None
    instruction: dict[str, Any] | None = None
    tracking_url: str | None = None
    auto_rejected_offer_ids: list[str] = []


class ReasonRequest(BaseModel):
    """Request carrying a free-text reason."""
    reason: str = Field(..., min_length=1, max_length=1000)

