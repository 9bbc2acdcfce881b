"""Offer routes.

Buyers make offers on listings that accept them; vendors accept, reject or
counter; buyers answer counters or withdraw.
"""

from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field, model_validator

from ..auth import CurrentWallet
from ..logging_config import get_logger, log_request
from ..models import OperationResponse, ShippingAddressIn
from ..rate_limit import limiter
from ..services import MarketplaceServices

logger = get_logger("offers")
router = APIRouter(prefix="/offers", tags=["offers"])


# =============================================================================
# Request/Response Models
# =============================================================================


class OfferCreateRequest(BaseModel):
    """Request to make an offer. Give the amount in lamports, USD, or both."""

    escrow_id: str = Field(..., min_length=1)
    offer_amount: int | None = Field(default=None, gt=0, description="Amount in lamports")
    offer_price_usd: Decimal | None = Field(default=None, gt=0)
    shipping_address: ShippingAddressIn
    message: str | None = Field(default=None, max_length=2000)
    expires_in_hours: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def require_amount(self):
        if self.offer_amount is None and self.offer_price_usd is None:
            raise ValueError("offer_amount or offer_price_usd is required")
        return self


class VendorResponseRequest(BaseModel):
    action: Literal["accept", "reject", "counter"]
    rejection_reason: str | None = Field(default=None, max_length=1000)
    counter_amount: int | None = Field(default=None, gt=0)
    counter_amount_usd: Decimal | None = Field(default=None, gt=0)
    counter_message: str | None = Field(default=None, max_length=2000)


class BuyerResponseRequest(BaseModel):
    action: Literal["accept_counter", "reject_counter", "counter", "withdraw"]
    counter_amount: int | None = Field(default=None, gt=0)
    counter_amount_usd: Decimal | None = Field(default=None, gt=0)
    counter_message: str | None = Field(default=None, max_length=2000)


class OfferListResponse(BaseModel):
    offers: list[dict]
    total: int
    limit: int
    offset: int


# =============================================================================
# Routes
# =============================================================================


@router.get("", response_model=OfferListResponse)
@limiter.limit("60/minute")
async def list_offers(
    request: Request,
    auth: CurrentWallet,
    market: MarketplaceServices,
    escrow_id: str | None = None,
    role: Literal["buyer", "seller"] | None = None,
    status_filter: list[str] | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    """List offers. ``role`` narrows to offers the caller made or received."""
    log_request(logger, "GET", "/offers", auth.wallet)
    offers = await run_in_threadpool(
        market.offers.list_offers,
        escrow_id=escrow_id,
        buyer_wallet=auth.wallet if role == "buyer" else None,
        seller_wallet=auth.wallet if role == "seller" else None,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    return OfferListResponse(
        offers=[o.to_dict() for o in offers], total=len(offers), limit=limit, offset=offset
    )


@router.get("/{offer_id}")
@limiter.limit("60/minute")
async def get_offer(
    request: Request, offer_id: str, auth: CurrentWallet, market: MarketplaceServices
):
    """Get an offer by ID."""
    offer = await run_in_threadpool(market.offers.get_offer, offer_id)
    return offer.to_dict()


@router.post("", response_model=OperationResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_offer(
    request: Request,
    body: OfferCreateRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Make an offer on an escrow."""
    log_request(logger, "POST", "/offers", auth.wallet)
    result = await run_in_threadpool(
        market.offers.create_offer,
        body.escrow_id,
        auth.wallet,
        body.shipping_address.model_dump(),
        offer_amount=body.offer_amount,
        offer_price_usd=body.offer_price_usd,
        message=body.message,
        expires_in_hours=body.expires_in_hours,
    )
    logger.info(f"Offer {result.offer.id} created on escrow {body.escrow_id}")
    return result.to_dict()


@router.post("/{offer_id}/vendor-response", response_model=OperationResponse)
@limiter.limit("30/minute")
async def vendor_respond(
    request: Request,
    offer_id: str,
    body: VendorResponseRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Vendor accepts, rejects or counters an offer."""
    log_request(logger, "POST", f"/offers/{offer_id}/vendor-response", auth.wallet)
    result = await run_in_threadpool(
        market.offers.vendor_respond,
        offer_id,
        auth.wallet,
        body.action,
        rejection_reason=body.rejection_reason,
        counter_amount=body.counter_amount,
        counter_amount_usd=body.counter_amount_usd,
        counter_message=body.counter_message,
    )
    logger.info(f"Offer {offer_id} vendor action={body.action} -> {result.offer.status}")
    return result.to_dict()


@router.post("/{offer_id}/buyer-response", response_model=OperationResponse)
@limiter.limit("30/minute")
async def buyer_respond(
    request: Request,
    offer_id: str,
    body: BuyerResponseRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Buyer answers a counter offer or withdraws."""
    log_request(logger, "POST", f"/offers/{offer_id}/buyer-response", auth.wallet)
    result = await run_in_threadpool(
        market.offers.buyer_respond,
        offer_id,
        auth.wallet,
        body.action,
        counter_amount_usd=body.counter_amount_usd,
        counter_amount=body.counter_amount,
        counter_message=body.counter_message,
    )
    logger.info(f"Offer {offer_id} buyer action={body.action} -> {result.offer.status}")
    return result.to_dict()
