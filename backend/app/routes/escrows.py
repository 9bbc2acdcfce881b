"""Escrow routes.

Listing lifecycle endpoints: create, list, price updates, funding,
cancellation, pool conversion and admin failure handling.
"""

from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from luxhub.escrow.service import EscrowTerms

from ..auth import CurrentWallet
from ..logging_config import get_logger, log_request
from ..models import OperationResponse, ReasonRequest, ShippingAddressIn
from ..rate_limit import limiter
from ..services import MarketplaceServices

logger = get_logger("escrows")
router = APIRouter(prefix="/escrows", tags=["escrows"])


# =============================================================================
# Request/Response Models
# =============================================================================


class EscrowCreateRequest(BaseModel):
    """Request to open an escrow for an asset."""

    asset_ref: str = Field(..., min_length=1, max_length=128)
    escrow_address: str = Field(..., min_length=1, max_length=64)
    sale_mode: Literal["fixed_price", "accepting_offers"] = "fixed_price"
    listing_price: int | None = Field(default=None, gt=0, description="Price in lamports")
    listing_price_usd: Decimal | None = Field(default=None, gt=0)
    minimum_offer: int | None = Field(default=None, gt=0)
    minimum_offer_usd: Decimal | None = Field(default=None, gt=0)
    accepting_offers: bool = False


class MarkListedRequest(BaseModel):
    proposal_ref: str | None = Field(default=None, max_length=128)


class PriceUpdateRequest(BaseModel):
    """Listing terms to change. Omitted fields are left alone."""

    listing_price: int | None = Field(default=None, gt=0)
    listing_price_usd: Decimal | None = Field(default=None, gt=0)
    minimum_offer: int | None = Field(default=None, gt=0)
    minimum_offer_usd: Decimal | None = Field(default=None, gt=0)
    accepting_offers: bool | None = None
    sale_mode: Literal["fixed_price", "accepting_offers", "crowdfunded"] | None = None


class FundRequest(BaseModel):
    """Buyer deposit confirmation."""

    funded_amount: int | None = Field(default=None, gt=0, description="Deposited lamports")
    shipping_address: ShippingAddressIn | None = None


class ConvertToPoolRequest(BaseModel):
    pool_ref: str = Field(..., min_length=1, max_length=128)


class EscrowListResponse(BaseModel):
    escrows: list[dict]
    total: int
    limit: int
    offset: int


class TransitionListResponse(BaseModel):
    escrow_id: str
    transitions: list[dict]


# =============================================================================
# Queries
# =============================================================================


@router.get("", response_model=EscrowListResponse)
@limiter.limit("60/minute")
async def list_escrows(
    request: Request,
    market: MarketplaceServices,
    status_filter: list[str] | None = Query(default=None, alias="status"),
    seller_wallet: str | None = None,
    buyer_wallet: str | None = None,
    asset_ref: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    """List escrows, newest first."""
    logger.info(f"GET /escrows | status={status_filter} seller={seller_wallet}")
    escrows = await run_in_threadpool(
        market.escrows.list_escrows,
        status=status_filter,
        seller_wallet=seller_wallet,
        buyer_wallet=buyer_wallet,
        asset_ref=asset_ref,
        limit=limit,
        offset=offset,
    )
    return EscrowListResponse(
        escrows=[e.to_dict() for e in escrows],
        total=len(escrows),
        limit=limit,
        offset=offset,
    )


@router.get("/by-address/{escrow_address}")
@limiter.limit("60/minute")
async def get_escrow_by_address(request: Request, escrow_address: str, market: MarketplaceServices):
    """Look up an escrow by its on-chain address."""
    escrow = await run_in_threadpool(market.escrows.get_escrow_by_address, escrow_address)
    return escrow.to_dict()


@router.get("/{escrow_id}")
@limiter.limit("60/minute")
async def get_escrow(request: Request, escrow_id: str, market: MarketplaceServices):
    """Get an escrow by ID."""
    escrow = await run_in_threadpool(market.escrows.get_escrow, escrow_id)
    return escrow.to_dict()


@router.get("/{escrow_id}/history", response_model=TransitionListResponse)
@limiter.limit("30/minute")
async def get_escrow_history(
    request: Request, escrow_id: str, auth: CurrentWallet, market: MarketplaceServices
):
    """Status transition log for an escrow, oldest first."""
    log_request(logger, "GET", f"/escrows/{escrow_id}/history", auth.wallet)
    transitions = await run_in_threadpool(market.escrows.get_escrow_history, escrow_id)
    return TransitionListResponse(
        escrow_id=escrow_id, transitions=[t.to_dict() for t in transitions]
    )


# =============================================================================
# Lifecycle
# =============================================================================


@router.post("", response_model=OperationResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_escrow(
    request: Request,
    body: EscrowCreateRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Open an escrow for an asset. The caller becomes the seller."""
    log_request(logger, "POST", "/escrows", auth.wallet)
    terms = EscrowTerms(
        escrow_address=body.escrow_address,
        listing_price=body.listing_price,
        listing_price_usd=body.listing_price_usd,
        sale_mode=body.sale_mode,
        minimum_offer=body.minimum_offer,
        minimum_offer_usd=body.minimum_offer_usd,
        accepting_offers=body.accepting_offers,
    )
    result = await run_in_threadpool(
        market.escrows.create_escrow, body.asset_ref, auth.wallet, terms
    )
    logger.info(f"Escrow {result.escrow.id} created for asset {body.asset_ref}")
    return result.to_dict()


@router.post("/{escrow_id}/listed", response_model=OperationResponse)
@limiter.limit("30/minute")
async def mark_listed(
    request: Request,
    escrow_id: str,
    body: MarkListedRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Admin: record that the listing proposal was approved."""
    log_request(logger, "POST", f"/escrows/{escrow_id}/listed", auth.wallet)
    result = await run_in_threadpool(
        market.escrows.mark_listed, escrow_id, auth.wallet, body.proposal_ref
    )
    return result.to_dict()


@router.patch("/{escrow_id}/price", response_model=OperationResponse)
@limiter.limit("20/minute")
async def update_price(
    request: Request,
    escrow_id: str,
    body: PriceUpdateRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Seller: change listing terms before a buyer is assigned."""
    log_request(logger, "PATCH", f"/escrows/{escrow_id}/price", auth.wallet)
    fields = body.model_dump(exclude_unset=True)
    result = await run_in_threadpool(market.escrows.update_price, escrow_id, auth.wallet, fields)
    return result.to_dict()


@router.post("/{escrow_id}/fund", response_model=OperationResponse)
@limiter.limit("10/minute")
async def fund_escrow(
    request: Request,
    escrow_id: str,
    body: FundRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Buyer: record the deposit into the escrow account."""
    log_request(logger, "POST", f"/escrows/{escrow_id}/fund", auth.wallet)
    address = body.shipping_address.model_dump() if body.shipping_address else None
    result = await run_in_threadpool(
        market.escrows.transition_on_funding,
        escrow_id,
        auth.wallet,
        funded_amount=body.funded_amount,
        shipping_address=address,
    )
    logger.info(f"Escrow {escrow_id} funded by {auth.wallet}")
    return result.to_dict()


@router.post("/{escrow_id}/cancel", response_model=OperationResponse)
@limiter.limit("10/minute")
async def cancel_escrow(
    request: Request,
    escrow_id: str,
    body: ReasonRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Seller or admin: withdraw the listing."""
    log_request(logger, "POST", f"/escrows/{escrow_id}/cancel", auth.wallet)
    result = await run_in_threadpool(market.escrows.cancel, escrow_id, auth.wallet, body.reason)
    return result.to_dict()


@router.post("/{escrow_id}/convert", response_model=OperationResponse)
@limiter.limit("10/minute")
async def convert_to_pool(
    request: Request,
    escrow_id: str,
    body: ConvertToPoolRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Seller: turn the listing into a crowdfunded pool."""
    log_request(logger, "POST", f"/escrows/{escrow_id}/convert", auth.wallet)
    result = await run_in_threadpool(
        market.escrows.convert_to_pool, escrow_id, auth.wallet, body.pool_ref
    )
    return result.to_dict()


@router.post("/{escrow_id}/fail", response_model=OperationResponse)
@limiter.limit("10/minute")
async def mark_failed(
    request: Request,
    escrow_id: str,
    body: ReasonRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Admin: abandon the sale; the buyer is refunded off-platform."""
    log_request(logger, "POST", f"/escrows/{escrow_id}/fail", auth.wallet)
    result = await run_in_threadpool(
        market.escrows.mark_failed, escrow_id, auth.wallet, body.reason
    )
    logger.warning(f"Escrow {escrow_id} marked failed by {auth.wallet}: {body.reason}")
    return result.to_dict()
