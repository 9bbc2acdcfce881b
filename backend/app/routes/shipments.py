"""Shipment routes.

Vendors quote rates, buy labels and submit tracking plus proof photos;
escrow admins verify or reject the submission.
"""

from decimal import Decimal

from fastapi import APIRouter, Query, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field, model_validator

from ..auth import CurrentWallet
from ..logging_config import get_logger, log_request
from ..models import OperationResponse, ShippingAddressIn
from ..rate_limit import limiter
from ..services import MarketplaceServices, require_permission

logger = get_logger("shipments")
router = APIRouter(prefix="/shipments", tags=["shipments"])


# =============================================================================
# Request/Response Models
# =============================================================================


class ShipmentSubmitRequest(BaseModel):
    carrier: str = Field(..., min_length=1, max_length=50)
    tracking_number: str = Field(..., min_length=1, max_length=100)
    proof_urls: list[str] = Field(..., min_length=1, max_length=10)


class ShipmentVerifyRequest(BaseModel):
    approved: bool
    rejection_reason: str | None = Field(default=None, max_length=1000)
    request_settlement_proposal: bool = False

    @model_validator(mode="after")
    def reason_on_reject(self):
        if not self.approved and not (self.rejection_reason or "").strip():
            raise ValueError("rejection_reason is required when rejecting")
        return self


class ParcelIn(BaseModel):
    length: float = Field(..., gt=0, description="inches")
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    weight_oz: float = Field(..., gt=0)


class RatesRequest(BaseModel):
    from_address: ShippingAddressIn
    parcel: ParcelIn


class RateResponse(BaseModel):
    rate_id: str
    carrier: str
    service: str
    amount_usd: Decimal
    delivery_days: int | None = None


class LabelRequest(BaseModel):
    rate_id: str = Field(..., min_length=1)


class LabelResponse(BaseModel):
    carrier: str
    tracking_number: str
    label_url: str | None = None


class PendingShipmentsResponse(BaseModel):
    escrows: list[dict]
    total: int


# =============================================================================
# Routes
# =============================================================================


@router.get("/pending", response_model=PendingShipmentsResponse)
@limiter.limit("30/minute")
async def pending_shipments(
    request: Request,
    auth: CurrentWallet,
    market: MarketplaceServices,
    limit: int = Query(default=100, ge=1, le=500),
):
    """Admin: shipments awaiting verification, newest submission first."""
    log_request(logger, "GET", "/shipments/pending", auth.wallet)
    await run_in_threadpool(require_permission, market, auth.wallet)
    escrows = await run_in_threadpool(market.shipments.pending_shipments, limit)
    return PendingShipmentsResponse(escrows=[e.to_dict() for e in escrows], total=len(escrows))


@router.post("/{escrow_id}/submit", response_model=OperationResponse)
@limiter.limit("10/minute")
async def submit_shipment(
    request: Request,
    escrow_id: str,
    body: ShipmentSubmitRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Vendor: submit carrier tracking and proof of shipment."""
    log_request(logger, "POST", f"/shipments/{escrow_id}/submit", auth.wallet)
    result = await run_in_threadpool(
        market.shipments.submit_shipment,
        escrow_id,
        auth.wallet,
        body.carrier,
        body.tracking_number,
        body.proof_urls,
    )
    return result.to_dict()


@router.post("/{escrow_id}/verify", response_model=OperationResponse)
@limiter.limit("30/minute")
async def verify_shipment(
    request: Request,
    escrow_id: str,
    body: ShipmentVerifyRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Admin: approve or reject a shipment submission."""
    log_request(logger, "POST", f"/shipments/{escrow_id}/verify", auth.wallet)
    result = await run_in_threadpool(
        market.shipments.verify_shipment,
        escrow_id,
        auth.wallet,
        body.approved,
        rejection_reason=body.rejection_reason,
        request_settlement_proposal=body.request_settlement_proposal,
    )
    logger.info(f"Shipment for escrow {escrow_id} approved={body.approved} by {auth.wallet}")
    return result.to_dict()


@router.post("/{escrow_id}/rates", response_model=list[RateResponse])
@limiter.limit("20/minute")
async def get_shipping_rates(
    request: Request,
    escrow_id: str,
    body: RatesRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Vendor: quote carrier rates to the buyer's address."""
    log_request(logger, "POST", f"/shipments/{escrow_id}/rates", auth.wallet)
    rates = await run_in_threadpool(
        market.shipments.get_shipping_rates,
        escrow_id,
        auth.wallet,
        body.from_address.model_dump(),
        body.parcel.model_dump(),
    )
    return [
        RateResponse(
            rate_id=r.rate_id,
            carrier=r.carrier,
            service=r.service,
            amount_usd=r.amount_usd,
            delivery_days=r.delivery_days,
        )
        for r in rates
    ]


@router.post("/{escrow_id}/label", response_model=LabelResponse)
@limiter.limit("10/minute")
async def purchase_label(
    request: Request,
    escrow_id: str,
    body: LabelRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Vendor: buy a label for a quoted rate."""
    log_request(logger, "POST", f"/shipments/{escrow_id}/label", auth.wallet)
    label = await run_in_threadpool(
        market.shipments.purchase_label, escrow_id, auth.wallet, body.rate_id
    )
    return LabelResponse(
        carrier=label.carrier, tracking_number=label.tracking_number, label_url=label.label_url
    )


@router.post("/{escrow_id}/tracking", response_model=OperationResponse)
@limiter.limit("20/minute")
async def refresh_tracking(
    request: Request,
    escrow_id: str,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Poll the carrier and record the latest tracking status."""
    log_request(logger, "POST", f"/shipments/{escrow_id}/tracking", auth.wallet)
    result = await run_in_threadpool(market.shipments.refresh_tracking, escrow_id)
    return result.to_dict()
