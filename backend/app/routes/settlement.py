"""Settlement routes: delivery confirmation and fund release."""

from typing import Literal

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from ..auth import CurrentWallet
from ..logging_config import get_logger, log_request
from ..models import OperationResponse
from ..rate_limit import limiter
from ..services import MarketplaceServices

logger = get_logger("settlement")
router = APIRouter(prefix="/settlement", tags=["settlement"])


# =============================================================================
# Request/Response Models
# =============================================================================


class ConfirmDeliveryRequest(BaseModel):
    confirmation_type: Literal["buyer", "admin"] = "buyer"
    rating: int | None = Field(default=None, ge=1, le=5)
    review_text: str | None = Field(default=None, max_length=2000)
    notes: str | None = Field(default=None, max_length=2000)


class RecordExecutionRequest(BaseModel):
    """Omit ``tx_ref`` to have the backend execute the approved proposal."""

    tx_ref: str | None = Field(default=None, max_length=128)


# =============================================================================
# Routes
# =============================================================================


@router.post("/{escrow_id}/confirm-delivery", response_model=OperationResponse)
@limiter.limit("10/minute")
async def confirm_delivery(
    request: Request,
    escrow_id: str,
    body: ConfirmDeliveryRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Buyer (or admin) confirms the item arrived."""
    log_request(logger, "POST", f"/settlement/{escrow_id}/confirm-delivery", auth.wallet)
    result = await run_in_threadpool(
        market.settlement.confirm_delivery,
        escrow_id,
        auth.wallet,
        confirmation_type=body.confirmation_type,
        rating=body.rating,
        review_text=body.review_text,
        notes=body.notes,
    )
    logger.info(f"Delivery confirmed for escrow {escrow_id} ({body.confirmation_type})")
    return result.to_dict()


@router.post("/{escrow_id}/propose", response_model=OperationResponse)
@limiter.limit("10/minute")
async def propose_release(
    request: Request,
    escrow_id: str,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Admin: hand the release instruction to the multisig."""
    log_request(logger, "POST", f"/settlement/{escrow_id}/propose", auth.wallet)
    result = await run_in_threadpool(market.settlement.propose_release, escrow_id, auth.wallet)
    return result.to_dict()


@router.post("/{escrow_id}/execute", response_model=OperationResponse)
@limiter.limit("10/minute")
async def record_execution(
    request: Request,
    escrow_id: str,
    body: RecordExecutionRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Admin: record (or trigger) execution of the release proposal."""
    log_request(logger, "POST", f"/settlement/{escrow_id}/execute", auth.wallet)
    result = await run_in_threadpool(
        market.settlement.record_execution, escrow_id, auth.wallet, tx_ref=body.tx_ref
    )
    logger.info(f"Escrow {escrow_id} released, tx={result.escrow.settlement_tx_ref}")
    return result.to_dict()
