"""Maintenance routes.

Endpoints for periodic housekeeping. These should be called by a cron job
with an escrow-admin session:
- Expire offers that passed their expiry time
- Refresh carrier tracking for shipments in flight
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Query, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from luxhub.errors import MarketplaceError
from luxhub.escrow.models import EscrowStatus
from luxhub.marketplace import Marketplace

from ..auth import CurrentWallet
from ..logging_config import get_logger
from ..rate_limit import limiter
from ..services import MarketplaceServices, require_permission

logger = get_logger("maintenance")
router = APIRouter(prefix="/maintenance", tags=["maintenance"])

DEFAULT_TRACKING_BATCH = 50


# =============================================================================
# Request/Response Models
# =============================================================================


class ExpireOffersRequest(BaseModel):
    dry_run: bool = Field(
        default=False, description="If true, report what would be expired without changing anything"
    )


class ExpireOffersResponse(BaseModel):
    dry_run: bool
    offer_ids: list[str]
    total: int
    checked_at: datetime


class TrackingRefreshRequest(BaseModel):
    limit: int = Field(default=DEFAULT_TRACKING_BATCH, ge=1, le=500)


class TrackingRefreshItem(BaseModel):
    escrow_id: str
    carrier_status: str | None = None
    error: str | None = None


class TrackingRefreshResponse(BaseModel):
    refreshed: list[TrackingRefreshItem]
    total: int
    failed: int
    checked_at: datetime


class HealthResponse(BaseModel):
    status: str
    stale_offers: int
    pending_shipments: int
    checked_at: datetime


# =============================================================================
# Helpers
# =============================================================================


def _refresh_in_flight(market: Marketplace, limit: int) -> list[TrackingRefreshItem]:
    """Refresh tracking for shipped escrows; one failure doesn't stop the batch."""
    escrows = market.escrows.list_escrows(status=EscrowStatus.SHIPPED.value, limit=limit)
    items = []
    for escrow in escrows:
        if not escrow.tracking_number:
            continue
        try:
            result = market.shipments.refresh_tracking(escrow.id)
            items.append(
                TrackingRefreshItem(
                    escrow_id=escrow.id, carrier_status=result.escrow.carrier_status
                )
            )
        except MarketplaceError as e:
            items.append(TrackingRefreshItem(escrow_id=escrow.id, error=e.message))
        except Exception as e:
            logger.warning(f"Tracking refresh failed | escrow={escrow.id} | error={e}")
            items.append(TrackingRefreshItem(escrow_id=escrow.id, error="carrier lookup failed"))
    return items


# =============================================================================
# Routes
# =============================================================================


@router.get("/health", response_model=HealthResponse)
@limiter.limit("60/minute")
async def maintenance_health(request: Request, auth: CurrentWallet, market: MarketplaceServices):
    """Counts of work the maintenance jobs would pick up."""
    logger.info(f"GET /maintenance/health | wallet={auth.wallet}")
    await run_in_threadpool(require_permission, market, auth.wallet)

    stale = await run_in_threadpool(market.offers.expire_stale_offers, dry_run=True)
    pending = await run_in_threadpool(market.shipments.pending_shipments)

    return HealthResponse(
        status="healthy" if not (stale or pending) else "action_needed",
        stale_offers=len(stale),
        pending_shipments=len(pending),
        checked_at=datetime.now(timezone.utc),
    )


@router.post("/expire-offers", response_model=ExpireOffersResponse)
@limiter.limit("10/minute")
async def expire_offers(
    request: Request,
    body: ExpireOffersRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Mark active offers past their expiry as expired.

    Expiry is also enforced whenever an offer is answered, so this only keeps
    listings and offer counts tidy.
    """
    logger.info(f"POST /maintenance/expire-offers | wallet={auth.wallet} | dry_run={body.dry_run}")
    await run_in_threadpool(require_permission, market, auth.wallet)

    offer_ids = await run_in_threadpool(market.offers.expire_stale_offers, dry_run=body.dry_run)
    if offer_ids and not body.dry_run:
        logger.info(f"Offer expiry complete | expired={len(offer_ids)}")

    return ExpireOffersResponse(
        dry_run=body.dry_run,
        offer_ids=offer_ids,
        total=len(offer_ids),
        checked_at=datetime.now(timezone.utc),
    )


@router.post("/refresh-tracking", response_model=TrackingRefreshResponse)
@limiter.limit("10/minute")
async def refresh_tracking(
    request: Request,
    body: TrackingRefreshRequest,
    auth: CurrentWallet,
    market: MarketplaceServices,
):
    """Poll carriers for every shipped escrow."""
    logger.info(f"POST /maintenance/refresh-tracking | wallet={auth.wallet} | limit={body.limit}")
    await run_in_threadpool(require_permission, market, auth.wallet)

    items = await run_in_threadpool(_refresh_in_flight, market, body.limit)
    return TrackingRefreshResponse(
        refreshed=items,
        total=len(items),
        failed=sum(1 for i in items if i.error),
        checked_at=datetime.now(timezone.utc),
    )


@router.get("/stale-offers")
@limiter.limit("30/minute")
async def list_stale_offers(
    request: Request,
    auth: CurrentWallet,
    market: MarketplaceServices,
    limit: int = Query(default=100, ge=1, le=500),
):
    """Active offers past their expiry, for review before the sweep runs."""
    logger.info(f"GET /maintenance/stale-offers | wallet={auth.wallet}")
    await run_in_threadpool(require_permission, market, auth.wallet)

    offer_ids = await run_in_threadpool(market.offers.expire_stale_offers, dry_run=True)
    offers = [
        (await run_in_threadpool(market.offers.get_offer, offer_id)).to_dict()
        for offer_id in offer_ids[:limit]
    ]
    return {"offers": offers, "total": len(offer_ids)}
