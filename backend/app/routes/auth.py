"""Session routes.

Wallet sessions are issued by the web app after it verifies a signed login
message; these endpoints let a client inspect, refresh and end a session.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from ..auth import AUTH_COOKIE_NAME, CurrentWallet, create_access_token
from ..config import Settings, get_settings
from ..logging_config import get_logger, log_auth_event
from ..rate_limit import limiter
from ..services import MarketplaceServices

logger = get_logger("auth")
router = APIRouter(prefix="/auth", tags=["auth"])

COOKIE_MAX_AGE = 24 * 60 * 60  # 1 day in seconds


# =============================================================================
# Request/Response Models
# =============================================================================


class SessionInfo(BaseModel):
    wallet: str
    is_escrow_admin: bool


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


# =============================================================================
# Cookie helpers
# =============================================================================


def set_auth_cookie(response: Response, token: str):
    """Set httpOnly auth cookie."""
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=token,
        max_age=COOKIE_MAX_AGE,
        httponly=True,
        secure=True,
        samesite="strict",
        path="/",
    )


def clear_auth_cookie(response: Response):
    """Clear the auth cookie (logout)."""
    response.delete_cookie(
        key=AUTH_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=True,
        samesite="strict",
    )


# =============================================================================
# Routes
# =============================================================================


@router.get("/me", response_model=SessionInfo)
@limiter.limit("60/minute")
async def get_session(request: Request, auth: CurrentWallet, market: MarketplaceServices):
    """The calling wallet and whether it can administer escrows."""
    authorization = market.escrows.authorization
    is_admin = bool(
        authorization and authorization.is_authorized(auth.wallet, "can_manage_escrows")
    )
    return SessionInfo(wallet=auth.wallet, is_escrow_admin=is_admin)


@router.post("/refresh", response_model=TokenResponse)
@limiter.limit("10/minute")
async def refresh_session(
    request: Request,
    response: Response,
    auth: CurrentWallet,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Issue a fresh token for the current wallet. Also sets the httpOnly cookie."""
    token = create_access_token(auth.wallet, settings)
    set_auth_cookie(response, token)
    log_auth_event("refresh", auth.wallet, True)
    return TokenResponse(access_token=token, expires_in=settings.jwt_expire_minutes * 60)


@router.post("/logout")
async def logout(response: Response):
    """Clear auth cookie and logout."""
    clear_auth_cookie(response)
    return {"status": "logged_out"}
