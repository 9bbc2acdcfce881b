"""Wallet authentication for the LuxHub backend.

Sessions are JWTs whose ``sub`` is the caller's wallet address. Tokens are
issued after the web app verifies a signed login message and are accepted
from the Authorization header or the httpOnly auth cookie.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings
from .logging_config import log_auth_event

# Cookie name for httpOnly auth
AUTH_COOKIE_NAME = "luxhub_auth"

# Make bearer optional to allow cookie fallback
security = HTTPBearer(auto_error=False)

# Solana addresses are base58, 32-44 chars
_BASE58_CHARS = set("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")


def is_wallet_address(value: str) -> bool:
    """Cheap shape check for a base58 wallet address."""
    return 32 <= len(value) <= 44 and set(value) <= _BASE58_CHARS


def create_access_token(
    wallet: str,
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token for a wallet."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    to_encode = {
        "sub": wallet,
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


class WalletContext:
    """Authenticated caller."""

    def __init__(self, wallet: str):
        self.wallet = wallet

    def __repr__(self) -> str:
        return f"WalletContext(wallet={self.wallet!r})"


async def get_current_wallet(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
    request: Request,
) -> WalletContext:
    """Get the calling wallet from the bearer token or auth cookie."""
    # Try Authorization header first, then fall back to cookie
    if credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get(AUTH_COOKIE_NAME)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated - provide Authorization header or auth cookie",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(token, settings)
    wallet = payload.get("sub")
    if not wallet or payload.get("type") != "access" or not is_wallet_address(wallet):
        log_auth_event("token", wallet, False, "invalid payload")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return WalletContext(wallet=wallet)


# Type alias for dependency injection
CurrentWallet = Annotated[WalletContext, Depends(get_current_wallet)]
