"""LuxHub Marketplace API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import get_settings
from .errors import register_exception_handlers
from .logging_config import setup_backend_logging
from .rate_limit import limiter
from .routes import (
    auth_router,
    escrows_router,
    maintenance_router,
    offers_router,
    settlement_router,
    shipments_router,
)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    logger = setup_backend_logging("DEBUG" if settings.debug else settings.log_level)
    logger.info(
        f"Starting LuxHub Marketplace API (debug={settings.debug}, "
        f"sol_usd_rate={settings.sol_usd_rate})"
    )
    yield
    logger.info("Shutting down LuxHub Marketplace API")


app = FastAPI(
    title="LuxHub Marketplace API",
    description="Escrow and offer lifecycle for NFT-backed luxury assets",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Marketplace errors -> HTTP status
register_exception_handlers(app)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
for router in (
    auth_router,
    escrows_router,
    offers_router,
    shipments_router,
    settlement_router,
    maintenance_router,
):
    app.include_router(router, prefix=API_PREFIX)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "luxhub-marketplace",
        "version": "0.1.0",
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Database reachability plus which marketplace collaborators are wired."""
    from .database import ESCROWS_TABLE, get_supabase_client

    db_status = "disconnected"
    try:
        db = get_supabase_client()
        db.table(ESCROWS_TABLE).select("id").limit(1).execute()
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)[:50]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "settlement_authority": bool(settings.settlement_api_url),
        "shipping_provider": bool(settings.easypost_api_key),
    }
