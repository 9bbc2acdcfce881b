"""Database utilities for Supabase integration."""

from supabase import Client, create_client

from .config import Settings, get_settings

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        # Prefer the secret key, fall back to the legacy service_role_key
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


# =============================================================================
# Table Names
# =============================================================================

ESCROWS_TABLE = "escrows"
OFFERS_TABLE = "offers"
ESCROW_TRANSITIONS_TABLE = "escrow_state_transitions"
ASSETS_TABLE = "assets"
NOTIFICATIONS_TABLE = "notifications"
ADMIN_ROLES_TABLE = "admin_roles"

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


def is_unique_violation(error: Exception) -> bool:
    """Whether a PostgREST error came from a unique constraint."""
    code = getattr(error, "code", None)
    if code == UNIQUE_VIOLATION:
        return True
    return "duplicate key value" in str(error)
