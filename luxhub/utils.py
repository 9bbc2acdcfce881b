"""Small helpers shared by the marketplace models."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or pass a datetime through)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce floats, ints and strings to Decimal without float artifacts."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def decimal_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def enum_value(value: Any) -> Any:
    """Return the raw value of an Enum member, or the value unchanged."""
    return getattr(value, "value", value)
