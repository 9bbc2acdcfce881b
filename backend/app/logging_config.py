"""Logging configuration for the LuxHub backend.

Backend loggers live under ``luxhub.api`` so the handler installed by
``setup_luxhub_logging`` covers both the API and the marketplace core.
"""

import logging

from luxhub.logging_config import setup_luxhub_logging

API_LOGGER = "luxhub.api"


def setup_backend_logging(level: str = "INFO") -> logging.Logger:
    """Configure the ``luxhub`` logger tree. Called once at startup."""
    setup_luxhub_logging(level=level)
    return logging.getLogger(API_LOGGER)


def get_logger(name: str) -> logging.Logger:
    """Get a backend logger, e.g. ``get_logger("escrows")`` -> ``luxhub.api.escrows``."""
    if not name.startswith("luxhub"):
        name = f"{API_LOGGER}.{name}"
    return logging.getLogger(name)


def _short_wallet(wallet: str | None) -> str | None:
    if wallet and len(wallet) > 12:
        return f"{wallet[:4]}...{wallet[-4:]}"
    return wallet


def log_auth_event(event: str, wallet: str | None, success: bool, detail: str | None = None):
    """Log an authentication event."""
    logger = get_logger("auth")
    outcome = "ok" if success else "failed"
    message = f"AUTH {event} wallet={_short_wallet(wallet)} {outcome}"
    if detail:
        message += f" ({detail})"
    if success:
        logger.info(message)
    else:
        logger.warning(message)


def log_request(logger: logging.Logger, method: str, path: str, wallet: str | None = None):
    """Log a route entry line."""
    logger.info(f"{method} {path} | wallet={_short_wallet(wallet)}")
