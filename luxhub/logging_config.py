"""
Logging configuration for the LuxHub marketplace core.

Lifecycle events are logged under the ``luxhub`` logger hierarchy so the
backend (or a script) can route them with a single handler.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_luxhub_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    console: bool = True,
) -> logging.Logger:
    """Configure the ``luxhub`` logger.

    Args:
        level: Log level name
        log_dir: Directory for a daily log file. Defaults to LUXHUB_LOG_DIR;
            no file is written when neither is set.
        console: Also log to stderr

    Returns:
        The configured ``luxhub`` logger
    """
    logger = logging.getLogger("luxhub")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Re-running setup replaces the handlers instead of stacking them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    log_dir = log_dir or os.environ.get("LUXHUB_LOG_DIR")
    if log_dir:
        path = Path(log_dir).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        log_file = path / f"luxhub-{datetime.now().strftime('%Y-%m-%d')}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def log_transition(
    escrow_id: str,
    from_status: Optional[str],
    to_status: str,
    actor: str,
    reason: Optional[str] = None,
):
    """Log an escrow status change."""
    logger = logging.getLogger("luxhub.escrow")
    suffix = f" ({reason})" if reason else ""
    logger.info(f"TRANSITION escrow={escrow_id} {from_status} -> {to_status} by={actor}{suffix}")


def log_offer_event(offer_id: str, event: str, actor: str, **details):
    """Log an offer negotiation event with optional key=value details."""
    logger = logging.getLogger("luxhub.offers")
    extra = " ".join(f"{k}={v}" for k, v in details.items() if v is not None)
    logger.info(f"OFFER {event} offer={offer_id} by={actor}" + (f" {extra}" if extra else ""))
