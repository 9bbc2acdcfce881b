"""Notification types and best-effort delivery."""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from luxhub.protocols import NotificationSink

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    ORDER_FUNDED = "order_funded"
    ORDER_SHIPPED = "order_shipped"
    ORDER_DELIVERED = "order_delivered"
    PAYMENT_RELEASED = "payment_released"
    SHIPMENT_SUBMITTED = "shipment_submitted"
    SHIPMENT_VERIFIED = "shipment_verified"
    SHIPMENT_REJECTED = "shipment_rejected"
    OFFER_RECEIVED = "offer_received"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_REJECTED = "offer_rejected"
    OFFER_COUNTERED = "offer_countered"
    ORDER_CANCELLED = "order_cancelled"


def notify_safely(
    sink: Optional[NotificationSink],
    recipient_wallet: Optional[str],
    notification_type: NotificationType,
    title: str,
    message: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> bool:
    """Send a notification, logging instead of raising on failure.

    A failed notification never fails the operation that triggered it.
    Returns True if the sink accepted the notification.
    """
    if sink is None or not recipient_wallet:
        return False
    try:
        sink.notify(
            recipient_wallet,
            notification_type.value,
            title,
            message,
            metadata or {},
        )
        return True
    except Exception as e:
        logger.warning(
            f"Notification {notification_type.value} to {recipient_wallet} failed: {e}"
        )
        return False
