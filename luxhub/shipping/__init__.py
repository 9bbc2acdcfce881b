"""Shipment submission and admin verification."""

from luxhub.shipping.carriers import SUPPORTED_CARRIERS, normalize_carrier, tracking_url
from luxhub.shipping.service import ShipmentService

__all__ = [
    "ShipmentService",
    "SUPPORTED_CARRIERS",
    "normalize_carrier",
    "tracking_url",
]
