"""Carrier names, tracking links and shipment proof validation."""

import re
from typing import List, Optional

SUPPORTED_CARRIERS = (
    "fedex",
    "ups",
    "dhl",
    "usps",
    "ontrac",
    "lasership",
    "purolator",
    "canada_post",
    "royal_mail",
    "australia_post",
    "japan_post",
    "other",
)

TRACKING_URL_TEMPLATES = {
    "fedex": "https://www.fedex.com/fedextrack/?trknbr={number}",
    "ups": "https://www.ups.com/track?tracknum={number}",
    "dhl": "https://www.dhl.com/en/express/tracking.html?AWB={number}",
    "usps": "https://tools.usps.com/go/TrackConfirmAction?tLabels={number}",
    "ontrac": "https://www.ontrac.com/tracking/?number={number}",
    "lasership": "https://www.lasership.com/track/{number}",
    "purolator": "https://www.purolator.com/en/track-package?trackingNumbers={number}",
    "canada_post": "https://www.canadapost-postescanada.ca/track-reperage/en#/search?searchFor={number}",
    "royal_mail": "https://www.royalmail.com/track-your-item#/tracking-results/{number}",
    "australia_post": "https://auspost.com.au/mypost/track/#/details/{number}",
    "japan_post": "https://trackings.post.japanpost.jp/services/srv/search/?requestNo1={number}",
}

# Proof images must be served over HTTP(S) or pinned to IPFS
PROOF_URL_PATTERN = re.compile(r"^(https?://|ipfs://)", re.IGNORECASE)

_SEPARATORS = re.compile(r"[\s_\-.]+")

# compacted spelling -> canonical carrier
_ALIASES = {_SEPARATORS.sub("", name): name for name in SUPPORTED_CARRIERS}
_ALIASES.update(
    {
        "federalexpress": "fedex",
        "dhlexpress": "dhl",
        "unitedparcelservice": "ups",
        "unitedstatespostalservice": "usps",
        "auspost": "australia_post",
    }
)


def normalize_carrier(carrier: Optional[str]) -> Optional[str]:
    """Map free-form carrier input to a supported carrier name.

    Case, whitespace and separators are ignored, so "Fed Ex", "FEDEX" and
    "fed-ex" all become "fedex". Returns None for unknown carriers.
    """
    if not carrier:
        return None
    compact = _SEPARATORS.sub("", carrier.strip().lower())
    return _ALIASES.get(compact)


def tracking_url(carrier: str, tracking_number: str) -> Optional[str]:
    """Public tracking link for a normalized carrier, if it has one."""
    template = TRACKING_URL_TEMPLATES.get(carrier)
    if template is None:
        return None
    return template.format(number=tracking_number)


def invalid_proof_urls(urls: List[str]) -> List[str]:
    """Return the proof URLs that are neither HTTP(S) nor IPFS."""
    return [u for u in urls if not isinstance(u, str) or not PROOF_URL_PATTERN.match(u.strip())]
