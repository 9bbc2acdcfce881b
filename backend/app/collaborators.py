"""Production implementations of the marketplace collaborators.

- SupabaseAssetStore: writes asset status to the ``assets`` table
- SupabaseNotificationSink: inserts rows into ``notifications``
- SupabaseAuthorizationService: reads admin permissions from ``admin_roles``
- HttpSettlementAuthority: talks to the multisig proposal service
- EasyPostShippingProvider: rates, labels and trackers through EasyPost

The marketplace services are synchronous and run in FastAPI's threadpool,
so HTTP calls here use the blocking httpx client.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import httpx

from luxhub.protocols import (
    ExecutionReceipt,
    ProposalReceipt,
    ReleaseInstruction,
    ShippingLabel,
    ShippingRate,
    TrackingInfo,
)
from luxhub.utils import parse_datetime

from .database import ADMIN_ROLES_TABLE, ASSETS_TABLE, NOTIFICATIONS_TABLE
from .logging_config import get_logger

logger = get_logger("collaborators")

EASYPOST_API_URL = "https://api.easypost.com/v2"

# EasyPost tracker status -> carrier_status recorded on the escrow
EASYPOST_STATUS_MAP = {
    "pre_transit": "pre_transit",
    "in_transit": "in_transit",
    "out_for_delivery": "out_for_delivery",
    "delivered": "delivered",
    "available_for_pickup": "available_for_pickup",
    "return_to_sender": "returned",
    "failure": "failure",
    "cancelled": "cancelled",
    "error": "error",
}


# =============================================================================
# Supabase-backed collaborators
# =============================================================================


class SupabaseAssetStore:
    def __init__(self, db):
        self.db = db

    def set_status(self, asset_ref: str, status: str) -> None:
        self.db.table(ASSETS_TABLE).update(
            {"status": status, "updated_at": datetime.now(timezone.utc).isoformat()}
        ).eq("id", asset_ref).execute()


class SupabaseNotificationSink:
    def __init__(self, db):
        self.db = db

    def notify(
        self,
        recipient_wallet: str,
        notification_type: str,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.db.table(NOTIFICATIONS_TABLE).insert(
            {
                "recipient_wallet": recipient_wallet,
                "type": notification_type,
                "title": title,
                "message": message,
                "metadata": metadata or {},
                "read": False,
            }
        ).execute()


class SupabaseAuthorizationService:
    """Admin permissions from the ``admin_roles`` table.

    Wallets listed in ADMIN_WALLETS or SUPER_ADMIN_WALLETS are always
    authorized. A row with ``role = 'super_admin'`` grants every permission;
    otherwise the permission name is a boolean column on the row.
    """

    def __init__(self, db, env_admins: set[str] | None = None):
        self.db = db
        self.env_admins = set(env_admins or ())

    def is_authorized(self, wallet: str, permission: str) -> bool:
        if wallet in self.env_admins:
            return True
        try:
            result = (
                self.db.table(ADMIN_ROLES_TABLE)
                .select("*")
                .eq("wallet", wallet)
                .eq("is_active", True)
                .execute()
            )
        except Exception as e:
            # Treat a failed lookup as "not authorized"
            logger.error(f"Admin role lookup failed for {wallet}: {e}")
            return False
        if not result.data:
            return False
        row = result.data[0]
        if row.get("role") == "super_admin":
            return True
        return bool(row.get(permission))


# =============================================================================
# Settlement authority
# =============================================================================


class HttpSettlementAuthority:
    """Client for the multisig proposal service.

    ``POST /proposals`` creates a release proposal from a ReleaseInstruction;
    ``POST /proposals/{ref}/execute`` executes an approved one.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _post(self, path: str, payload: dict | None = None) -> dict:
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.post(
                f"{self.base_url}{path}", json=payload or {}, headers=self._headers()
            )
            response.raise_for_status()
            return response.json()

    def propose(self, instruction: ReleaseInstruction) -> ProposalReceipt:
        data = self._post("/proposals", instruction.to_dict())
        ref = data.get("proposal_ref") or data.get("id")
        if not ref:
            raise ValueError("Settlement service returned no proposal reference")
        logger.info(f"Release proposal {ref} created for escrow {instruction.escrow_id}")
        return ProposalReceipt(proposal_ref=str(ref), status=data.get("status", "proposed"))

    def execute(self, proposal_ref: str) -> ExecutionReceipt:
        data = self._post(f"/proposals/{proposal_ref}/execute")
        return ExecutionReceipt(proposal_ref=proposal_ref, tx_ref=data.get("tx_ref"))


# =============================================================================
# Shipping provider
# =============================================================================


def _easypost_address(address: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": address.get("full_name"),
        "street1": address.get("street1"),
        "street2": address.get("street2"),
        "city": address.get("city"),
        "state": address.get("state"),
        "zip": address.get("postal_code"),
        "country": address.get("country"),
        "phone": address.get("phone"),
        "email": address.get("email"),
    }


def _easypost_parcel(parcel: dict[str, Any]) -> dict[str, Any]:
    return {
        "length": parcel.get("length"),
        "width": parcel.get("width"),
        "height": parcel.get("height"),
        "weight": parcel.get("weight_oz") or parcel.get("weight"),
    }


class EasyPostShippingProvider:
    """EasyPost REST client.

    Rate ids handed out by ``get_rates`` are ``"<shipment_id>:<rate_id>"`` so a
    label can be bought later without keeping the shipment around.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = EASYPOST_API_URL,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _post(self, path: str, payload: dict) -> dict:
        with httpx.Client(
            timeout=self.timeout, auth=(self.api_key, ""), transport=self.transport
        ) as client:
            response = client.post(f"{self.base_url}{path}", json=payload)
            response.raise_for_status()
            return response.json()

    def get_rates(
        self,
        from_address: dict[str, Any],
        to_address: dict[str, Any],
        parcel: dict[str, Any],
    ) -> list[ShippingRate]:
        shipment = self._post(
            "/shipments",
            {
                "shipment": {
                    "from_address": _easypost_address(from_address),
                    "to_address": _easypost_address(to_address),
                    "parcel": _easypost_parcel(parcel),
                }
            },
        )
        rates = [
            ShippingRate(
                rate_id=f"{shipment['id']}:{rate['id']}",
                carrier=str(rate.get("carrier", "")).lower(),
                service=rate.get("service", ""),
                amount_usd=Decimal(str(rate.get("rate", "0"))),
                delivery_days=rate.get("delivery_days"),
            )
            for rate in shipment.get("rates") or []
        ]
        return sorted(rates, key=lambda r: r.amount_usd)

    def purchase_label(self, rate_id: str) -> ShippingLabel:
        shipment_id, sep, easypost_rate_id = rate_id.partition(":")
        if not sep or not shipment_id or not easypost_rate_id:
            raise ValueError(f"Malformed rate id: {rate_id}")
        shipment = self._post(f"/shipments/{shipment_id}/buy", {"rate": {"id": easypost_rate_id}})
        selected = shipment.get("selected_rate") or {}
        label = shipment.get("postage_label") or {}
        return ShippingLabel(
            carrier=str(selected.get("carrier", "")).lower(),
            tracking_number=shipment.get("tracking_code", ""),
            label_url=label.get("label_url"),
        )

    def get_tracking(self, carrier: str, tracking_number: str) -> TrackingInfo:
        tracker = self._post(
            "/trackers",
            {"tracker": {"tracking_code": tracking_number, "carrier": carrier.upper()}},
        )
        status = EASYPOST_STATUS_MAP.get(tracker.get("status"), "unknown")
        return TrackingInfo(
            carrier=carrier,
            tracking_number=tracking_number,
            status=status,
            estimated_delivery=parse_datetime(tracker.get("est_delivery_date")),
            events=[
                {
                    "status": detail.get("status"),
                    "message": detail.get("message"),
                    "datetime": detail.get("datetime"),
                }
                for detail in tracker.get("tracking_details") or []
            ],
        )
