"""Shipping address value object shared by offers and escrows."""

from dataclasses import dataclass
from typing import Optional

REQUIRED_ADDRESS_FIELDS = ("full_name", "street1", "city", "state", "postal_code", "country")

# camelCase keys accepted from clients that post the legacy address shape
_CAMEL_KEYS = {
    "fullName": "full_name",
    "postalCode": "postal_code",
    "deliveryInstructions": "delivery_instructions",
}


@dataclass
class ShippingAddress:
    """Where the buyer wants the item delivered."""

    full_name: str
    street1: str
    city: str
    state: str
    postal_code: str
    country: str
    street2: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    delivery_instructions: Optional[str] = None

    def __post_init__(self):
        missing = [f for f in REQUIRED_ADDRESS_FIELDS if not (getattr(self, f) or "").strip()]
        if missing:
            raise ValueError(f"Shipping address missing required fields: {', '.join(missing)}")

    def to_dict(self) -> dict:
        return {
            "full_name": self.full_name,
            "street1": self.street1,
            "street2": self.street2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
            "phone": self.phone,
            "email": self.email,
            "delivery_instructions": self.delivery_instructions,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ShippingAddress":
        normalized = {_CAMEL_KEYS.get(k, k): v for k, v in data.items()}
        return cls(
            full_name=normalized.get("full_name") or "",
            street1=normalized.get("street1") or "",
            street2=normalized.get("street2"),
            city=normalized.get("city") or "",
            state=normalized.get("state") or "",
            postal_code=normalized.get("postal_code") or "",
            country=normalized.get("country") or "",
            phone=normalized.get("phone"),
            email=normalized.get("email"),
            delivery_instructions=normalized.get("delivery_instructions"),
        )

    @classmethod
    def coerce(cls, value) -> Optional["ShippingAddress"]:
        """Accept an address instance, a dict, or None."""
        if value is None or isinstance(value, cls):
            return value
        return cls.from_dict(value)
