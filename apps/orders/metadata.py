"""
Tagged variants stored in the Order JSON columns.

    DeliveryDetails = Pickup | HomeDelivery
    PaymentLink     = NoPayment | PendingIntent | Captured

Each variant serialises to a dict carrying a "kind" tag; unknown or empty
dicts read back as the neutral variant (Pickup / NoPayment).
"""
from dataclasses import dataclass, asdict
from typing import ClassVar, Union

from apps.utils.exceptions import ValidationError


@dataclass(frozen=True)
class Pickup:
    kind: ClassVar[str] = "pickup"


@dataclass(frozen=True)
class HomeDelivery:
    kind: ClassVar[str] = "home_delivery"

    address: str
    city: str
    postal_code: str
    phone: str = ""
    notes: str = ""

    def __post_init__(self):
        missing = [name for name in ("address", "city", "postal_code") if not getattr(self, name)]
        if missing:
            raise ValidationError(f"Home delivery requires: {', '.join(missing)}.")


DeliveryDetails = Union[Pickup, HomeDelivery]


@dataclass(frozen=True)
class NoPayment:
    kind: ClassVar[str] = "none"


@dataclass(frozen=True)
class PendingIntent:
    kind: ClassVar[str] = "pending_intent"

    intent_id: str


@dataclass(frozen=True)
class Captured:
    kind: ClassVar[str] = "captured"

    intent_id: str


PaymentLink = Union[NoPayment, PendingIntent, Captured]

_DELIVERY_KINDS = {cls.kind: cls for cls in (Pickup, HomeDelivery)}
_PAYMENT_KINDS = {cls.kind: cls for cls in (NoPayment, PendingIntent, Captured)}


def to_dict(variant) -> dict:
    return {"kind": variant.kind, **asdict(variant)}


def _from_dict(data, kinds, default):
    data = dict(data or {})
    cls = kinds.get(data.pop("kind", None))
    if cls is None:
        return default
    try:
        return cls(**data)
    except TypeError:
        raise ValidationError(f"Malformed {cls.kind} details.")


def delivery_from_dict(data) -> DeliveryDetails:
    return _from_dict(data, _DELIVERY_KINDS, Pickup())


def payment_from_dict(data) -> PaymentLink:
    return _from_dict(data, _PAYMENT_KINDS, NoPayment())
