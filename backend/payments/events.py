"""Canonical payment events produced by the gateway normalizers.

Every gateway maps its native webhook vocabulary onto these frozen
dataclasses so the shared handlers never see provider-specific payloads.
Amounts are always expressed in major currency units.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Type


@dataclass(frozen=True)
class CanonicalEvent:
    gateway: str
    event_id: str
    event_type: str


@dataclass(frozen=True)
class CheckoutCompleted(CanonicalEvent):
    external_ref: str = ""
    amount: Decimal = Decimal("0.00")
    currency: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    subscription_ref: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


@dataclass(frozen=True)
class InvoicePaid(CanonicalEvent):
    subscription_ref: str = ""
    external_ref: str = ""
    amount: Decimal = Decimal("0.00")
    currency: str = ""
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    is_renewal: bool = True


@dataclass(frozen=True)
class InvoicePaymentFailed(CanonicalEvent):
    subscription_ref: str = ""
    amount: Optional[Decimal] = None
    currency: str = ""
    reason: str = ""


@dataclass(frozen=True)
class SubscriptionCancelled(CanonicalEvent):
    subscription_ref: str = ""


@dataclass(frozen=True)
class SubscriptionUpdated(CanonicalEvent):
    subscription_ref: str = ""
    cancel_at_period_end: Optional[bool] = None
    period_end: Optional[datetime] = None
    status: str = ""


@dataclass(frozen=True)
class DisputeCreated(CanonicalEvent):
    charge_ref: str = ""
    payment_ref: Optional[str] = None
    dispute_ref: str = ""
    reason: str = ""
    amount: Optional[Decimal] = None
    currency: str = ""


@dataclass(frozen=True)
class RefundProcessed(CanonicalEvent):
    charge_ref: str = ""
    payment_ref: Optional[str] = None
    refund_ref: str = ""
    amount: Optional[Decimal] = None
    currency: str = ""
    reason: str = ""
    fully_refunded: bool = True


@dataclass(frozen=True)
class Unhandled(CanonicalEvent):
    pass


EVENT_KINDS: Dict[str, Type[CanonicalEvent]] = {
    cls.__name__: cls
    for cls in (
        CheckoutCompleted,
        InvoicePaid,
        InvoicePaymentFailed,
        SubscriptionCancelled,
        SubscriptionUpdated,
        DisputeCreated,
        RefundProcessed,
        Unhandled,
    )
}

_DATETIME_FIELDS = {"period_start", "period_end"}
_DECIMAL_FIELDS = {"amount"}


def event_to_payload(event: CanonicalEvent) -> Dict[str, Any]:
    """Serialise an event into a JSON-safe dict tagged with its kind."""
    data: Dict[str, Any] = {"kind": type(event).__name__}
    for item in fields(event):
        value = getattr(event, item.name)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, dict):
            value = dict(value)
        data[item.name] = value
    return data


def event_from_payload(payload: Dict[str, Any]) -> CanonicalEvent:
    """Rebuild an event previously produced by :func:`event_to_payload`."""
    data = dict(payload)
    kind = data.pop("kind", None)
    cls = EVENT_KINDS.get(kind)
    if cls is None:
        raise ValueError(f"Unknown canonical event kind '{kind}'.")
    known = {item.name for item in fields(cls)}
    kwargs: Dict[str, Any] = {}
    for name, value in data.items():
        if name not in known:
            continue
        if value is not None and name in _DATETIME_FIELDS:
            value = datetime.fromisoformat(value)
        elif value is not None and name in _DECIMAL_FIELDS:
            value = Decimal(str(value))
        kwargs[name] = value
    return cls(**kwargs)


__all__ = [
    "CanonicalEvent",
    "CheckoutCompleted",
    "InvoicePaid",
    "InvoicePaymentFailed",
    "SubscriptionCancelled",
    "SubscriptionUpdated",
    "DisputeCreated",
    "RefundProcessed",
    "Unhandled",
    "event_to_payload",
    "event_from_payload",
]
