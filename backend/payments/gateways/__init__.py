"""Per-gateway adapters exposing a uniform verify / normalize / handle surface.

Every gateway module implements the same five functions independently:

``verify(raw_body, headers, factory) -> bool``
    Authenticate the delivery; fails closed without a configured secret.
``parse_envelope(payload) -> (event_id, event_type)``
    Extract the delivery id and native event type.
``normalize(event_type, payload, event_id) -> CanonicalEvent``
    Pure mapping to a canonical event (``Unhandled`` for unknown types).
``handle(event, handlers, factory) -> HandlerResult``
    Gateway-specific enrichment (API lookups) followed by the shared handler.
``refund(client, payment) -> str``
    Issue a full refund through the gateway API and return its refund id.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict

from payments.models import Gateway

from . import mercadopago, paypal, paystack, razorpay, stripe


@dataclass(frozen=True)
class GatewayAdapter:
    name: str
    verify: Callable
    parse_envelope: Callable
    normalize: Callable
    handle: Callable
    refund: Callable


def _adapter(name: str, module) -> GatewayAdapter:
    return GatewayAdapter(
        name=name,
        verify=module.verify,
        parse_envelope=module.parse_envelope,
        normalize=module.normalize,
        handle=module.handle,
        refund=module.refund,
    )


ADAPTERS: Dict[str, GatewayAdapter] = {
    Gateway.STRIPE: _adapter(Gateway.STRIPE, stripe),
    Gateway.RAZORPAY: _adapter(Gateway.RAZORPAY, razorpay),
    Gateway.PAYPAL: _adapter(Gateway.PAYPAL, paypal),
    Gateway.PAYSTACK: _adapter(Gateway.PAYSTACK, paystack),
    Gateway.MERCADOPAGO: _adapter(Gateway.MERCADOPAGO, mercadopago),
}


class UnknownGateway(LookupError):
    """Raised for a gateway name with no registered adapter."""


def get_adapter(gateway: str) -> GatewayAdapter:
    try:
        return ADAPTERS[gateway]
    except KeyError as exc:
        raise UnknownGateway(f"Unknown payment gateway '{gateway}'.") from exc


__all__ = ["ADAPTERS", "GatewayAdapter", "UnknownGateway", "get_adapter"]
