"""MercadoPago webhook adapter.

MercadoPago notifications only carry a resource id. ``normalize`` yields a
lookup event keyed on that id and ``handle`` fetches the payment or preapproval
to decide which canonical event actually happened.
"""
from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, Mapping, Tuple

from payments.events import (
    CheckoutCompleted,
    DisputeCreated,
    InvoicePaymentFailed,
    RefundProcessed,
    SubscriptionCancelled,
    SubscriptionUpdated,
    Unhandled,
)
from payments.models import Gateway
from payments.services.signatures import get_header, hmac_hex_digest, parse_signature_header, signatures_match

from .common import as_dict, as_str, coerce_timestamp, major_amount, parse_json_metadata

logger = logging.getLogger(__name__)

GATEWAY = Gateway.MERCADOPAGO

PAYMENT = "payment"
PREAPPROVAL = "subscription_preapproval"
DISPUTE_EVENTS = {"chargebacks", "claim"}


def _data_id(payload: Dict[str, Any]) -> str:
    value = as_str(as_dict(payload.get("data")).get("id"))
    # Alphanumeric ids are signed in lowercase.
    return value.lower() if value.isalnum() else value


def verify(raw_body, headers: Mapping[str, str], factory) -> bool:
    secret = factory.get_webhook_secret(GATEWAY)
    if not secret:
        logger.warning("MercadoPago webhook secret not configured; rejecting delivery")
        return False
    parts = parse_signature_header(get_header(headers, "X-Signature"))
    request_id = get_header(headers, "X-Request-Id") or ""
    ts, provided = parts.get("ts"), parts.get("v1")
    if not ts or not provided:
        return False
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError):
        return False
    manifest = f"id:{_data_id(as_dict(payload))};request-id:{request_id};ts:{ts};"
    expected = hmac_hex_digest(secret, manifest, algorithm=hashlib.sha256)
    return signatures_match(expected, provided)


def parse_envelope(payload: Dict[str, Any]) -> Tuple[str, str]:
    event_type = as_str(payload.get("type") or payload.get("topic"))
    event_id = as_str(payload.get("id"))
    if not event_id:
        data_id = as_str(as_dict(payload.get("data")).get("id"))
        event_id = f"{event_type}:{data_id}" if data_id else ""
    return event_id, event_type


def normalize(event_type: str, payload: Dict[str, Any], event_id: str):
    data = as_dict(payload.get("data"))
    base = {"gateway": GATEWAY, "event_id": event_id, "event_type": event_type}

    if event_type == PAYMENT:
        return CheckoutCompleted(**base, external_ref=as_str(data.get("id")))

    if event_type == PREAPPROVAL:
        return SubscriptionUpdated(**base, subscription_ref=as_str(data.get("id")))

    if event_type in DISPUTE_EVENTS:
        return DisputeCreated(
            **base,
            charge_ref=as_str(data.get("payment_id")),
            dispute_ref=as_str(data.get("id")),
            reason=as_str(data.get("reason")) or "unknown",
        )

    return Unhandled(**base)


def _resolve_payment(event, client):
    payment = client.get(f"/v1/payments/{event.external_ref}")
    base = {"gateway": GATEWAY, "event_id": event.event_id, "event_type": event.event_type}
    currency = as_str(payment.get("currency_id")).upper()
    status = payment.get("status")

    if status == "approved" and payment.get("external_reference"):
        return CheckoutCompleted(
            **base,
            external_ref=as_str(payment.get("id") or event.external_ref),
            amount=major_amount(payment.get("transaction_amount")),
            currency=currency,
            metadata=parse_json_metadata(payment.get("external_reference")),
        )
    if status == "refunded":
        return RefundProcessed(
            **base,
            charge_ref=as_str(payment.get("id") or event.external_ref),
            refund_ref=as_str(((payment.get("refunds") or [{}])[-1] or {}).get("id")),
            amount=major_amount(payment.get("transaction_amount_refunded") or payment.get("transaction_amount")),
            currency=currency,
            reason="external_refund",
        )
    logger.info("MercadoPago payment %s has status %s; nothing to apply", event.external_ref, status)
    return Unhandled(**base)


def _resolve_preapproval(event, client):
    preapproval = client.get(f"/preapproval/{event.subscription_ref}")
    base = {"gateway": GATEWAY, "event_id": event.event_id, "event_type": event.event_type}
    recurring = as_dict(preapproval.get("auto_recurring"))
    currency = as_str(recurring.get("currency_id")).upper()
    status = preapproval.get("status")

    if status == "authorized":
        metadata = parse_json_metadata(preapproval.get("external_reference"))
        metadata.setdefault("type", "subscription")
        return CheckoutCompleted(
            **base,
            external_ref=event.subscription_ref,
            amount=major_amount(recurring.get("transaction_amount")),
            currency=currency,
            metadata=metadata,
            subscription_ref=event.subscription_ref,
            period_start=coerce_timestamp(preapproval.get("date_created")),
            period_end=coerce_timestamp(preapproval.get("next_payment_date")),
        )
    if status == "cancelled":
        return SubscriptionCancelled(**base, subscription_ref=event.subscription_ref)
    if status == "paused":
        return InvoicePaymentFailed(
            **base,
            subscription_ref=event.subscription_ref,
            amount=major_amount(recurring.get("transaction_amount")),
            currency=currency,
            reason="Subscription paused after a failed payment",
        )
    logger.info("MercadoPago preapproval %s has status %s; nothing to apply", event.subscription_ref, status)
    return Unhandled(**base)


def handle(event, handlers, factory):
    if event.event_type == PAYMENT and isinstance(event, CheckoutCompleted):
        event = _resolve_payment(event, factory.require_client(GATEWAY))
    elif event.event_type == PREAPPROVAL and isinstance(event, SubscriptionUpdated):
        event = _resolve_preapproval(event, factory.require_client(GATEWAY))
    return handlers.dispatch(event)


def refund(client, payment) -> str:
    result = client.post(
        f"/v1/payments/{payment.gateway_transaction_id}/refunds",
        json={},
        headers={"X-Idempotency-Key": f"refund_{payment.pk}"},
    )
    return as_str(result.get("id"))
