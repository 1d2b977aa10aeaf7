"""Razorpay webhook adapter."""
from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, Mapping, Tuple

from payments.events import (
    CheckoutCompleted,
    DisputeCreated,
    InvoicePaid,
    InvoicePaymentFailed,
    RefundProcessed,
    SubscriptionCancelled,
    Unhandled,
)
from payments.models import Gateway
from payments.services.signatures import get_header, hmac_hex_digest, signatures_match

from .common import as_dict, as_str, coerce_timestamp, convert_minor_amount, to_minor_amount

logger = logging.getLogger(__name__)

GATEWAY = Gateway.RAZORPAY

PAYMENT_FAILED_EVENTS = {"payment.failed", "subscription.halted", "subscription.pending"}
CANCELLED_EVENTS = {"subscription.cancelled", "subscription.completed"}


def verify(raw_body, headers: Mapping[str, str], factory) -> bool:
    secret = factory.get_webhook_secret(GATEWAY)
    if not secret:
        logger.warning("Razorpay webhook secret not configured; rejecting delivery")
        return False
    expected = hmac_hex_digest(secret, raw_body, algorithm=hashlib.sha256)
    return signatures_match(expected, get_header(headers, "X-Razorpay-Signature"))


def _entity(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    return as_dict(as_dict(as_dict(payload.get("payload")).get(name)).get("entity"))


def parse_envelope(payload: Dict[str, Any]) -> Tuple[str, str]:
    event_type = as_str(payload.get("event"))
    event_id = as_str(payload.get("id"))
    if not event_id:
        # Razorpay bodies carry no delivery id; key on the primary entity instead.
        for name in ("refund", "dispute", "payment", "subscription"):
            entity_id = _entity(payload, name).get("id")
            if entity_id:
                event_id = f"{event_type}:{entity_id}"
                break
    return event_id, event_type


def normalize(event_type: str, payload: Dict[str, Any], event_id: str):
    base = {"gateway": GATEWAY, "event_id": event_id, "event_type": event_type}
    payment = _entity(payload, "payment")
    subscription = _entity(payload, "subscription")
    payment_currency = as_str(payment.get("currency")).upper()

    if event_type == "payment.captured":
        notes = dict(as_dict(payment.get("notes")))
        if (notes.get("type") or "").lower() != "credits":
            # Subscription charges arrive as subscription.activated / subscription.charged.
            return Unhandled(**base)
        return CheckoutCompleted(
            **base,
            external_ref=as_str(payment.get("id")),
            amount=convert_minor_amount(payment.get("amount"), payment_currency),
            currency=payment_currency,
            metadata=notes,
        )

    if event_type == "subscription.activated":
        notes = dict(as_dict(subscription.get("notes")))
        notes.setdefault("type", "subscription")
        return CheckoutCompleted(
            **base,
            external_ref=as_str(payment.get("id") or subscription.get("id")),
            amount=convert_minor_amount(payment.get("amount"), payment_currency),
            currency=payment_currency,
            metadata=notes,
            subscription_ref=as_str(subscription.get("id")),
            period_start=coerce_timestamp(subscription.get("current_start")),
            period_end=coerce_timestamp(subscription.get("current_end")),
        )

    if event_type == "subscription.charged":
        return InvoicePaid(
            **base,
            subscription_ref=as_str(subscription.get("id")),
            external_ref=as_str(payment.get("id")),
            amount=convert_minor_amount(payment.get("amount"), payment_currency),
            currency=payment_currency,
            period_start=coerce_timestamp(subscription.get("current_start")),
            period_end=coerce_timestamp(subscription.get("current_end")),
        )

    if event_type in PAYMENT_FAILED_EVENTS:
        subscription_ref = subscription.get("id") or payment.get("subscription_id") or as_dict(
            payment.get("notes")
        ).get("subscription_id")
        return InvoicePaymentFailed(
            **base,
            subscription_ref=as_str(subscription_ref),
            amount=convert_minor_amount(payment.get("amount"), payment_currency) if payment else None,
            currency=payment_currency,
            reason=as_str(payment.get("error_description")) or event_type,
        )

    if event_type in CANCELLED_EVENTS:
        return SubscriptionCancelled(**base, subscription_ref=as_str(subscription.get("id")))

    if event_type == "refund.created":
        refund = _entity(payload, "refund")
        currency = as_str(refund.get("currency") or payment_currency).upper()
        fully_refunded = True
        if payment:
            fully_refunded = payment.get("refund_status") == "full" or (
                payment.get("amount_refunded") is not None
                and payment.get("amount") is not None
                and int(payment["amount_refunded"]) >= int(payment["amount"])
            )
        return RefundProcessed(
            **base,
            charge_ref=as_str(refund.get("payment_id") or payment.get("id")),
            refund_ref=as_str(refund.get("id")),
            amount=convert_minor_amount(refund.get("amount"), currency),
            currency=currency,
            reason=as_str(as_dict(refund.get("notes")).get("reason")),
            fully_refunded=fully_refunded,
        )

    if event_type == "payment.dispute.created":
        dispute = _entity(payload, "dispute")
        currency = as_str(dispute.get("currency") or payment_currency).upper()
        return DisputeCreated(
            **base,
            charge_ref=as_str(dispute.get("payment_id") or payment.get("id")),
            dispute_ref=as_str(dispute.get("id")),
            reason=as_str(dispute.get("reason_code")),
            amount=convert_minor_amount(dispute.get("amount"), currency) if dispute.get("amount") else None,
            currency=currency,
        )

    return Unhandled(**base)


def handle(event, handlers, factory):
    return handlers.dispatch(event)


def refund(client, payment) -> str:
    result = client.post(
        f"/payments/{payment.gateway_transaction_id}/refund",
        json={"amount": to_minor_amount(payment.amount, payment.currency)},
    )
    return as_str(result.get("id"))
