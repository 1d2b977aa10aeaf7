"""Stripe webhook adapter."""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

import stripe

from payments.events import (
    CheckoutCompleted,
    DisputeCreated,
    InvoicePaid,
    InvoicePaymentFailed,
    RefundProcessed,
    SubscriptionCancelled,
    SubscriptionUpdated,
    Unhandled,
)
from payments.models import Gateway
from payments.services.signatures import get_header

from .common import as_dict, as_str, coerce_timestamp, convert_minor_amount, to_minor_amount

logger = logging.getLogger(__name__)

GATEWAY = Gateway.STRIPE
SIGNATURE_TOLERANCE_SECONDS = 300


def _decode_payload(raw_body) -> str:
    if isinstance(raw_body, bytes):
        return raw_body.decode("utf-8")
    return raw_body


def _stripe_obj_to_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict_recursive"):
        return obj
    for name in ("to_dict_recursive", "to_dict"):
        to_dict = getattr(obj, name, None)
        if callable(to_dict):
            return to_dict()
    return dict(obj)


def verify(raw_body, headers: Mapping[str, str], factory) -> bool:
    secret = factory.get_webhook_secret(GATEWAY)
    if not secret:
        logger.warning("Stripe webhook secret not configured; rejecting delivery")
        return False
    signature = get_header(headers, "Stripe-Signature")
    if not signature:
        return False
    try:
        stripe.WebhookSignature.verify_header(
            _decode_payload(raw_body), signature, secret, tolerance=SIGNATURE_TOLERANCE_SECONDS
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("Stripe signature verification failed: %s", exc)
        return False
    return True


def parse_envelope(payload: Dict[str, Any]) -> Tuple[str, str]:
    return as_str(payload.get("id")), as_str(payload.get("type"))


def _extract_invoice_period(invoice: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Derive coverage window for an invoice from its line items."""

    period_start = None
    period_end = None
    lines = as_dict(invoice.get("lines")).get("data") or []
    if isinstance(lines, list):
        for line in lines:
            if not isinstance(line, dict):
                continue
            line_period = line.get("period") or {}
            line_start = coerce_timestamp(line_period.get("start"))
            line_end = coerce_timestamp(line_period.get("end"))

            if line_start and (period_start is None or line_start < period_start):
                period_start = line_start
            if line_end and (period_end is None or line_end > period_end):
                period_end = line_end

    return period_start, period_end


def _invoice_subscription(invoice: Dict[str, Any]) -> str:
    subscription = invoice.get("subscription")
    if not subscription:
        details = as_dict(as_dict(invoice.get("parent")).get("subscription_details"))
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    return as_str(subscription)


def _subscription_period(subscription: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    start = coerce_timestamp(subscription.get("current_period_start"))
    end = coerce_timestamp(subscription.get("current_period_end"))
    if start is None or end is None:
        items = as_dict(subscription.get("items")).get("data") or []
        if items and isinstance(items[0], dict):
            start = start or coerce_timestamp(items[0].get("current_period_start"))
            end = end or coerce_timestamp(items[0].get("current_period_end"))
    return start, end


def normalize(event_type: str, payload: Dict[str, Any], event_id: str):
    obj = as_dict(as_dict(payload.get("data")).get("object"))
    base = {"gateway": GATEWAY, "event_id": event_id, "event_type": event_type}
    currency = as_str(obj.get("currency")).upper()

    if event_type == "checkout.session.completed":
        metadata = dict(as_dict(obj.get("metadata")))
        if "type" not in metadata:
            metadata["type"] = "subscription" if obj.get("mode") == "subscription" else "credits"
        return CheckoutCompleted(
            **base,
            external_ref=as_str(obj.get("payment_intent") or obj.get("id")),
            amount=convert_minor_amount(obj.get("amount_total"), currency),
            currency=currency,
            metadata=metadata,
            subscription_ref=as_str(obj.get("subscription")) or None,
        )

    if event_type in ("invoice.payment_succeeded", "invoice.paid"):
        start, end = _extract_invoice_period(obj)
        return InvoicePaid(
            **base,
            subscription_ref=_invoice_subscription(obj),
            external_ref=as_str(obj.get("payment_intent") or obj.get("id")),
            amount=convert_minor_amount(obj.get("amount_paid"), currency),
            currency=currency,
            period_start=start,
            period_end=end,
            is_renewal=obj.get("billing_reason") == "subscription_cycle",
        )

    if event_type == "invoice.payment_failed":
        return InvoicePaymentFailed(
            **base,
            subscription_ref=_invoice_subscription(obj),
            amount=convert_minor_amount(obj.get("amount_due"), currency),
            currency=currency,
            reason=as_str(as_dict(obj.get("last_finalization_error")).get("message")),
        )

    if event_type == "customer.subscription.deleted":
        return SubscriptionCancelled(**base, subscription_ref=as_str(obj.get("id")))

    if event_type == "customer.subscription.updated":
        _, end = _subscription_period(obj)
        return SubscriptionUpdated(
            **base,
            subscription_ref=as_str(obj.get("id")),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
            period_end=end,
            status=as_str(obj.get("status")),
        )

    if event_type == "charge.dispute.created":
        return DisputeCreated(
            **base,
            charge_ref=as_str(obj.get("charge")),
            payment_ref=as_str(obj.get("payment_intent")) or None,
            dispute_ref=as_str(obj.get("id")),
            reason=as_str(obj.get("reason")),
            amount=convert_minor_amount(obj.get("amount"), currency) if obj.get("amount") is not None else None,
            currency=currency,
        )

    if event_type == "charge.refunded":
        refunds = as_dict(obj.get("refunds")).get("data") or []
        latest = refunds[0] if refunds and isinstance(refunds[0], dict) else {}
        return RefundProcessed(
            **base,
            charge_ref=as_str(obj.get("id")),
            payment_ref=as_str(obj.get("payment_intent")) or None,
            refund_ref=as_str(latest.get("id")),
            amount=convert_minor_amount(obj.get("amount_refunded"), currency),
            currency=currency,
            reason=as_str(latest.get("reason")),
            fully_refunded=bool(obj.get("refunded")),
        )

    return Unhandled(**base)


def handle(event, handlers, factory):
    """Fill subscription periods from the Stripe API before applying the event."""

    needs_periods = (
        isinstance(event, CheckoutCompleted) and event.subscription_ref and event.period_end is None
    ) or (isinstance(event, InvoicePaid) and event.is_renewal and event.period_end is None)
    if needs_periods:
        client = factory.get_client(GATEWAY) if factory is not None else None
        if client is not None:
            subscription = _stripe_obj_to_dict(client.retrieve_subscription(event.subscription_ref))
            start, end = _subscription_period(subscription)
            updates: Dict[str, Any] = {"period_start": start, "period_end": end}
            if isinstance(event, CheckoutCompleted):
                metadata = dict(as_dict(subscription.get("metadata")))
                metadata.update(event.metadata)
                updates["metadata"] = metadata
            event = replace(event, **updates)
    return handlers.dispatch(event)


def refund(client, payment) -> str:
    result = _stripe_obj_to_dict(
        client.create_refund(
            payment.gateway_transaction_id,
            amount_minor=to_minor_amount(payment.amount, payment.currency),
        )
    )
    return as_str(result.get("id"))
