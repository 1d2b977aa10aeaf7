"""PayPal webhook adapter.

PayPal signs deliveries with a certificate chain; verification is delegated to
the ``verify-webhook-signature`` API using the configured webhook id.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Tuple

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
from payments.services.clients import GatewayRequestError
from payments.services.signatures import get_header

from .common import as_dict, as_str, coerce_timestamp, major_amount, parse_json_metadata

logger = logging.getLogger(__name__)

GATEWAY = Gateway.PAYPAL

VERIFY_PATH = "/v1/notifications/verify-webhook-signature"
TRANSMISSION_HEADERS = {
    "auth_algo": "PayPal-Auth-Algo",
    "cert_url": "PayPal-Cert-Url",
    "transmission_id": "PayPal-Transmission-Id",
    "transmission_sig": "PayPal-Transmission-Sig",
    "transmission_time": "PayPal-Transmission-Time",
}


def verify(raw_body, headers: Mapping[str, str], factory) -> bool:
    webhook_id = factory.get_webhook_secret(GATEWAY)
    client = factory.get_client(GATEWAY)
    if not webhook_id or client is None:
        logger.warning("PayPal webhook id or credentials not configured; rejecting delivery")
        return False

    body: Dict[str, Any] = {"webhook_id": webhook_id}
    for field_name, header in TRANSMISSION_HEADERS.items():
        value = get_header(headers, header)
        if not value:
            return False
        body[field_name] = value
    try:
        body["webhook_event"] = json.loads(raw_body)
    except (TypeError, ValueError):
        return False

    try:
        result = client.post(VERIFY_PATH, json=body)
    except GatewayRequestError as exc:
        logger.warning("PayPal signature verification call failed: %s", exc)
        return False
    return result.get("verification_status") == "SUCCESS"


def parse_envelope(payload: Dict[str, Any]) -> Tuple[str, str]:
    return as_str(payload.get("id")), as_str(payload.get("event_type"))


def _money(value: Any) -> Tuple[Any, str]:
    money = as_dict(value)
    return major_amount(money.get("value")), as_str(money.get("currency_code")).upper()


def _capture_id_from_links(resource: Dict[str, Any]) -> str:
    for link in resource.get("links") or []:
        if isinstance(link, dict) and link.get("rel") == "up" and "/captures/" in as_str(link.get("href")):
            return as_str(link["href"]).rstrip("/").rsplit("/", 1)[-1]
    return ""


def normalize(event_type: str, payload: Dict[str, Any], event_id: str):
    resource = as_dict(payload.get("resource"))
    base = {"gateway": GATEWAY, "event_id": event_id, "event_type": event_type}
    billing_info = as_dict(resource.get("billing_info"))

    if event_type == "PAYMENT.CAPTURE.COMPLETED":
        amount, currency = _money(resource.get("amount"))
        return CheckoutCompleted(
            **base,
            external_ref=as_str(resource.get("id")),
            amount=amount,
            currency=currency,
            metadata=parse_json_metadata(resource.get("custom_id")),
        )

    if event_type == "BILLING.SUBSCRIPTION.ACTIVATED":
        amount, currency = _money(as_dict(billing_info.get("last_payment")).get("amount"))
        metadata = parse_json_metadata(resource.get("custom_id"))
        metadata.setdefault("type", "subscription")
        return CheckoutCompleted(
            **base,
            external_ref=as_str(resource.get("id")),
            amount=amount,
            currency=currency,
            metadata=metadata,
            subscription_ref=as_str(resource.get("id")),
            period_start=coerce_timestamp(resource.get("start_time")),
            period_end=coerce_timestamp(billing_info.get("next_billing_time")),
        )

    if event_type == "PAYMENT.SALE.COMPLETED":
        subscription_ref = as_str(resource.get("billing_agreement_id"))
        if not subscription_ref:
            return Unhandled(**base)
        amount = major_amount(as_dict(resource.get("amount")).get("total"))
        currency = as_str(as_dict(resource.get("amount")).get("currency")).upper()
        return InvoicePaid(
            **base,
            subscription_ref=subscription_ref,
            external_ref=as_str(resource.get("id")),
            amount=amount,
            currency=currency,
        )

    if event_type == "BILLING.SUBSCRIPTION.RENEWED":
        # The matching PAYMENT.SALE.COMPLETED carries the money; this only moves the period.
        return SubscriptionUpdated(
            **base,
            subscription_ref=as_str(resource.get("id")),
            period_end=coerce_timestamp(billing_info.get("next_billing_time")),
            status=as_str(resource.get("status")).lower(),
        )

    if event_type == "BILLING.SUBSCRIPTION.PAYMENT.FAILED":
        failed = as_dict(billing_info.get("last_failed_payment")) or as_dict(billing_info.get("last_payment"))
        amount, currency = _money(failed.get("amount"))
        return InvoicePaymentFailed(
            **base,
            subscription_ref=as_str(resource.get("id")),
            amount=amount,
            currency=currency,
            reason=as_str(failed.get("reason_code")) or "Subscription payment failed",
        )

    if event_type in ("BILLING.SUBSCRIPTION.CANCELLED", "BILLING.SUBSCRIPTION.EXPIRED"):
        return SubscriptionCancelled(**base, subscription_ref=as_str(resource.get("id")))

    if event_type == "PAYMENT.CAPTURE.REFUNDED":
        amount, currency = _money(resource.get("amount"))
        return RefundProcessed(
            **base,
            charge_ref=_capture_id_from_links(resource) or as_str(resource.get("id")),
            refund_ref=as_str(resource.get("id")),
            amount=amount,
            currency=currency,
            reason=as_str(resource.get("note_to_payer")),
        )

    if event_type == "CUSTOMER.DISPUTE.CREATED":
        disputed = (resource.get("disputed_transactions") or [{}])[0]
        disputed = as_dict(disputed)
        amount, currency = _money(resource.get("dispute_amount"))
        return DisputeCreated(
            **base,
            charge_ref=as_str(disputed.get("seller_transaction_id") or disputed.get("buyer_transaction_id")),
            dispute_ref=as_str(resource.get("dispute_id")),
            reason=as_str(resource.get("reason")),
            amount=amount if resource.get("dispute_amount") else None,
            currency=currency,
        )

    return Unhandled(**base)


def handle(event, handlers, factory):
    return handlers.dispatch(event)


def refund(client, payment) -> str:
    result = client.post(f"/v2/payments/captures/{payment.gateway_transaction_id}/refund", json={})
    return as_str(result.get("id"))
