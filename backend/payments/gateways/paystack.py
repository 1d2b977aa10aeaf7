"""Paystack webhook adapter."""
from __future__ import annotations

import hashlib
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
from payments.services.signatures import get_header, hmac_hex_digest, signatures_match

from .common import as_dict, as_str, coerce_timestamp, convert_minor_amount, to_minor_amount

logger = logging.getLogger(__name__)

GATEWAY = Gateway.PAYSTACK


def verify(raw_body, headers: Mapping[str, str], factory) -> bool:
    secret = factory.get_webhook_secret(GATEWAY)
    if not secret:
        logger.warning("Paystack secret key not configured; rejecting delivery")
        return False
    expected = hmac_hex_digest(secret, raw_body, algorithm=hashlib.sha512)
    return signatures_match(expected, get_header(headers, "X-Paystack-Signature"))


def parse_envelope(payload: Dict[str, Any]) -> Tuple[str, str]:
    event_type = as_str(payload.get("event"))
    data = as_dict(payload.get("data"))
    reference = data.get("id") or data.get("reference") or data.get("subscription_code")
    event_id = f"{event_type}:{reference}" if reference else ""
    return event_id, event_type


def normalize(event_type: str, payload: Dict[str, Any], event_id: str):
    data = as_dict(payload.get("data"))
    base = {"gateway": GATEWAY, "event_id": event_id, "event_type": event_type}
    currency = as_str(data.get("currency")).upper()

    if event_type == "charge.success":
        metadata = dict(as_dict(data.get("metadata")))
        metadata.setdefault("type", "subscription")
        subscription_ref = None
        if metadata["type"] == "subscription":
            subscription_ref = (
                as_dict(data.get("subscription")).get("subscription_code")
                or metadata.get("subscription_id")
                or metadata.get("subscriptionId")
                or as_dict(data.get("authorization")).get("authorization_code")
            )
        return CheckoutCompleted(
            **base,
            external_ref=as_str(data.get("reference")),
            amount=convert_minor_amount(data.get("amount"), currency),
            currency=currency,
            metadata=metadata,
            subscription_ref=as_str(subscription_ref) or None,
        )

    if event_type == "invoice.payment_failed":
        return InvoicePaymentFailed(
            **base,
            subscription_ref=as_str(as_dict(data.get("subscription")).get("subscription_code")),
            amount=convert_minor_amount(data.get("amount"), currency) if data.get("amount") else None,
            currency=currency,
            reason="Subscription renewal failed",
        )

    if event_type == "subscription.disable":
        return SubscriptionCancelled(**base, subscription_ref=as_str(data.get("subscription_code")))

    if event_type == "subscription.not_renew":
        return SubscriptionUpdated(
            **base,
            subscription_ref=as_str(data.get("subscription_code")),
            cancel_at_period_end=True,
            period_end=coerce_timestamp(data.get("next_payment_date")),
            status=as_str(data.get("status")),
        )

    if event_type == "refund.processed":
        return RefundProcessed(
            **base,
            charge_ref=as_str(data.get("transaction_reference") or as_dict(data.get("transaction")).get("reference")),
            refund_ref=as_str(data.get("id")),
            amount=convert_minor_amount(data.get("amount"), currency) if data.get("amount") else None,
            currency=currency,
            reason=as_str(data.get("merchant_note")),
        )

    if event_type == "charge.dispute.create":
        transaction = as_dict(data.get("transaction"))
        dispute_currency = as_str(data.get("currency") or transaction.get("currency")).upper()
        amount = data.get("refund_amount") or transaction.get("amount")
        return DisputeCreated(
            **base,
            charge_ref=as_str(transaction.get("reference")),
            dispute_ref=as_str(data.get("id")),
            reason=as_str(data.get("category") or data.get("reason")),
            amount=convert_minor_amount(amount, dispute_currency) if amount else None,
            currency=dispute_currency,
        )

    return Unhandled(**base)


def handle(event, handlers, factory):
    return handlers.dispatch(event)


def refund(client, payment) -> str:
    result = client.post(
        "/refund",
        json={
            "transaction": payment.gateway_transaction_id,
            "amount": to_minor_amount(payment.amount, payment.currency),
        },
    )
    return as_str(as_dict(result.get("data")).get("id"))
