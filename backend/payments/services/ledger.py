"""Ledger writer: one PaymentTransaction row per gateway transaction id."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from payments.models import PaymentTransaction

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


class DuplicatePaymentTransaction(Exception):
    """Raised when ``(gateway, gateway_transaction_id)`` was already recorded."""

    def __init__(self, gateway: str, gateway_transaction_id: str):
        super().__init__(f"{gateway} transaction {gateway_transaction_id} already recorded.")
        self.gateway = gateway
        self.gateway_transaction_id = gateway_transaction_id


def record_payment_transaction(
    *,
    user_id: Any,
    type: str,
    gateway: str,
    gateway_transaction_id: str,
    amount: Decimal,
    currency: str,
    description: str = "",
    gateway_subscription_id: Optional[str] = None,
    plan=None,
    credit_package=None,
    subscription=None,
    billing_period: Optional[str] = None,
    credits_awarded: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> PaymentTransaction:
    """Insert a completed transaction, relying on the unique constraint for idempotency.

    Must run inside the caller's ``transaction.atomic()`` block so the balance
    and subscription writes that follow roll back together with this row.
    """

    if not gateway_transaction_id:
        raise ValueError("gateway_transaction_id is required.")

    try:
        with transaction.atomic():
            return PaymentTransaction.objects.create(
                user_id=user_id,
                type=type,
                gateway=gateway,
                gateway_transaction_id=gateway_transaction_id,
                gateway_subscription_id=gateway_subscription_id or None,
                amount=Decimal(str(amount or 0)).quantize(TWO_PLACES),
                currency=(currency or "").upper()[:3],
                plan=plan,
                credit_package=credit_package,
                subscription=subscription,
                description=(description or "")[:255],
                billing_period=billing_period,
                credits_awarded=credits_awarded,
                status=PaymentTransaction.Status.COMPLETED,
                completed_at=timezone.now(),
                metadata=metadata or {},
            )
    except IntegrityError:
        if PaymentTransaction.objects.filter(
            gateway=gateway, gateway_transaction_id=gateway_transaction_id
        ).exists():
            raise DuplicatePaymentTransaction(gateway, gateway_transaction_id)
        raise


def find_transaction(gateway: str, *refs: Optional[str]) -> Optional[PaymentTransaction]:
    """Locate a transaction by any of the gateway references supplied."""
    candidates = [ref for ref in refs if ref]
    if not candidates:
        return None
    return (
        PaymentTransaction.objects.filter(gateway=gateway, gateway_transaction_id__in=candidates)
        .select_related("user")
        .first()
    )


def mark_transaction_refunded(transaction_id) -> bool:
    """Flip ``completed`` to ``refunded``; returns ``False`` if another writer won."""
    updated = PaymentTransaction.objects.filter(
        pk=transaction_id, status=PaymentTransaction.Status.COMPLETED
    ).update(status=PaymentTransaction.Status.REFUNDED, refunded_at=timezone.now())
    if not updated:
        logger.info("Transaction %s was not in completed state; refund flip skipped", transaction_id)
    return bool(updated)


__all__ = [
    "DuplicatePaymentTransaction",
    "find_transaction",
    "mark_transaction_refunded",
    "record_payment_transaction",
]
