"""Refund and dispute handling shared by admin refunds and gateway webhooks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction

from payments.models import CreditLedgerEntry, PaymentTransaction, Refund
from payments.observability.logging import log_payment_event

from .credit_ledger import reverse_credits
from .ledger import mark_transaction_refunded

logger = logging.getLogger(__name__)

SUSPENSION_REASON = "Account suspended due to a payment chargeback."

_INITIATORS = {
    Refund.Reason.ADMIN_INITIATED: Refund.Initiator.ADMIN,
    Refund.Reason.GATEWAY_REFUND: Refund.Initiator.GATEWAY,
    Refund.Reason.CHARGEBACK: Refund.Initiator.GATEWAY,
}


class RefundError(Exception):
    """Base exception for refund processing."""


class TransactionNotFound(RefundError):
    def __init__(self, message: str = "Transaction not found"):
        super().__init__(message)


class TransactionAlreadyRefunded(RefundError):
    def __init__(self, message: str = "Transaction already refunded"):
        super().__init__(message)


class RefundNotAllowed(RefundError):
    """Raised when the transaction cannot be refunded in its current state."""


@dataclass(frozen=True)
class RefundOutcome:
    refund: Refund
    credits_reversed: Optional[int]
    shortfall: int
    user_suspended: bool


class RefundDisputeHandler:
    """Reverses a transaction exactly once, whatever asked for it.

    Admin refunds, gateway refund notifications and chargebacks all land here;
    only the recorded reason, the initiator and the suspension differ.
    """

    def __init__(self, *, audit, notifier):
        self.audit = audit
        self.notifier = notifier

    def apply(
        self,
        *,
        transaction_id: Any,
        reason: str,
        gateway_refund_id: str = "",
        amount: Optional[Decimal] = None,
        admin=None,
        note: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RefundOutcome:
        if reason not in _INITIATORS:
            raise ValueError(f"Unknown refund reason '{reason}'.")
        suspend = reason == Refund.Reason.CHARGEBACK

        with transaction.atomic():
            payment = (
                PaymentTransaction.objects.select_for_update()
                .filter(pk=transaction_id)
                .first()
            )
            if payment is None:
                raise TransactionNotFound()
            if payment.status == PaymentTransaction.Status.REFUNDED or Refund.objects.filter(
                transaction=payment
            ).exists():
                raise TransactionAlreadyRefunded()

            credits_reversed: Optional[int] = None
            shortfall = 0
            if payment.type == PaymentTransaction.Type.CREDITS and payment.credits_awarded:
                entry_type = (
                    CreditLedgerEntry.EntryType.CHARGEBACK_REVERSAL
                    if suspend
                    else CreditLedgerEntry.EntryType.REFUND_REVERSAL
                )
                result = reverse_credits(
                    user_id=payment.user_id,
                    amount=payment.credits_awarded,
                    description=f"Reversal for {payment.gateway} {payment.gateway_transaction_id}",
                    idempotency_key=f"refund_{payment.pk}",
                    entry_type=entry_type,
                    reference=payment.gateway_transaction_id,
                )
                credits_reversed = -result.delta
                shortfall = result.shortfall

            refund_metadata = {
                "userSuspended": suspend,
                "reason": note or _default_note(reason),
                "creditsRequested": payment.credits_awarded,
                "creditsShortfall": shortfall,
                **(metadata or {}),
            }
            try:
                with transaction.atomic():
                    refund = Refund.objects.create(
                        transaction=payment,
                        user_id=payment.user_id,
                        amount=amount if amount is not None else payment.amount,
                        currency=payment.currency,
                        gateway=payment.gateway,
                        gateway_refund_id=gateway_refund_id or "",
                        reason=reason,
                        initiated_by=_INITIATORS[reason],
                        admin=admin,
                        credits_reversed=credits_reversed,
                        user_suspended=suspend,
                        metadata=refund_metadata,
                    )
            except IntegrityError as exc:
                raise TransactionAlreadyRefunded() from exc

            if not mark_transaction_refunded(payment.pk):
                raise TransactionAlreadyRefunded()

            if suspend:
                get_user_model().objects.filter(pk=payment.user_id).update(is_active=False)

            details = {
                "refund_id": str(refund.pk),
                "transaction_id": str(payment.pk),
                "credits_reversed": credits_reversed,
                "credits_shortfall": shortfall,
                "user_suspended": suspend,
            }
            if suspend:
                self.audit.log_dispute_opened(
                    gateway=payment.gateway,
                    user_id=payment.user_id,
                    reference=gateway_refund_id or payment.gateway_transaction_id,
                    amount=refund.amount,
                    currency=payment.currency,
                    reason=note,
                    details=details,
                )
            else:
                self.audit.log_refund_completed(
                    gateway=payment.gateway,
                    user_id=payment.user_id,
                    reference=gateway_refund_id or payment.gateway_transaction_id,
                    amount=refund.amount,
                    currency=payment.currency,
                    reason=reason,
                    details=details,
                )

        if shortfall:
            logger.warning(
                "Refund %s could only reverse %s of %s credits for user %s",
                refund.pk, credits_reversed, payment.credits_awarded, payment.user_id,
            )
        log_payment_event(
            message="transaction refunded",
            gateway=payment.gateway,
            user_id=payment.user_id,
            extra={"transaction_id": str(payment.pk), "reason": str(reason), "user_suspended": suspend},
        )
        if suspend:
            self.notifier.account_suspended(payment.user_id, reason=SUSPENSION_REASON)

        return RefundOutcome(
            refund=refund,
            credits_reversed=credits_reversed,
            shortfall=shortfall,
            user_suspended=suspend,
        )


def initiate_refund(
    *,
    transaction_id: Any,
    reason: str,
    admin,
    handler: RefundDisputeHandler,
    client_factory,
) -> RefundOutcome:
    """Admin refund: call the gateway refund API, then record the reversal."""

    from payments.gateways import get_adapter
    from .clients import GatewayNotConfigured

    payment = PaymentTransaction.objects.filter(pk=transaction_id).first()
    if payment is None:
        raise TransactionNotFound()
    if payment.status == PaymentTransaction.Status.REFUNDED or Refund.objects.filter(transaction=payment).exists():
        raise TransactionAlreadyRefunded()
    if payment.status != PaymentTransaction.Status.COMPLETED:
        raise RefundNotAllowed(f"Transaction is {payment.status}.")

    client = client_factory.get_client(payment.gateway)
    if client is None:
        raise GatewayNotConfigured("Gateway not configured")

    # No locks are held while the gateway call is in flight.
    gateway_refund_id = get_adapter(payment.gateway).refund(client, payment)
    logger.info("Gateway %s accepted refund %s for transaction %s", payment.gateway, gateway_refund_id, payment.pk)

    try:
        return handler.apply(
            transaction_id=payment.pk,
            reason=Refund.Reason.ADMIN_INITIATED,
            gateway_refund_id=gateway_refund_id,
            admin=admin,
            note=reason,
        )
    except TransactionAlreadyRefunded:
        # The gateway refund notification for this call was applied first.
        existing = Refund.objects.filter(transaction=payment).first()
        if existing is None or existing.reason == Refund.Reason.CHARGEBACK:
            raise
    return _claim_gateway_refund(existing, admin=admin, gateway_refund_id=gateway_refund_id, note=reason)


def _claim_gateway_refund(refund: Refund, *, admin, gateway_refund_id: str, note: str) -> RefundOutcome:
    """Attribute a refund recorded from the gateway notification to the admin who issued it."""

    metadata = {**refund.metadata, "reason": note or refund.metadata.get("reason", "")}
    Refund.objects.filter(pk=refund.pk).update(
        reason=Refund.Reason.ADMIN_INITIATED,
        initiated_by=Refund.Initiator.ADMIN,
        admin=admin,
        gateway_refund_id=refund.gateway_refund_id or gateway_refund_id or "",
        metadata=metadata,
    )
    refund.refresh_from_db()
    logger.info("Refund %s for transaction %s attributed to admin %s", refund.pk, refund.transaction_id, admin.pk)
    return RefundOutcome(
        refund=refund,
        credits_reversed=refund.credits_reversed,
        shortfall=int(refund.metadata.get("creditsShortfall") or 0),
        user_suspended=refund.user_suspended,
    )


def _default_note(reason: str) -> str:
    if reason == Refund.Reason.CHARGEBACK:
        return "Chargeback opened by the cardholder"
    if reason == Refund.Reason.GATEWAY_REFUND:
        return "Refund issued from the gateway dashboard"
    return "Refund issued by an administrator"


__all__ = [
    "RefundDisputeHandler",
    "RefundError",
    "RefundNotAllowed",
    "RefundOutcome",
    "SUSPENSION_REASON",
    "TransactionAlreadyRefunded",
    "TransactionNotFound",
    "initiate_refund",
]
