"""Gateway-agnostic handlers applying canonical events to the ledger.

Each handler receives one canonical event and returns a :class:`HandlerResult`.
Ledger writes run in a single ``transaction.atomic()`` block whose first
statement is the idempotent transaction insert; customer notifications run
after the block and can never undo it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.contrib.auth import get_user_model
from django.db import transaction

from payments.events import (
    CheckoutCompleted,
    DisputeCreated,
    InvoicePaid,
    InvoicePaymentFailed,
    RefundProcessed,
    SubscriptionCancelled,
    SubscriptionUpdated,
)
from payments.models import BillingPeriod, CreditPackage, PaymentTransaction, Plan, Refund, Subscription

from . import settings_store
from .credit_ledger import add_credits, apply_plan_credits
from .ledger import DuplicatePaymentTransaction, find_transaction, record_payment_transaction
from .refunds import RefundDisputeHandler, TransactionAlreadyRefunded
from .subscriptions import (
    SubscriptionTransitionError,
    activate_subscription,
    cancel_subscription,
    locate_subscription,
    mark_past_due,
    renew_subscription,
    update_subscription,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerResult:
    """Outcome of a webhook handler invocation."""

    status: str
    action: str
    detail: str = ""
    user_id: Optional[str] = None
    transaction_id: Optional[str] = None

    PROCESSED = "processed"
    IGNORED = "ignored"
    ALREADY_PROCESSED = "already_processed"
    FAILED = "failed"

    @property
    def success(self) -> bool:
        return self.status != self.FAILED

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "action": self.action,
            "detail": self.detail,
            "user_id": self.user_id,
            "transaction_id": self.transaction_id,
        }


def _meta(metadata: Dict[str, Any], *names: str) -> Optional[str]:
    for name in names:
        value = metadata.get(name)
        if value not in (None, ""):
            return str(value)
    return None


def _resolve_user_id(value: Optional[str]) -> Optional[Any]:
    if not value:
        return None
    User = get_user_model()
    try:
        return User.objects.filter(pk=value).values_list("pk", flat=True).first()
    except (ValueError, TypeError):
        return None


def _resolve_plan(value: Optional[str]) -> Optional[Plan]:
    if not value:
        return None
    plan = Plan.objects.filter(name=value).first()
    if plan is None and value.isdigit():
        plan = Plan.objects.filter(pk=int(value)).first()
    return plan


def _resolve_package(value: Optional[str]) -> Optional[CreditPackage]:
    if not value or not value.isdigit():
        return None
    return CreditPackage.objects.filter(pk=int(value)).first()


def _billing_period(metadata: Dict[str, Any]) -> str:
    value = (_meta(metadata, "billing_period", "billingPeriod") or "").lower()
    return value if value in BillingPeriod.values else BillingPeriod.MONTHLY


class WebhookHandlers:
    """Shared event handlers with their collaborators injected."""

    def __init__(self, *, audit, notifier, client_factory=None, refunds: Optional[RefundDisputeHandler] = None):
        self.audit = audit
        self.notifier = notifier
        self.client_factory = client_factory
        self.refunds = refunds or RefundDisputeHandler(audit=audit, notifier=notifier)

    def dispatch(self, event) -> HandlerResult:
        """Route a canonical event to its handler."""
        handler = {
            CheckoutCompleted: self.checkout_completed,
            InvoicePaid: self.invoice_paid,
            InvoicePaymentFailed: self.invoice_payment_failed,
            SubscriptionCancelled: self.subscription_cancelled,
            SubscriptionUpdated: self.subscription_updated,
            DisputeCreated: self.dispute_created,
            RefundProcessed: self.refund_processed,
        }.get(type(event), self.unhandled)
        return handler(event)

    def _currency(self, gateway: str, currency: str) -> str:
        if currency:
            return currency.upper()
        return settings_store.get_currency_config(gateway).currency

    # Checkout

    def checkout_completed(self, event: CheckoutCompleted) -> HandlerResult:
        kind = (_meta(event.metadata, "type") or "").lower()
        if kind == PaymentTransaction.Type.CREDITS:
            return self._credits_checkout(event)
        if kind == PaymentTransaction.Type.SUBSCRIPTION or event.subscription_ref:
            return self._subscription_checkout(event)
        logger.info("Ignoring %s checkout %s without a purchase type", event.gateway, event.external_ref)
        return HandlerResult(status=HandlerResult.IGNORED, action="unknown_checkout_type")

    def _credits_checkout(self, event: CheckoutCompleted) -> HandlerResult:
        metadata = event.metadata
        user_id = _resolve_user_id(_meta(metadata, "user_id", "userId"))
        package = _resolve_package(_meta(metadata, "package_id", "packageId"))
        if user_id is None or package is None:
            return self._failed(event, "missing_metadata", "Credit checkout is missing user or package metadata.")

        currency = self._currency(event.gateway, event.currency)
        try:
            with transaction.atomic():
                payment = record_payment_transaction(
                    user_id=user_id,
                    type=PaymentTransaction.Type.CREDITS,
                    gateway=event.gateway,
                    gateway_transaction_id=event.external_ref,
                    amount=event.amount,
                    currency=currency,
                    credit_package=package,
                    credits_awarded=package.credits,
                    description=f"{package.credits} credits ({package.name})",
                    metadata={"event_id": event.event_id},
                )
                add_credits(
                    user_id=user_id,
                    amount=package.credits,
                    description=f"Purchased {package.name}",
                    idempotency_key=f"credits_{event.gateway}_{event.external_ref}",
                    reference=event.external_ref,
                    metadata={"transaction_id": str(payment.pk)},
                )
                self.audit.log_payment_completed(
                    gateway=event.gateway, user_id=user_id, reference=event.external_ref,
                    amount=payment.amount, currency=currency,
                )
                self.audit.log_credits_awarded(
                    gateway=event.gateway, user_id=user_id, credits=package.credits,
                    reference=event.external_ref, amount=payment.amount, currency=currency,
                )
        except DuplicatePaymentTransaction:
            return HandlerResult(status=HandlerResult.ALREADY_PROCESSED, action="credits_already_processed",
                                 user_id=str(user_id))

        self.notifier.purchase_confirmed(payment)
        return HandlerResult(status=HandlerResult.PROCESSED, action="credits_awarded",
                             user_id=str(user_id), transaction_id=str(payment.pk))

    def _subscription_checkout(self, event: CheckoutCompleted) -> HandlerResult:
        metadata = event.metadata
        subscription_ref = event.subscription_ref or _meta(metadata, "subscription_id", "subscriptionId")
        existing = locate_subscription(event.gateway, subscription_ref)
        user_id = _resolve_user_id(_meta(metadata, "user_id", "userId"))
        if user_id is None and existing is not None:
            user_id = existing.user_id
        plan = _resolve_plan(_meta(metadata, "plan_id", "planId", "plan"))
        if plan is None and existing is not None:
            plan = existing.plan
        if user_id is None or plan is None or not subscription_ref:
            return self._failed(event, "missing_metadata",
                                "Subscription checkout is missing user, plan or subscription reference.")

        external_ref = event.external_ref or subscription_ref
        currency = self._currency(event.gateway, event.currency)
        billing_period = _billing_period(metadata)
        try:
            with transaction.atomic():
                subscription, _ = activate_subscription(
                    user_id=user_id,
                    plan=plan,
                    gateway=event.gateway,
                    subscription_ref=subscription_ref,
                    period_start=event.period_start,
                    period_end=event.period_end,
                    billing_period=billing_period,
                )
                payment = record_payment_transaction(
                    user_id=user_id,
                    type=PaymentTransaction.Type.SUBSCRIPTION,
                    gateway=event.gateway,
                    gateway_transaction_id=external_ref,
                    gateway_subscription_id=subscription_ref,
                    amount=event.amount,
                    currency=currency,
                    plan=plan,
                    subscription=subscription,
                    billing_period=billing_period,
                    description=f"{plan.display_name} Subscription",
                    metadata={"event_id": event.event_id},
                )
                granted = apply_plan_credits(user_id=user_id, plan=plan, gateway=event.gateway, reference=external_ref)
                self.audit.log_subscription_created(
                    gateway=event.gateway, user_id=user_id, reference=subscription_ref, plan=plan.name,
                    amount=payment.amount, currency=currency, details={"billing_period": billing_period},
                )
                if granted is not None and granted.created:
                    self.audit.log_credits_awarded(
                        gateway=event.gateway, user_id=user_id, credits=granted.delta, reference=external_ref,
                        details={"plan": plan.name, "reason": "plan_subscription"},
                    )
        except DuplicatePaymentTransaction:
            return HandlerResult(status=HandlerResult.ALREADY_PROCESSED, action="subscription_already_processed",
                                 user_id=str(user_id))
        except SubscriptionTransitionError as exc:
            return self._failed(event, "subscription_conflict", str(exc))

        self.notifier.purchase_confirmed(payment)
        self.notifier.membership_upgraded(user_id, plan.display_name)
        return HandlerResult(status=HandlerResult.PROCESSED, action="subscription_created",
                             user_id=str(user_id), transaction_id=str(payment.pk))

    # Invoices

    def invoice_paid(self, event: InvoicePaid) -> HandlerResult:
        if not event.is_renewal:
            return HandlerResult(status=HandlerResult.IGNORED, action="not_renewal_invoice")

        currency = self._currency(event.gateway, event.currency)
        external_ref = event.external_ref or event.event_id
        try:
            with transaction.atomic():
                subscription = locate_subscription(event.gateway, event.subscription_ref, for_update=True)
                if subscription is None:
                    return self._failed(event, "subscription_not_found",
                                        f"No subscription for {event.subscription_ref}.")
                renew_subscription(subscription, period_start=event.period_start, period_end=event.period_end)
                payment = record_payment_transaction(
                    user_id=subscription.user_id,
                    type=PaymentTransaction.Type.SUBSCRIPTION,
                    gateway=event.gateway,
                    gateway_transaction_id=external_ref,
                    gateway_subscription_id=event.subscription_ref,
                    amount=event.amount,
                    currency=currency,
                    plan=subscription.plan,
                    subscription=subscription,
                    billing_period=subscription.billing_period,
                    description="Subscription Renewal",
                    metadata={"event_id": event.event_id},
                )
                self.audit.log_subscription_renewed(
                    gateway=event.gateway, user_id=subscription.user_id, reference=event.subscription_ref,
                    amount=payment.amount, currency=currency,
                    details={"period_end": subscription.current_period_end},
                )
        except DuplicatePaymentTransaction:
            return HandlerResult(status=HandlerResult.ALREADY_PROCESSED, action="renewal_already_processed")
        except SubscriptionTransitionError as exc:
            return self._failed(event, "subscription_conflict", str(exc))

        self.notifier.purchase_confirmed(payment)
        return HandlerResult(status=HandlerResult.PROCESSED, action="subscription_renewed",
                             user_id=str(subscription.user_id), transaction_id=str(payment.pk))

    def invoice_payment_failed(self, event: InvoicePaymentFailed) -> HandlerResult:
        with transaction.atomic():
            subscription = locate_subscription(event.gateway, event.subscription_ref, for_update=True)
            if subscription is None or subscription.status == Subscription.Status.CANCELLED:
                logger.info("No live %s subscription for failed invoice %s", event.gateway, event.subscription_ref)
                return HandlerResult(status=HandlerResult.IGNORED, action="no_subscription")
            mark_past_due(subscription)
            self.audit.log_payment_failed(
                gateway=event.gateway, user_id=subscription.user_id, reference=event.subscription_ref,
                amount=event.amount, currency=event.currency, error=event.reason or "invoice payment failed",
            )

        self.notifier.payment_failed(subscription.user_id, amount=event.amount, currency=event.currency,
                                     reason=event.reason)
        return HandlerResult(status=HandlerResult.PROCESSED, action="subscription_past_due",
                             user_id=str(subscription.user_id))

    # Subscription lifecycle

    def subscription_cancelled(self, event: SubscriptionCancelled) -> HandlerResult:
        with transaction.atomic():
            subscription = locate_subscription(event.gateway, event.subscription_ref, for_update=True)
            if subscription is None:
                return self._failed(event, "subscription_not_found", f"No subscription for {event.subscription_ref}.")
            cancel_subscription(subscription)
            self.audit.log_subscription_cancelled(
                gateway=event.gateway, user_id=subscription.user_id, reference=event.subscription_ref,
            )
        return HandlerResult(status=HandlerResult.PROCESSED, action="subscription_cancelled",
                             user_id=str(subscription.user_id))

    def subscription_updated(self, event: SubscriptionUpdated) -> HandlerResult:
        with transaction.atomic():
            subscription = locate_subscription(event.gateway, event.subscription_ref, for_update=True)
            if subscription is None:
                return self._failed(event, "subscription_not_found", f"No subscription for {event.subscription_ref}.")
            update_subscription(
                subscription,
                cancel_at_period_end=event.cancel_at_period_end,
                period_end=event.period_end,
            )
        return HandlerResult(status=HandlerResult.PROCESSED, action="subscription_updated",
                             user_id=str(subscription.user_id))

    # Refunds and disputes

    def dispute_created(self, event: DisputeCreated) -> HandlerResult:
        payment = find_transaction(event.gateway, event.charge_ref, event.payment_ref)
        if payment is None:
            return self._failed(event, "transaction_not_found", f"No transaction for {event.charge_ref}.")
        try:
            outcome = self.refunds.apply(
                transaction_id=payment.pk,
                reason=Refund.Reason.CHARGEBACK,
                gateway_refund_id=event.dispute_ref,
                amount=event.amount,
                note=event.reason or "chargeback",
                metadata={"disputeStatus": event.event_type},
            )
        except TransactionAlreadyRefunded:
            return HandlerResult(status=HandlerResult.ALREADY_PROCESSED, action="dispute_already_processed",
                                 user_id=str(payment.user_id), transaction_id=str(payment.pk))
        return HandlerResult(status=HandlerResult.PROCESSED, action="user_suspended_chargeback",
                             user_id=str(payment.user_id), transaction_id=str(outcome.refund.transaction_id))

    def refund_processed(self, event: RefundProcessed) -> HandlerResult:
        if not event.fully_refunded:
            return HandlerResult(status=HandlerResult.IGNORED, action="not_fully_refunded")
        payment = find_transaction(event.gateway, event.charge_ref, event.payment_ref)
        if payment is None:
            return self._failed(event, "transaction_not_found", f"No transaction for {event.charge_ref}.")
        try:
            outcome = self.refunds.apply(
                transaction_id=payment.pk,
                reason=Refund.Reason.GATEWAY_REFUND,
                gateway_refund_id=event.refund_ref,
                amount=event.amount,
                metadata={"refundReason": event.reason or "external_refund"},
            )
        except TransactionAlreadyRefunded:
            return HandlerResult(status=HandlerResult.ALREADY_PROCESSED, action="refund_already_exists",
                                 user_id=str(payment.user_id), transaction_id=str(payment.pk))
        return HandlerResult(status=HandlerResult.PROCESSED, action="external_refund_processed",
                             user_id=str(payment.user_id), transaction_id=str(outcome.refund.transaction_id))

    def unhandled(self, event) -> HandlerResult:
        return HandlerResult(status=HandlerResult.IGNORED, action="unhandled", detail=event.event_type)

    def _failed(self, event, action: str, detail: str) -> HandlerResult:
        logger.warning("%s %s (%s): %s", event.gateway, event.event_type, event.event_id, detail)
        return HandlerResult(status=HandlerResult.FAILED, action=action, detail=detail)


__all__ = ["HandlerResult", "WebhookHandlers"]
