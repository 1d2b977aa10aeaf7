"""Best-effort customer notifications that follow a committed ledger write.

Nothing here may undo or block the ledger: every public method catches its
own failures and hands them to :func:`report_side_effect_failure`.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail
from django.template.loader import render_to_string
from django.utils.html import strip_tags

from accounts.models import Notification
from payments.models import PaymentTransaction
from payments.observability.logging import report_side_effect_failure

from .invoices import generate_invoice_for_transaction
from .settings_store import currency_symbol

logger = logging.getLogger(__name__)

BILLING_LINK = "/app/billing"


class NotificationDispatcher:
    """Sends invoices, emails and in-app notifications for payment outcomes."""

    def purchase_confirmed(self, payment: PaymentTransaction) -> None:
        try:
            invoice = generate_invoice_for_transaction(payment)
            user = payment.user
            self._send_email(
                user,
                subject=f"Payment received - invoice {invoice.invoice_number}",
                template="emails/purchase_confirmation.html",
                context={
                    "payment": payment,
                    "invoice": invoice,
                    "symbol": currency_symbol(payment.currency),
                },
            )
        except Exception as exc:
            report_side_effect_failure(
                operation="purchase_confirmation",
                exc=exc,
                gateway=payment.gateway,
                user_id=payment.user_id,
                extra={"transaction_id": str(payment.pk)},
            )

    def membership_upgraded(self, user_id: Any, plan_name: str) -> None:
        try:
            user = get_user_model().objects.get(pk=user_id)
            Notification.objects.create(
                user=user,
                kind=Notification.Kind.MEMBERSHIP,
                title=f"Welcome to {plan_name}",
                message=f"Your membership has been upgraded to {plan_name}.",
                link=BILLING_LINK,
            )
            self._send_email(
                user,
                subject=f"Your plan is now {plan_name}",
                template="emails/membership_upgraded.html",
                context={"plan_name": plan_name},
            )
        except Exception as exc:
            report_side_effect_failure(operation="membership_upgraded", exc=exc, user_id=user_id)

    def payment_failed(self, user_id: Any, *, amount=None, currency: str = "", reason: str = "") -> None:
        try:
            user = get_user_model().objects.get(pk=user_id)
            Notification.objects.create(
                user=user,
                kind=Notification.Kind.PAYMENT,
                title="Payment Failed",
                message="We could not collect your subscription payment. Please update your payment method.",
                link=BILLING_LINK,
            )
            self._send_email(
                user,
                subject="Action required: payment failed",
                template="emails/payment_failed.html",
                context={
                    "amount": amount,
                    "currency": (currency or "").upper(),
                    "symbol": currency_symbol(currency),
                    "reason": reason or "The payment was declined.",
                },
            )
        except Exception as exc:
            report_side_effect_failure(operation="payment_failed", exc=exc, user_id=user_id)

    def account_suspended(self, user_id: Any, *, reason: str) -> None:
        try:
            user = get_user_model().objects.get(pk=user_id)
            Notification.objects.create(
                user=user,
                kind=Notification.Kind.ACCOUNT,
                title="Account Suspended",
                message=reason,
                link=BILLING_LINK,
            )
            self._send_email(
                user,
                subject="Your account has been suspended",
                template="emails/account_suspended.html",
                context={"reason": reason},
            )
        except Exception as exc:
            report_side_effect_failure(operation="account_suspended", exc=exc, user_id=user_id)

    def _send_email(self, user, *, subject: str, template: str, context: Optional[Dict[str, Any]] = None) -> None:
        if not user.email:
            logger.info("User %s has no email; skipping %s", user.pk, template)
            return
        html_message = render_to_string(template, {"user": user, **(context or {})})
        send_mail(
            subject=subject,
            message=strip_tags(html_message),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[user.email],
            html_message=html_message,
            fail_silently=False,
        )
        logger.info("Sent %s to user %s", template, user.pk)


__all__ = ["NotificationDispatcher"]
