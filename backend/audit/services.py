"""Append-only payment audit trail."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from .models import PaymentAuditLog

logger = logging.getLogger("audit")

Amount = Optional[Union[Decimal, int, float, str]]


class PaymentAuditService:
    """Writes one immutable ``PaymentAuditLog`` row per payment occurrence.

    The service is stateless; handlers receive an instance at construction so
    tests can substitute a recording double.
    """

    def log(
        self,
        kind: str,
        gateway: str,
        user_id: Any = None,
        details: Optional[Dict[str, Any]] = None,
        *,
        reference: str = "",
        amount: Amount = None,
        currency: str = "",
        success: bool = True,
    ) -> PaymentAuditLog:
        if kind not in PaymentAuditLog.Action.values:
            raise ValueError(f"Unknown audit action '{kind}'.")
        entry = PaymentAuditLog.objects.create(
            action=kind,
            gateway=gateway,
            user_id="" if user_id is None else str(user_id),
            reference=reference or "",
            amount=Decimal(str(amount)) if amount is not None else None,
            currency=(currency or "").upper(),
            success=success,
            details=details or {},
        )
        logger.debug("Audit %s gateway=%s user=%s ref=%s", kind, gateway, entry.user_id, reference)
        return entry

    def log_payment_initiated(self, *, gateway, user_id, reference="", amount=None, currency="", details=None):
        return self.log(
            PaymentAuditLog.Action.PAYMENT_INITIATED, gateway, user_id, details,
            reference=reference, amount=amount, currency=currency,
        )

    def log_payment_completed(self, *, gateway, user_id, reference, amount=None, currency="", details=None):
        return self.log(
            PaymentAuditLog.Action.PAYMENT_COMPLETED, gateway, user_id, details,
            reference=reference, amount=amount, currency=currency,
        )

    def log_payment_failed(self, *, gateway, user_id=None, reference="", amount=None, currency="", error="", details=None):
        payload = dict(details or {})
        if error:
            payload["error"] = error
        return self.log(
            PaymentAuditLog.Action.PAYMENT_FAILED, gateway, user_id, payload,
            reference=reference, amount=amount, currency=currency, success=False,
        )

    def log_subscription_created(self, *, gateway, user_id, reference, plan, amount=None, currency="", details=None):
        payload = {"plan": plan, **(details or {})}
        return self.log(
            PaymentAuditLog.Action.SUBSCRIPTION_CREATED, gateway, user_id, payload,
            reference=reference, amount=amount, currency=currency,
        )

    def log_subscription_renewed(self, *, gateway, user_id, reference, amount=None, currency="", details=None):
        return self.log(
            PaymentAuditLog.Action.SUBSCRIPTION_RENEWED, gateway, user_id, details,
            reference=reference, amount=amount, currency=currency,
        )

    def log_subscription_cancelled(self, *, gateway, user_id, reference, details=None):
        return self.log(PaymentAuditLog.Action.SUBSCRIPTION_CANCELLED, gateway, user_id, details, reference=reference)

    def log_credits_awarded(self, *, gateway, user_id, credits, reference="", amount=None, currency="", details=None):
        payload = {"credits": credits, **(details or {})}
        return self.log(
            PaymentAuditLog.Action.CREDITS_AWARDED, gateway, user_id, payload,
            reference=reference, amount=amount, currency=currency,
        )

    def log_refund_completed(self, *, gateway, user_id, reference, amount, currency="", reason="", details=None):
        payload = {"reason": reason, **(details or {})}
        return self.log(
            PaymentAuditLog.Action.REFUND_COMPLETED, gateway, user_id, payload,
            reference=reference, amount=amount, currency=currency,
        )

    def log_dispute_opened(self, *, gateway, user_id, reference, amount=None, currency="", reason="", details=None):
        payload = {"reason": reason, **(details or {})}
        return self.log(
            PaymentAuditLog.Action.DISPUTE_OPENED, gateway, user_id, payload,
            reference=reference, amount=amount, currency=currency,
        )

    def log_webhook_received(self, *, gateway, event_type, event_id="", user_id=None, success=True, details=None):
        payload = {"event_type": event_type, **(details or {})}
        return self.log(
            PaymentAuditLog.Action.WEBHOOK_RECEIVED, gateway, user_id, payload,
            reference=event_id or "", success=success,
        )


__all__ = ["PaymentAuditService"]
