from __future__ import annotations

from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class PaymentAuditLog(models.Model):
    """Append-only trail of payment activity across every gateway."""

    class Action(models.TextChoices):
        PAYMENT_INITIATED = "payment_initiated", "Payment Initiated"
        PAYMENT_COMPLETED = "payment_completed", "Payment Completed"
        PAYMENT_FAILED = "payment_failed", "Payment Failed"
        SUBSCRIPTION_CREATED = "subscription_created", "Subscription Created"
        SUBSCRIPTION_RENEWED = "subscription_renewed", "Subscription Renewed"
        SUBSCRIPTION_CANCELLED = "subscription_cancelled", "Subscription Cancelled"
        CREDITS_AWARDED = "credits_awarded", "Credits Awarded"
        REFUND_COMPLETED = "refund_completed", "Refund Completed"
        DISPUTE_OPENED = "dispute_opened", "Dispute Opened"
        WEBHOOK_RECEIVED = "webhook_received", "Webhook Received"

    id = models.BigAutoField(primary_key=True)
    created_at = models.DateTimeField(auto_now_add=True)
    action = models.CharField(max_length=32, choices=Action.choices)
    gateway = models.CharField(max_length=32)
    # Plain reference so the trail survives independently of the user table
    user_id = models.CharField(max_length=64, blank=True, default="")
    reference = models.CharField(max_length=255, blank=True, default="")
    amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    currency = models.CharField(max_length=3, blank=True, default="")
    success = models.BooleanField(default=True)
    details = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        db_table = "audit_payment_log"
        ordering = ("-created_at", "-id")
        indexes = [
            models.Index(fields=("gateway", "-created_at"), name="audit_pay_gateway_ts"),
            models.Index(fields=("action", "-created_at"), name="audit_pay_action_ts"),
            models.Index(fields=("user_id", "-created_at"), name="audit_pay_user_ts"),
        ]

    def __str__(self) -> str:  # pragma: no cover - human readable only
        return f"PaymentAuditLog<{self.gateway}:{self.action} {self.reference}>"

    def save(self, *args, **kwargs):
        if self.pk and PaymentAuditLog.objects.filter(pk=self.pk).exists():
            raise ValidationError("Payment audit entries are immutable.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):  # pragma: no cover - immutability guard
        raise ValidationError("Payment audit entries cannot be deleted.")
