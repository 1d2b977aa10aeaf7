import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import Q
from django.utils import timezone


class Gateway(models.TextChoices):
    STRIPE = "stripe", "Stripe"
    RAZORPAY = "razorpay", "Razorpay"
    PAYPAL = "paypal", "PayPal"
    PAYSTACK = "paystack", "Paystack"
    MERCADOPAGO = "mercadopago", "Mercado Pago"


class BillingPeriod(models.TextChoices):
    MONTHLY = "monthly", "Monthly"
    YEARLY = "yearly", "Yearly"


class Plan(models.Model):
    """Subscription plan catalogue entry."""

    name = models.SlugField(max_length=32, unique=True, help_text="Plan key stored on User.plan_type")
    display_name = models.CharField(max_length=64)
    included_credits = models.PositiveIntegerField(default=0, help_text="Credits granted on each activation")
    monthly_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    yearly_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "payments_plan"
        verbose_name = "Plan"
        verbose_name_plural = "Plans"
        ordering = ["monthly_price"]

    def __str__(self):
        return f"{self.display_name} ({self.name})"


class CreditPackage(models.Model):
    """One-off credit bundle that can be purchased through any gateway."""

    name = models.CharField(max_length=64)
    credits = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "payments_credit_package"
        ordering = ["credits"]

    def __str__(self):
        return f"CreditPackage<{self.name}:{self.credits}>"


class Subscription(models.Model):
    """A user's plan subscription, owned by exactly one gateway at a time."""

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        PAST_DUE = "past_due", "Past Due"
        CANCELLED = "cancelled", "Cancelled"

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="subscriptions")
    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name="subscriptions")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    stripe_subscription_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    razorpay_subscription_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    paypal_subscription_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    paystack_subscription_code = models.CharField(max_length=255, unique=True, null=True, blank=True)
    mercadopago_subscription_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    billing_period = models.CharField(max_length=16, choices=BillingPeriod.choices, default=BillingPeriod.MONTHLY)
    current_period_start = models.DateTimeField()
    current_period_end = models.DateTimeField()
    cancel_at_period_end = models.BooleanField(default=False)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "payments_subscription"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user"],
                condition=~Q(status="cancelled"),
                name="payments_one_live_subscription_per_user",
            ),
        ]
        indexes = [models.Index(fields=["status", "current_period_end"], name="payments_sub_status_end")]

    def __str__(self):
        return f"Subscription<{self.user_id}:{self.plan_id}:{self.status}>"

    @property
    def gateway(self):
        from .services.subscriptions import REF_FIELDS

        for gateway, field in REF_FIELDS.items():
            if getattr(self, field):
                return gateway
        return None


class PaymentTransaction(models.Model):
    """Completed payment recorded exactly once per gateway transaction id."""

    class Type(models.TextChoices):
        CREDITS = "credits", "Credits"
        SUBSCRIPTION = "subscription", "Subscription"

    class Status(models.TextChoices):
        COMPLETED = "completed", "Completed"
        REFUNDED = "refunded", "Refunded"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="payment_transactions")
    type = models.CharField(max_length=16, choices=Type.choices)
    gateway = models.CharField(max_length=32, choices=Gateway.choices)
    gateway_transaction_id = models.CharField(max_length=255)
    gateway_subscription_id = models.CharField(max_length=255, null=True, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2, help_text="Major currency units")
    currency = models.CharField(max_length=3)
    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, null=True, blank=True, related_name="transactions")
    credit_package = models.ForeignKey(
        CreditPackage, on_delete=models.PROTECT, null=True, blank=True, related_name="transactions"
    )
    subscription = models.ForeignKey(
        Subscription, on_delete=models.PROTECT, null=True, blank=True, related_name="transactions"
    )
    description = models.CharField(max_length=255, blank=True)
    billing_period = models.CharField(max_length=16, choices=BillingPeriod.choices, null=True, blank=True)
    credits_awarded = models.PositiveIntegerField(null=True, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.COMPLETED)
    completed_at = models.DateTimeField(default=timezone.now)
    refunded_at = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        db_table = "payments_transaction"
        ordering = ["-completed_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["gateway", "gateway_transaction_id"],
                name="payments_unique_gateway_transaction",
            ),
        ]
        indexes = [
            models.Index(fields=["user", "-completed_at"], name="payments_tx_user_completed"),
            models.Index(fields=["gateway_subscription_id"], name="payments_tx_gateway_sub"),
        ]

    def __str__(self):
        return f"PaymentTransaction<{self.gateway}:{self.gateway_transaction_id} {self.amount} {self.currency}>"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Payment transactions are immutable; use mark_transaction_refunded().")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):  # pragma: no cover - immutability guard
        raise ValidationError("Payment transactions cannot be deleted.")


class Refund(models.Model):
    """Reversal of a single payment transaction."""

    class Reason(models.TextChoices):
        ADMIN_INITIATED = "admin_initiated", "Admin Initiated"
        GATEWAY_REFUND = "gateway_refund", "Gateway Refund"
        CHARGEBACK = "chargeback", "Chargeback"

    class Initiator(models.TextChoices):
        ADMIN = "admin", "Admin"
        SYSTEM = "system", "System"
        GATEWAY = "gateway", "Gateway"

    class Status(models.TextChoices):
        COMPLETED = "completed", "Completed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    transaction = models.OneToOneField(PaymentTransaction, on_delete=models.PROTECT, related_name="refund")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="refunds")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3)
    gateway = models.CharField(max_length=32, choices=Gateway.choices)
    gateway_refund_id = models.CharField(max_length=255, blank=True)
    reason = models.CharField(max_length=32, choices=Reason.choices)
    initiated_by = models.CharField(max_length=16, choices=Initiator.choices)
    admin = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="initiated_refunds",
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.COMPLETED)
    credits_reversed = models.PositiveIntegerField(null=True, blank=True)
    user_suspended = models.BooleanField(default=False)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "payments_refund"
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["gateway", "gateway_refund_id"], name="payments_refund_gateway_ref")]

    def __str__(self):
        return f"Refund<{self.gateway}:{self.transaction_id} {self.reason}>"


class CreditLedgerEntry(models.Model):
    """Immutable history of every credit balance mutation."""

    class EntryType(models.TextChoices):
        PURCHASE = "purchase", "Purchase"
        PLAN_GRANT = "plan_grant", "Plan Grant"
        REFUND_REVERSAL = "refund_reversal", "Refund Reversal"
        CHARGEBACK_REVERSAL = "chargeback_reversal", "Chargeback Reversal"
        ADJUSTMENT = "adjustment", "Adjustment"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="credit_entries")
    amount = models.IntegerField(help_text="Signed credit delta actually applied to the balance")
    entry_type = models.CharField(max_length=32, choices=EntryType.choices)
    description = models.CharField(max_length=255, blank=True)
    idempotency_key = models.CharField(max_length=128, unique=True, null=True, blank=True)
    reference = models.CharField(max_length=255, blank=True)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "payments_credit_ledger_entry"
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["user", "-created_at"], name="payments_ledger_user_ts")]

    def __str__(self):
        return f"CreditLedgerEntry<{self.user_id}:{self.amount:+d} {self.entry_type}>"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Credit ledger entries are immutable.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):  # pragma: no cover - immutability guard
        raise ValidationError("Credit ledger entries cannot be deleted.")


class GatewaySetting(models.Model):
    """Runtime gateway configuration overriding environment defaults."""

    key = models.CharField(max_length=128, unique=True, help_text="e.g. stripe_secret_key, paypal_currency_locked")
    value = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "payments_gateway_setting"
        ordering = ["key"]

    def __str__(self):
        return f"GatewaySetting<{self.key}>"


class WebhookRetryItem(models.Model):
    """Webhook whose handling failed and is waiting for a scheduled replay."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        EXPIRED = "expired", "Expired"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    gateway = models.CharField(max_length=32, choices=Gateway.choices)
    event_type = models.CharField(max_length=128)
    event_id = models.CharField(max_length=255)
    payload = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    normalized_event = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    attempt_count = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=5)
    last_attempt_at = models.DateTimeField(null=True, blank=True)
    next_retry_at = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(blank=True)
    error_history = models.JSONField(default=list, blank=True)
    expires_at = models.DateTimeField()
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "payments_webhook_retry_item"
        ordering = ["next_retry_at"]
        constraints = [
            models.UniqueConstraint(fields=["gateway", "event_id"], name="payments_unique_retry_event"),
        ]
        indexes = [models.Index(fields=["status", "next_retry_at"], name="payments_retry_due")]

    def __str__(self):
        return f"WebhookRetryItem<{self.gateway}:{self.event_id} {self.status}>"


class Invoice(models.Model):
    """Sequentially numbered invoice issued for a payment transaction."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    transaction = models.OneToOneField(PaymentTransaction, on_delete=models.PROTECT, related_name="invoice")
    invoice_number = models.CharField(max_length=32, unique=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3)
    issued_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "payments_invoice"
        ordering = ["-issued_at"]

    def __str__(self):
        return f"Invoice<{self.invoice_number}>"
