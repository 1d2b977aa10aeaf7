from django.contrib import admin

from .models import (
    CreditLedgerEntry,
    CreditPackage,
    GatewaySetting,
    Invoice,
    PaymentTransaction,
    Plan,
    Refund,
    Subscription,
    WebhookRetryItem,
)


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = ("name", "display_name", "included_credits", "monthly_price", "yearly_price", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "display_name")


@admin.register(CreditPackage)
class CreditPackageAdmin(admin.ModelAdmin):
    list_display = ("name", "credits", "price", "currency", "is_active")
    list_filter = ("is_active", "currency")


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ("user", "plan", "status", "billing_period", "current_period_end", "cancel_at_period_end")
    list_filter = ("status", "billing_period", "plan")
    search_fields = (
        "user__email",
        "stripe_subscription_id",
        "razorpay_subscription_id",
        "paypal_subscription_id",
        "paystack_subscription_code",
        "mercadopago_subscription_id",
    )
    raw_id_fields = ("user",)
    list_select_related = ("user", "plan")


class ImmutableAdmin(admin.ModelAdmin):
    """Ledger rows are written by the payment services only."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(ImmutableAdmin):
    list_display = ("id", "user", "type", "gateway", "gateway_transaction_id", "amount", "currency", "status",
                    "completed_at")
    list_filter = ("gateway", "type", "status")
    search_fields = ("gateway_transaction_id", "gateway_subscription_id", "user__email")
    ordering = ("-completed_at",)


@admin.register(Refund)
class RefundAdmin(ImmutableAdmin):
    list_display = ("id", "transaction", "user", "gateway", "reason", "initiated_by", "amount", "currency",
                    "credits_reversed", "user_suspended", "created_at")
    list_filter = ("gateway", "reason", "initiated_by", "user_suspended")
    search_fields = ("gateway_refund_id", "user__email")


@admin.register(CreditLedgerEntry)
class CreditLedgerEntryAdmin(ImmutableAdmin):
    list_display = ("user", "entry_type", "amount", "idempotency_key", "created_at")
    list_filter = ("entry_type",)
    search_fields = ("idempotency_key", "reference", "user__email")


@admin.register(Invoice)
class InvoiceAdmin(ImmutableAdmin):
    list_display = ("invoice_number", "transaction", "amount", "currency", "issued_at")
    search_fields = ("invoice_number",)


@admin.register(GatewaySetting)
class GatewaySettingAdmin(admin.ModelAdmin):
    list_display = ("key", "updated_at")
    search_fields = ("key",)


@admin.register(WebhookRetryItem)
class WebhookRetryItemAdmin(admin.ModelAdmin):
    list_display = ("gateway", "event_type", "event_id", "status", "attempt_count", "next_retry_at", "expires_at")
    list_filter = ("gateway", "status")
    search_fields = ("event_id", "event_type")
    readonly_fields = ("payload", "normalized_event", "error_history", "created_at", "updated_at")
