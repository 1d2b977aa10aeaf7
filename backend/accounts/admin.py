from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import Notification, User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    User admin configuration
    """
    list_display = (
        'username', 'email', 'role', 'credits', 'plan_type',
        'is_active', 'created_at'
    )
    list_filter = (
        'is_active', 'is_staff', 'is_superuser', 'role', 'plan_type',
        'created_at'
    )
    search_fields = (
        'username', 'email', 'stripe_customer_id', 'razorpay_customer_id',
        'paypal_payer_id', 'paystack_customer_code', 'mercadopago_customer_id'
    )
    ordering = ('-created_at',)
    # Credits change only through the ledger service
    readonly_fields = ('credits', 'created_at', 'updated_at')

    fieldsets = BaseUserAdmin.fieldsets + (
        ('Billing', {
            'fields': ('role', 'credits', 'plan_type', 'plan_expires_at')
        }),
        ('Gateway customers', {
            'fields': (
                'stripe_customer_id', 'razorpay_customer_id', 'paypal_payer_id',
                'paystack_customer_code', 'mercadopago_customer_id'
            )
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Billing', {
            'fields': ('email', 'role')
        }),
    )


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("created_at", "user", "kind", "title", "is_read")
    list_filter = ("kind", "is_read")
    search_fields = ("title", "user__username", "user__email")
    ordering = ("-created_at",)
