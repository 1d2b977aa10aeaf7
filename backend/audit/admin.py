from django.contrib import admin

from .models import PaymentAuditLog


@admin.register(PaymentAuditLog)
class PaymentAuditLogAdmin(admin.ModelAdmin):
    list_display = (
        "created_at",
        "gateway",
        "action",
        "user_id",
        "reference",
        "amount",
        "currency",
        "success",
    )
    list_filter = ("gateway", "action", "success")
    search_fields = ("reference", "user_id")
    ordering = ("-created_at",)
    readonly_fields = (
        "created_at",
        "action",
        "gateway",
        "user_id",
        "reference",
        "amount",
        "currency",
        "success",
        "details",
    )

    fieldsets = (
        (None, {"fields": ("created_at", "gateway", "action", "success")}),
        ("Subject", {"fields": ("user_id", "reference", "amount", "currency")}),
        ("Details", {"fields": ("details",)}),
    )

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
