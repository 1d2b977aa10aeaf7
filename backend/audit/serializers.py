from rest_framework import serializers

from .models import PaymentAuditLog


class PaymentAuditLogSerializer(serializers.ModelSerializer):
    action_label = serializers.CharField(source="get_action_display", read_only=True)

    class Meta:
        model = PaymentAuditLog
        fields = (
            "id",
            "created_at",
            "action",
            "action_label",
            "gateway",
            "user_id",
            "reference",
            "amount",
            "currency",
            "success",
            "details",
        )
        read_only_fields = fields
