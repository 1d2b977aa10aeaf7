"""Request serializers for the payments API."""
from __future__ import annotations

from rest_framework import serializers

from payments.models import Refund


class AdminRefundRequestSerializer(serializers.Serializer):
    transaction_id = serializers.UUIDField()
    reason = serializers.CharField(max_length=500, trim_whitespace=True)

    def validate_reason(self, value: str) -> str:
        if not value:
            raise serializers.ValidationError("A refund reason is required.")
        return value


class CurrencyUpdateSerializer(serializers.Serializer):
    currency = serializers.CharField(max_length=3, min_length=3)

    def validate_currency(self, value: str) -> str:
        return value.upper()


class RefundSerializer(serializers.ModelSerializer):
    transaction_id = serializers.UUIDField(source="transaction.id", read_only=True)

    class Meta:
        model = Refund
        fields = (
            "id",
            "transaction_id",
            "user_id",
            "amount",
            "currency",
            "gateway",
            "gateway_refund_id",
            "reason",
            "initiated_by",
            "status",
            "credits_reversed",
            "user_suspended",
            "created_at",
        )
        read_only_fields = fields
