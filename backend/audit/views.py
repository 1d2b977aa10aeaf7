from __future__ import annotations

from django_filters import rest_framework as filters
from rest_framework.viewsets import ReadOnlyModelViewSet

from payments.permissions import IsPlatformAdmin

from .models import PaymentAuditLog
from .serializers import PaymentAuditLogSerializer


class PaymentAuditLogFilter(filters.FilterSet):
    start = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    end = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")
    gateway = filters.CharFilter(field_name="gateway", lookup_expr="iexact")
    reference = filters.CharFilter(field_name="reference", lookup_expr="icontains")

    class Meta:
        model = PaymentAuditLog
        fields = ["gateway", "action", "user_id", "success", "reference"]


class PaymentAuditLogViewSet(ReadOnlyModelViewSet):
    """Expose the payment audit trail to platform administrators."""

    serializer_class = PaymentAuditLogSerializer
    permission_classes = [IsPlatformAdmin]
    queryset = PaymentAuditLog.objects.order_by("-created_at", "-id")
    filterset_class = PaymentAuditLogFilter
    filter_backends = [filters.DjangoFilterBackend]
