"""Gateway configuration and currency management endpoints."""
from __future__ import annotations

from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from payments.models import Gateway
from payments.observability.metrics import PAYMENTS_REQUEST_LATENCY
from payments.permissions import IsPlatformAdmin
from payments.serializers import CurrencyUpdateSerializer
from payments.services import settings_store
from payments.services.clients import get_client_factory

from .base import PaymentsMetricsMixin


class GatewayViewMixin(PaymentsMetricsMixin):
    def _unknown_gateway(self, gateway: str):
        return self._error_response(
            status=404,
            code="unknown_gateway",
            message=f"Unknown payment gateway '{gateway}'.",
        )


class GatewayConfigView(GatewayViewMixin, APIView):
    """Public checkout configuration for one gateway; never exposes secrets."""

    permission_classes = [IsAuthenticated]
    endpoint_label = "payments.config"
    method = "GET"

    def get(self, request, gateway: str):
        with PAYMENTS_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            if gateway not in Gateway.values:
                return self._unknown_gateway(gateway)
            return self._success_response(get_client_factory().get_config(gateway))


class GatewayCurrencyView(GatewayViewMixin, APIView):
    permission_classes = [IsAuthenticated, IsPlatformAdmin]
    endpoint_label = "payments.currency"

    def post(self, request, gateway: str):
        with PAYMENTS_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            if gateway not in Gateway.values:
                return self._unknown_gateway(gateway)
            serializer = CurrencyUpdateSerializer(data=request.data)
            if not serializer.is_valid():
                return self._error_response(
                    status=400,
                    code="invalid_request",
                    message="Invalid currency request.",
                    details=serializer.errors,
                    gateway=gateway,
                )
            try:
                config = settings_store.set_currency(gateway, serializer.validated_data["currency"])
            except settings_store.CurrencyLocked as exc:
                return self._error_response(status=400, code="currency_locked", message=str(exc), gateway=gateway)
            except settings_store.UnsupportedCurrency as exc:
                return self._error_response(
                    status=400,
                    code="unsupported_currency",
                    message=str(exc),
                    details={"supported_currencies": settings_store.SUPPORTED_CURRENCIES[gateway]},
                    gateway=gateway,
                )
            return self._success_response(
                {"currency": config.currency, "symbol": config.symbol, "locked": config.locked},
                gateway=gateway,
                user_id=request.user.pk,
                message="gateway currency changed",
            )


class GatewayCurrencyLockView(GatewayViewMixin, APIView):
    permission_classes = [IsAuthenticated, IsPlatformAdmin]
    endpoint_label = "payments.currency_lock"

    def post(self, request, gateway: str):
        with PAYMENTS_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            if gateway not in Gateway.values:
                return self._unknown_gateway(gateway)
            try:
                config = settings_store.lock_currency(gateway)
            except settings_store.CurrencyLocked as exc:
                return self._error_response(status=400, code="currency_locked", message=str(exc), gateway=gateway)
            return self._success_response(
                {"currency": config.currency, "symbol": config.symbol, "locked": config.locked},
                gateway=gateway,
                user_id=request.user.pk,
                message="gateway currency locked by admin",
            )
