"""Shared response helpers for payments API views."""
from __future__ import annotations

from rest_framework.response import Response

from payments.observability.logging import log_payment_event
from payments.observability.metrics import PAYMENTS_REQUEST_COUNT


class PaymentsMetricsMixin:
    endpoint_label: str = "payments"
    method: str = "POST"

    def _record_request(self, status: int) -> None:
        PAYMENTS_REQUEST_COUNT.labels(
            endpoint=self.endpoint_label,
            method=self.method,
            status=str(status),
        ).inc()

    def _success_response(self, payload, *, status: int = 200, gateway: str | None = None,
                          user_id=None, message: str = ""):
        self._record_request(status)
        if message:
            log_payment_event(message=message, gateway=gateway, user_id=user_id)
        return Response(payload, status=status)

    def _error_response(
        self,
        *,
        status: int,
        code: str,
        message: str,
        details: dict | None = None,
        gateway: str | None = None,
        user_id=None,
    ):
        self._record_request(status)
        log_payment_event(
            message=message,
            gateway=gateway,
            user_id=user_id,
            extra={"code": code, "details": details or {}},
        )
        payload = {"code": code, "message": message, "details": details or {}}
        return Response(payload, status=status)
