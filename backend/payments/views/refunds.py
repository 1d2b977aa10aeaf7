"""Admin-initiated refund endpoint."""
from __future__ import annotations

from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from audit.services import PaymentAuditService
from payments.observability.metrics import PAYMENTS_REQUEST_LATENCY
from payments.permissions import IsPlatformAdmin
from payments.serializers import AdminRefundRequestSerializer, RefundSerializer
from payments.services.clients import GatewayNotConfigured, GatewayRequestError, get_client_factory
from payments.services.notifications import NotificationDispatcher
from payments.services.refunds import (
    RefundDisputeHandler,
    RefundNotAllowed,
    TransactionAlreadyRefunded,
    TransactionNotFound,
    initiate_refund,
)

from .base import PaymentsMetricsMixin


class AdminRefundView(PaymentsMetricsMixin, APIView):
    permission_classes = [IsAuthenticated, IsPlatformAdmin]
    endpoint_label = "payments.admin_refund"

    def get_refund_handler(self) -> RefundDisputeHandler:
        return RefundDisputeHandler(audit=PaymentAuditService(), notifier=NotificationDispatcher())

    def post(self, request):
        with PAYMENTS_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            serializer = AdminRefundRequestSerializer(data=request.data)
            if not serializer.is_valid():
                return self._error_response(
                    status=400,
                    code="invalid_request",
                    message="Invalid refund request.",
                    details=serializer.errors,
                    user_id=request.user.pk,
                )
            transaction_id = serializer.validated_data["transaction_id"]
            details = {"transaction_id": str(transaction_id)}

            try:
                outcome = initiate_refund(
                    transaction_id=transaction_id,
                    reason=serializer.validated_data["reason"],
                    admin=request.user,
                    handler=self.get_refund_handler(),
                    client_factory=get_client_factory(),
                )
            except TransactionNotFound as exc:
                return self._error_response(status=404, code="transaction_not_found", message=str(exc),
                                            details=details, user_id=request.user.pk)
            except TransactionAlreadyRefunded as exc:
                return self._error_response(status=400, code="already_refunded", message=str(exc),
                                            details=details, user_id=request.user.pk)
            except RefundNotAllowed as exc:
                return self._error_response(status=400, code="refund_not_allowed", message=str(exc),
                                            details=details, user_id=request.user.pk)
            except GatewayNotConfigured as exc:
                return self._error_response(status=400, code="gateway_not_configured", message=str(exc),
                                            details=details, user_id=request.user.pk)
            except GatewayRequestError as exc:
                return self._error_response(
                    status=502,
                    code="gateway_error",
                    message=str(exc),
                    details={**details, "gateway": exc.gateway},
                    gateway=exc.gateway,
                    user_id=request.user.pk,
                )

            refund = outcome.refund
            return self._success_response(
                {
                    "refund_id": str(refund.pk),
                    "refund": RefundSerializer(refund).data,
                    "credits_reversed": outcome.credits_reversed,
                    "credits_shortfall": outcome.shortfall,
                },
                gateway=refund.gateway,
                user_id=request.user.pk,
                message="admin refund completed",
            )
