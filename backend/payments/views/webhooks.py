"""Webhook endpoint shared by every payment gateway."""
from __future__ import annotations

import logging

from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework.views import APIView

from payments.observability.metrics import PAYMENTS_REQUEST_LATENCY
from payments.services.clients import get_client_factory
from payments.services.webhooks import WebhookError, process_webhook

logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name="dispatch")
class GatewayWebhookView(APIView):
    """Verify, normalize and apply one gateway delivery synchronously.

    Acknowledged deliveries (including unhandled event types and handler
    results that were recorded as failed) answer 200 so the gateway stops
    redelivering; unexpected errors answer 500 after the delivery has been
    queued for retry.
    """

    authentication_classes = []
    permission_classes = []
    http_method_names = ["post"]

    def post(self, request, gateway: str, *args, **kwargs):  # noqa: D401 - DRF signature
        with PAYMENTS_REQUEST_LATENCY.labels(endpoint=f"webhook.{gateway}", method="POST").time():
            try:
                result = process_webhook(gateway, request.body, request.headers, factory=get_client_factory())
            except WebhookError as exc:
                logger.warning("Rejected %s webhook: %s", gateway, exc)
                return JsonResponse({"error": str(exc)}, status=exc.status_code)
            except Exception:
                logger.exception("Unexpected error handling %s webhook", gateway)
                return JsonResponse({"error": "Webhook processing failed"}, status=500)

        logger.info("%s webhook handled: %s (%s)", gateway, result.action, result.status)
        return JsonResponse({"received": True})
