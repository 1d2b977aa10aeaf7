"""Webhook intake: verify, normalize, handle, audit.

Every gateway goes through the same :class:`WebhookProcessor`; only the
adapter functions differ.
"""
from __future__ import annotations

import json
import logging
from decimal import InvalidOperation
from typing import Any, Dict, Mapping, Optional

from audit.services import PaymentAuditService
from payments.gateways import UnknownGateway, get_adapter
from payments.observability.logging import log_payment_event, report_side_effect_failure
from payments.observability.metrics import WEBHOOK_EVENT_COUNT

from . import settings_store
from .clients import GatewayClientFactory, get_client_factory
from .handlers import HandlerResult, WebhookHandlers
from .notifications import NotificationDispatcher
from .retry_queue import enqueue_failed_webhook

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    """Base class for deliveries rejected with a client error."""

    status_code = 400


class GatewayConfigurationError(WebhookError):
    """Unknown gateway or missing webhook credentials."""


class WebhookSignatureError(WebhookError):
    """The delivery could not be authenticated."""


class MalformedWebhookError(WebhookError):
    """The body is not a gateway event envelope."""


def build_webhook_handlers(factory: Optional[GatewayClientFactory] = None) -> WebhookHandlers:
    """Wire the handlers with their production collaborators."""
    return WebhookHandlers(
        audit=PaymentAuditService(),
        notifier=NotificationDispatcher(),
        client_factory=factory or get_client_factory(),
    )


class WebhookProcessor:
    def __init__(self, *, handlers: WebhookHandlers, factory: GatewayClientFactory):
        self.handlers = handlers
        self.factory = factory

    @property
    def audit(self):
        return self.handlers.audit

    def process(self, gateway: str, raw_body: bytes, headers: Mapping[str, str]) -> HandlerResult:
        try:
            adapter = get_adapter(gateway)
        except UnknownGateway as exc:
            raise GatewayConfigurationError(str(exc)) from exc

        if not self.factory.get_webhook_secret(gateway):
            WEBHOOK_EVENT_COUNT.labels(gateway=gateway, outcome="not_configured").inc()
            raise GatewayConfigurationError(f"Webhook verification is not configured for {gateway}.")

        if not adapter.verify(raw_body, headers, self.factory):
            WEBHOOK_EVENT_COUNT.labels(gateway=gateway, outcome="invalid_signature").inc()
            raise WebhookSignatureError("Invalid webhook signature")

        payload = self._decode(raw_body)
        event_id, event_type = adapter.parse_envelope(payload)
        if not event_type or not event_id:
            WEBHOOK_EVENT_COUNT.labels(gateway=gateway, outcome="malformed").inc()
            raise MalformedWebhookError("Invalid webhook payload")

        settings_store.record_webhook_received(gateway)
        log_payment_event(message="webhook received", gateway=gateway, event_id=event_id,
                          extra={"event_type": event_type})

        try:
            event = adapter.normalize(event_type, payload, event_id)
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            WEBHOOK_EVENT_COUNT.labels(gateway=gateway, outcome="malformed").inc()
            raise MalformedWebhookError(f"Unreadable {event_type} payload: {exc}") from exc

        try:
            result = adapter.handle(event, self.handlers, self.factory)
        except Exception as exc:
            logger.exception("Handling %s webhook %s (%s) failed", gateway, event_id, event_type)
            WEBHOOK_EVENT_COUNT.labels(gateway=gateway, outcome="error").inc()
            self._enqueue(gateway, event_type, event_id, payload, event, exc)
            raise

        self.audit.log_webhook_received(
            gateway=gateway,
            event_type=event_type,
            event_id=event_id,
            user_id=result.user_id,
            success=result.success,
            details=result.as_dict(),
        )
        WEBHOOK_EVENT_COUNT.labels(gateway=gateway, outcome=result.status).inc()
        log_payment_event(
            message="webhook handled",
            gateway=gateway,
            event_id=event_id,
            user_id=result.user_id,
            extra={"event_type": event_type, "status": result.status, "action": result.action},
        )
        return result

    def _decode(self, raw_body) -> Dict[str, Any]:
        try:
            payload = json.loads(raw_body)
        except (TypeError, ValueError) as exc:
            raise MalformedWebhookError("Invalid webhook payload") from exc
        if not isinstance(payload, dict):
            raise MalformedWebhookError("Invalid webhook payload")
        return payload

    def _enqueue(self, gateway, event_type, event_id, payload, event, exc: Exception) -> None:
        try:
            enqueue_failed_webhook(
                gateway=gateway,
                event_type=event_type,
                event_id=event_id,
                payload=payload,
                event=event,
                error=str(exc) or type(exc).__name__,
            )
        except Exception as enqueue_exc:
            report_side_effect_failure(
                operation="webhook_enqueue",
                exc=enqueue_exc,
                gateway=gateway,
                extra={"event_id": event_id},
            )


def process_webhook(gateway: str, raw_body: bytes, headers: Mapping[str, str], *,
                    factory: Optional[GatewayClientFactory] = None,
                    handlers: Optional[WebhookHandlers] = None) -> HandlerResult:
    factory = factory or get_client_factory()
    processor = WebhookProcessor(handlers=handlers or build_webhook_handlers(factory), factory=factory)
    return processor.process(gateway, raw_body, headers)


__all__ = [
    "GatewayConfigurationError",
    "MalformedWebhookError",
    "WebhookError",
    "WebhookProcessor",
    "WebhookSignatureError",
    "build_webhook_handlers",
    "process_webhook",
]
