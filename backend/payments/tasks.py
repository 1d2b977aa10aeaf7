"""Celery tasks draining the webhook retry queue."""
from __future__ import annotations

import logging
from typing import Dict, Optional

from celery import shared_task
from django.conf import settings
from django.db import OperationalError

from payments.models import WebhookRetryItem
from payments.services.clients import get_client_factory
from payments.services.retry_queue import due_item_ids, mark_expired, release_stale_claims, replay_retry_item
from payments.services.webhooks import build_webhook_handlers

logger = logging.getLogger(__name__)


@shared_task(queue="payments")
def process_webhook_retry_queue(limit: Optional[int] = None) -> Dict[str, int]:
    """Dispatch one ``retry_webhook_item`` task per due queue item."""

    batch = limit or int(getattr(settings, "PAYMENT_RETRY_BATCH_SIZE", 100))
    release_stale_claims()
    item_ids = due_item_ids(limit=batch)
    for item_id in item_ids:
        retry_webhook_item.delay(str(item_id))
    if item_ids:
        logger.info("Dispatched %s webhook retry item(s)", len(item_ids))
    return {"dispatched": len(item_ids)}


@shared_task(bind=True, queue="payments", autoretry_for=(OperationalError,), retry_backoff=True, max_retries=3)
def retry_webhook_item(self, item_id: str) -> Dict[str, str]:
    """Replay a single queued webhook."""

    factory = get_client_factory()
    item = replay_retry_item(item_id, handlers=build_webhook_handlers(factory), factory=factory)
    if item is None:
        logger.info("Webhook retry item %s not eligible; skipping", item_id)
        return {"status": "skipped"}

    if item.status == WebhookRetryItem.Status.FAILED:
        logger.error(
            "Webhook %s (%s) exhausted %s attempts: %s",
            item.event_id,
            item.gateway,
            item.attempt_count,
            item.last_error,
        )
    return {"status": item.status, "attempts": str(item.attempt_count)}


@shared_task(queue="payments")
def expire_stale_webhooks() -> int:
    """Mark pending or abandoned items past their retry window as expired."""

    return mark_expired()
