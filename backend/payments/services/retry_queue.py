"""Durable retry queue for webhooks whose handling raised unexpectedly."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from payments.events import CanonicalEvent, event_from_payload, event_to_payload
from payments.gateways import get_adapter
from payments.models import WebhookRetryItem
from payments.observability.logging import log_payment_event
from payments.observability.metrics import WEBHOOK_RETRY_COUNT

logger = logging.getLogger(__name__)

DEFAULT_INTERVALS_MINUTES = (1, 5, 15, 30, 60)
REPLAYABLE_STATUSES = (
    WebhookRetryItem.Status.PENDING,
    WebhookRetryItem.Status.FAILED,
    WebhookRetryItem.Status.EXPIRED,
)


def _intervals() -> List[int]:
    return list(getattr(settings, "PAYMENT_WEBHOOK_RETRY_INTERVALS_MINUTES", DEFAULT_INTERVALS_MINUTES))


def _max_attempts() -> int:
    return int(getattr(settings, "PAYMENT_WEBHOOK_MAX_ATTEMPTS", 5))


def _expiry() -> timedelta:
    return timedelta(hours=int(getattr(settings, "PAYMENT_WEBHOOK_EXPIRY_HOURS", 24)))


def _processing_lease() -> timedelta:
    return timedelta(seconds=int(getattr(settings, "PAYMENT_WEBHOOK_PROCESSING_LEASE_SECONDS", 600)))


def stale_claim_cutoff(now: Optional[datetime] = None) -> datetime:
    """Claims made before this instant belong to a worker that is gone."""
    return (now or timezone.now()) - _processing_lease()


def _is_stale_claim(item: WebhookRetryItem, now: datetime) -> bool:
    return item.last_attempt_at is None or item.last_attempt_at <= stale_claim_cutoff(now)


def next_retry_at(attempt_count: int, *, now: Optional[datetime] = None) -> datetime:
    """Backoff schedule; attempts past the last interval reuse it."""
    intervals = _intervals()
    index = min(max(attempt_count, 0), len(intervals) - 1)
    return (now or timezone.now()) + timedelta(minutes=intervals[index])


def _history_entry(attempt: int, error: str, when: datetime) -> Dict[str, Any]:
    return {"attempt": attempt, "error": error, "timestamp": when.isoformat()}


def enqueue_failed_webhook(
    *,
    gateway: str,
    event_type: str,
    event_id: str,
    payload: Dict[str, Any],
    event: Optional[CanonicalEvent],
    error: str,
) -> WebhookRetryItem:
    """Store a failed delivery for scheduled replay.

    A redelivery of an event that is already queued only appends to its
    error history.
    """

    now = timezone.now()
    with transaction.atomic():
        item = (
            WebhookRetryItem.objects.select_for_update()
            .filter(gateway=gateway, event_id=event_id)
            .first()
        )
        if item is None:
            try:
                with transaction.atomic():
                    item = WebhookRetryItem.objects.create(
                        gateway=gateway,
                        event_type=event_type,
                        event_id=event_id,
                        payload=payload,
                        normalized_event=event_to_payload(event) if event is not None else {},
                        max_attempts=_max_attempts(),
                        next_retry_at=next_retry_at(0, now=now),
                        expires_at=now + _expiry(),
                        last_error=error,
                        error_history=[_history_entry(0, error, now)],
                    )
            except IntegrityError:
                item = WebhookRetryItem.objects.select_for_update().get(gateway=gateway, event_id=event_id)
            else:
                WEBHOOK_RETRY_COUNT.labels(gateway=gateway, status="enqueued").inc()
                log_payment_event(
                    message="webhook queued for retry",
                    gateway=gateway,
                    event_id=event_id,
                    extra={"event_type": event_type, "error": error},
                    level=logging.WARNING,
                )
                return item

        item.last_error = error
        item.error_history = [*item.error_history, _history_entry(item.attempt_count, error, now)]
        item.save(update_fields=["last_error", "error_history", "updated_at"])
    return item


def due_item_ids(*, limit: int, now: Optional[datetime] = None) -> List[Any]:
    now = now or timezone.now()
    return list(
        WebhookRetryItem.objects.filter(
            status=WebhookRetryItem.Status.PENDING,
            next_retry_at__lte=now,
            expires_at__gt=now,
        )
        .order_by("next_retry_at")
        .values_list("pk", flat=True)[:limit]
    )


def _claim(item_id: Any, *, force: bool, now: datetime) -> Optional[WebhookRetryItem]:
    with transaction.atomic():
        item = WebhookRetryItem.objects.select_for_update().filter(pk=item_id).first()
        if item is None:
            return None
        if force:
            stale = item.status == WebhookRetryItem.Status.PROCESSING and _is_stale_claim(item, now)
            if item.status not in REPLAYABLE_STATUSES and not stale:
                return None
        elif item.status != WebhookRetryItem.Status.PENDING or (
            item.next_retry_at is not None and item.next_retry_at > now
        ):
            return None

        item.status = WebhookRetryItem.Status.PROCESSING
        item.attempt_count += 1
        item.last_attempt_at = now
        if force and item.attempt_count > item.max_attempts:
            item.max_attempts = item.attempt_count
        item.save(update_fields=["status", "attempt_count", "last_attempt_at", "max_attempts", "updated_at"])
        return item


def _restore_event(item: WebhookRetryItem) -> CanonicalEvent:
    if item.normalized_event:
        return event_from_payload(item.normalized_event)
    return get_adapter(item.gateway).normalize(item.event_type, item.payload, item.event_id)


def replay_retry_item(item_id: Any, *, handlers, factory, force: bool = False) -> Optional[WebhookRetryItem]:
    """Replay one queued webhook through its gateway's ``handle``.

    Returns ``None`` when the item is missing or not eligible (already
    claimed, not yet due, or finished). ``force`` replays failed and expired
    items as well as claims abandoned past the processing lease, for manual
    recovery.
    """

    now = timezone.now()
    item = _claim(item_id, force=force, now=now)
    if item is None:
        return None

    adapter = get_adapter(item.gateway)
    try:
        event = _restore_event(item)
        result = adapter.handle(event, handlers, factory)
    except Exception as exc:
        logger.exception("Replay of %s webhook %s failed (attempt %s)", item.gateway, item.event_id, item.attempt_count)
        item.last_error = str(exc)
        item.error_history = [*item.error_history, _history_entry(item.attempt_count, str(exc), timezone.now())]
        if item.attempt_count >= item.max_attempts:
            item.status = WebhookRetryItem.Status.FAILED
            item.next_retry_at = None
        else:
            item.status = WebhookRetryItem.Status.PENDING
            item.next_retry_at = next_retry_at(item.attempt_count)
        item.save(update_fields=["status", "next_retry_at", "last_error", "error_history", "updated_at"])
        WEBHOOK_RETRY_COUNT.labels(gateway=item.gateway, status=item.status).inc()
        return item

    item.status = WebhookRetryItem.Status.COMPLETED
    item.processed_at = timezone.now()
    item.next_retry_at = None
    item.save(update_fields=["status", "processed_at", "next_retry_at", "updated_at"])
    WEBHOOK_RETRY_COUNT.labels(gateway=item.gateway, status=item.status).inc()

    handlers.audit.log_webhook_received(
        gateway=item.gateway,
        event_type=item.event_type,
        event_id=item.event_id,
        user_id=result.user_id,
        success=result.success,
        details={"replayed": True, "attempt": item.attempt_count, **result.as_dict()},
    )
    log_payment_event(
        message="webhook replayed",
        gateway=item.gateway,
        event_id=item.event_id,
        user_id=result.user_id,
        extra={"action": result.action, "attempt": item.attempt_count},
    )
    return item


def release_stale_claims(*, now: Optional[datetime] = None) -> int:
    """Return items stuck in ``processing`` past the lease to the queue.

    A claim only outlives its lease when the worker died mid-replay. Items
    with attempts left become due immediately; exhausted ones are failed.
    """

    now = now or timezone.now()
    stale = WebhookRetryItem.objects.filter(
        status=WebhookRetryItem.Status.PROCESSING,
        last_attempt_at__lte=stale_claim_cutoff(now),
    )
    error = "Replay abandoned by a lost worker"
    exhausted = stale.filter(attempt_count__gte=F("max_attempts")).update(
        status=WebhookRetryItem.Status.FAILED, next_retry_at=None, last_error=error, updated_at=now
    )
    released = stale.update(
        status=WebhookRetryItem.Status.PENDING, next_retry_at=now, last_error=error, updated_at=now
    )
    if exhausted or released:
        WEBHOOK_RETRY_COUNT.labels(gateway="all", status="released").inc(exhausted + released)
        logger.warning("Released %s stale webhook claim(s); %s exhausted", released, exhausted)
    return exhausted + released


def mark_expired(*, now: Optional[datetime] = None) -> int:
    """Expire pending and abandoned items whose retry window has closed."""
    now = now or timezone.now()
    release_stale_claims(now=now)
    # A replay still in flight overwrites this status when it finishes.
    expired = (
        WebhookRetryItem.objects.filter(
            status__in=(WebhookRetryItem.Status.PENDING, WebhookRetryItem.Status.PROCESSING),
            expires_at__lte=now,
        )
        .update(status=WebhookRetryItem.Status.EXPIRED, next_retry_at=None, updated_at=now)
    )
    if expired:
        WEBHOOK_RETRY_COUNT.labels(gateway="all", status=WebhookRetryItem.Status.EXPIRED).inc(expired)
        logger.warning("Expired %s stale webhook retry item(s)", expired)
    return expired


__all__ = [
    "due_item_ids",
    "enqueue_failed_webhook",
    "mark_expired",
    "next_retry_at",
    "release_stale_claims",
    "replay_retry_item",
    "stale_claim_cutoff",
]
