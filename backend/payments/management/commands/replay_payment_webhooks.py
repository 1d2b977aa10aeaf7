"""Management command to replay failed or expired payment webhooks."""
from __future__ import annotations

from typing import Iterable, Optional

from django.core.management.base import BaseCommand, CommandError
from django.db.models import Q

from payments.models import Gateway, WebhookRetryItem
from payments.services.clients import get_client_factory
from payments.services.retry_queue import replay_retry_item, stale_claim_cutoff
from payments.services.webhooks import build_webhook_handlers


class Command(BaseCommand):
    help = "Replay queued payment webhooks that failed, expired or were abandoned mid-replay through their gateway handlers."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--event-id",
            dest="event_ids",
            action="append",
            help="Replay only the specified gateway event id. Can be supplied multiple times.",
        )
        parser.add_argument(
            "--gateway",
            choices=Gateway.values,
            help="Replay only events received from this gateway.",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=None,
            help="Maximum number of events to replay in this run.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Preview events that would be replayed without performing any changes.",
        )

    def handle(self, *args, **options) -> None:
        event_ids: Optional[Iterable[str]] = options.get("event_ids")
        gateway: Optional[str] = options.get("gateway")
        limit: Optional[int] = options.get("limit")
        dry_run: bool = options.get("dry_run")

        statuses = [WebhookRetryItem.Status.FAILED, WebhookRetryItem.Status.EXPIRED]
        if event_ids:
            # Explicitly named events may still be waiting for their next scheduled attempt.
            statuses.append(WebhookRetryItem.Status.PENDING)
        abandoned = Q(status=WebhookRetryItem.Status.PROCESSING, last_attempt_at__lte=stale_claim_cutoff())
        queryset = WebhookRetryItem.objects.filter(Q(status__in=statuses) | abandoned).order_by("created_at")
        if event_ids:
            queryset = queryset.filter(event_id__in=list(event_ids))
        if gateway:
            queryset = queryset.filter(gateway=gateway)
        if limit is not None:
            queryset = queryset[:limit]

        items = list(queryset)
        total = len(items)
        if total == 0:
            self.stdout.write(self.style.WARNING("No queued webhooks matched the requested filters."))
            return

        factory = get_client_factory()
        handlers = build_webhook_handlers(factory)
        processed = 0
        failed = 0

        for item in items:
            self.stdout.write(f"Replaying {item.gateway} event {item.event_id} ({item.event_type})")
            if dry_run:
                continue

            replayed = replay_retry_item(item.pk, handlers=handlers, factory=factory, force=True)
            if replayed is not None and replayed.status == WebhookRetryItem.Status.COMPLETED:
                processed += 1
            else:
                failed += 1
                if replayed is not None:
                    self.stdout.write(self.style.ERROR(f"  failed: {replayed.last_error}"))

        if dry_run:
            self.stdout.write(self.style.WARNING(f"Dry run complete. {total} events would be replayed."))
            return

        summary = f"Replay complete: {processed} succeeded, {failed} failed, {total} total."
        if failed:
            raise CommandError(summary)
        self.stdout.write(self.style.SUCCESS(summary))
