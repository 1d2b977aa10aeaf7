"""Subscription state machine shared by every gateway."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from payments.models import Gateway, Plan, Subscription

logger = logging.getLogger(__name__)

FREE_PLAN = "free"
FALLBACK_PERIOD = timedelta(days=30)

REF_FIELDS: Dict[str, str] = {
    Gateway.STRIPE: "stripe_subscription_id",
    Gateway.RAZORPAY: "razorpay_subscription_id",
    Gateway.PAYPAL: "paypal_subscription_id",
    Gateway.PAYSTACK: "paystack_subscription_code",
    Gateway.MERCADOPAGO: "mercadopago_subscription_id",
}

TRANSITIONS = {
    Subscription.Status.ACTIVE: {Subscription.Status.ACTIVE, Subscription.Status.PAST_DUE, Subscription.Status.CANCELLED},
    Subscription.Status.PAST_DUE: {Subscription.Status.ACTIVE, Subscription.Status.PAST_DUE, Subscription.Status.CANCELLED},
    Subscription.Status.CANCELLED: {Subscription.Status.CANCELLED},
}


class SubscriptionTransitionError(Exception):
    """Raised when a status change is not permitted from the current state."""


def resolve_period(
    start: Optional[datetime], end: Optional[datetime], *, now: Optional[datetime] = None
) -> Tuple[datetime, datetime]:
    """Return a valid ``(start, end)`` pair; falls back to ``start + 30 days``."""
    start = start or now or timezone.now()
    if end is None or end <= start:
        end = start + FALLBACK_PERIOD
    return start, end


def locate_subscription(gateway: str, subscription_ref: Optional[str], *, for_update: bool = False) -> Optional[Subscription]:
    field = REF_FIELDS.get(gateway)
    if not field or not subscription_ref:
        return None
    queryset = Subscription.objects.select_related("plan", "user")
    if for_update:
        queryset = queryset.select_for_update()
    return queryset.filter(**{field: subscription_ref}).first()


def _transition(subscription: Subscription, target: str) -> None:
    allowed = TRANSITIONS.get(subscription.status, set())
    if target not in allowed:
        raise SubscriptionTransitionError(
            f"Subscription {subscription.pk} cannot move from {subscription.status} to {target}."
        )
    subscription.status = target


def sync_user_plan(user_id: Any, plan_name: str, expires_at: Optional[datetime]) -> None:
    get_user_model().objects.filter(pk=user_id).update(plan_type=plan_name, plan_expires_at=expires_at)


def activate_subscription(
    *,
    user_id: Any,
    plan: Plan,
    gateway: str,
    subscription_ref: str,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    billing_period: Optional[str] = None,
) -> Tuple[Subscription, bool]:
    """Create or update the user's single live subscription for ``gateway``.

    Switching gateways updates the existing row in place and clears the
    reference held for the previous gateway.
    """

    field = REF_FIELDS[gateway]
    start, end = resolve_period(period_start, period_end)

    with transaction.atomic():
        live = (
            Subscription.objects.select_for_update()
            .filter(user_id=user_id)
            .exclude(status=Subscription.Status.CANCELLED)
            .first()
        )
        owner = Subscription.objects.select_for_update().filter(**{field: subscription_ref}).first()

        if owner is not None and str(owner.user_id) != str(user_id):
            raise SubscriptionTransitionError(
                f"{gateway} subscription {subscription_ref} belongs to another user."
            )

        created = False
        if live is not None:
            target = live
            if owner is not None and owner.pk != live.pk:
                setattr(owner, field, None)
                owner.save(update_fields=[field, "updated_at"])
        elif owner is not None:
            target = owner
        else:
            target = Subscription(user_id=user_id)
            created = True

        previous_gateway = None if created else target.gateway
        for other_field in REF_FIELDS.values():
            setattr(target, other_field, None)
        setattr(target, field, subscription_ref)
        target.plan = plan
        target.status = Subscription.Status.ACTIVE
        target.current_period_start = start
        target.current_period_end = end
        target.cancel_at_period_end = False
        target.cancelled_at = None
        if billing_period:
            target.billing_period = billing_period
        target.save()

        sync_user_plan(user_id, plan.name, end)

    if previous_gateway and previous_gateway != gateway:
        logger.info("Subscription %s moved from %s to %s", target.pk, previous_gateway, gateway)
    return target, created


def renew_subscription(
    subscription: Subscription, *, period_start: Optional[datetime], period_end: Optional[datetime]
) -> Subscription:
    start, end = resolve_period(period_start, period_end)
    _transition(subscription, Subscription.Status.ACTIVE)
    subscription.current_period_start = start
    subscription.current_period_end = end
    subscription.save(update_fields=["status", "current_period_start", "current_period_end", "updated_at"])
    sync_user_plan(subscription.user_id, subscription.plan.name, end)
    return subscription


def mark_past_due(subscription: Subscription) -> Subscription:
    _transition(subscription, Subscription.Status.PAST_DUE)
    subscription.save(update_fields=["status", "updated_at"])
    return subscription


def cancel_subscription(subscription: Subscription) -> Subscription:
    """Cancel and move the user back to the free tier. Idempotent."""
    if subscription.status == Subscription.Status.CANCELLED:
        return subscription
    _transition(subscription, Subscription.Status.CANCELLED)
    subscription.cancelled_at = timezone.now()
    subscription.cancel_at_period_end = False
    subscription.save(update_fields=["status", "cancelled_at", "cancel_at_period_end", "updated_at"])
    sync_user_plan(subscription.user_id, FREE_PLAN, None)
    return subscription


def update_subscription(
    subscription: Subscription,
    *,
    cancel_at_period_end: Optional[bool] = None,
    period_end: Optional[datetime] = None,
) -> Subscription:
    fields = []
    if cancel_at_period_end is not None and subscription.cancel_at_period_end != cancel_at_period_end:
        subscription.cancel_at_period_end = cancel_at_period_end
        fields.append("cancel_at_period_end")
    if period_end is not None and period_end > subscription.current_period_start:
        subscription.current_period_end = period_end
        fields.append("current_period_end")
    if fields:
        subscription.save(update_fields=fields + ["updated_at"])
        if "current_period_end" in fields and subscription.status != Subscription.Status.CANCELLED:
            sync_user_plan(subscription.user_id, subscription.plan.name, subscription.current_period_end)
    return subscription


__all__ = [
    "FREE_PLAN",
    "REF_FIELDS",
    "SubscriptionTransitionError",
    "TRANSITIONS",
    "activate_subscription",
    "cancel_subscription",
    "locate_subscription",
    "mark_past_due",
    "renew_subscription",
    "resolve_period",
    "sync_user_plan",
    "update_subscription",
]
