import logging
from decimal import Decimal
from typing import Dict, List

from django.apps import AppConfig
from django.db.models.signals import post_migrate, post_save

logger = logging.getLogger(__name__)


def ensure_default_plans() -> Dict[str, List[str]]:
    """Create any plan from ``PLAN_CONFIG`` that does not exist yet.

    Existing plans are left untouched so prices and credit grants edited in
    the admin survive later migrations.
    """
    from django.conf import settings
    from django.db import OperationalError, ProgrammingError
    from .models import Plan

    created: List[str] = []
    plan_config = getattr(settings, "PLAN_CONFIG", {}) or {}

    try:
        for name, config in plan_config.items():
            _, was_created = Plan.objects.get_or_create(
                name=name,
                defaults={
                    "display_name": config.get("display_name", name.title()),
                    "included_credits": int(config.get("included_credits", 0)),
                    "monthly_price": Decimal(str(config.get("monthly_price", 0))),
                    "yearly_price": Decimal(str(config.get("yearly_price", 0))),
                },
            )
            if was_created:
                created.append(name)
    except (OperationalError, ProgrammingError):
        logger.debug("Database not ready for plan initialisation.")
        return {"created": []}

    if created:
        logger.info("Plan initialisation completed. created=%s", created)
    return {"created": created}


def init_plans_after_migrate(sender, **kwargs):
    ensure_default_plans()


def reset_client_on_setting_change(sender, instance, **kwargs):
    """Drop the cached gateway client when one of its settings changes."""
    from .services.clients import get_client_factory

    gateway, _, name = instance.key.partition("_")
    if name == "last_webhook_at":
        return
    get_client_factory().reset(gateway)


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"

    def ready(self):
        from .models import GatewaySetting

        post_migrate.connect(init_plans_after_migrate, sender=self)
        post_save.connect(reset_client_on_setting_change, sender=GatewaySetting,
                          dispatch_uid="payments_reset_gateway_client")
