from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from audit.services import PaymentAuditService
from payments.models import CreditPackage, Plan
from payments.services.clients import GatewayClientFactory, get_client_factory
from payments.services.handlers import WebhookHandlers

from .helpers import RecordingNotifier

GATEWAY_SETTINGS = {
    "stripe": {
        "secret_key": "sk_test_123",
        "publishable_key": "pk_test_123",
        "webhook_secret": "whsec_test",
        "currency": "USD",
    },
    "razorpay": {
        "key_id": "rzp_test_key",
        "key_secret": "rzp_test_secret",
        "webhook_secret": "rzp_webhook_secret",
        "currency": "INR",
    },
    "paypal": {
        "client_id": "paypal-client",
        "client_secret": "paypal-secret",
        "webhook_id": "WH-123",
        "mode": "sandbox",
        "currency": "USD",
    },
    "paystack": {
        "public_key": "pk_test_paystack",
        "secret_key": "sk_test_paystack",
        "currency": "NGN",
    },
    "mercadopago": {
        "access_token": "APP_USR-token",
        "public_key": "APP_USR-public",
        "webhook_secret": "mp_webhook_secret",
        "currency": "BRL",
    },
}


@pytest.fixture
def gateway_settings(settings):
    settings.PAYMENT_GATEWAYS = {name: dict(values) for name, values in GATEWAY_SETTINGS.items()}
    get_client_factory().reset()
    yield settings.PAYMENT_GATEWAYS
    get_client_factory().reset()


@pytest.fixture
def no_gateway_settings(settings):
    settings.PAYMENT_GATEWAYS = {name: {} for name in GATEWAY_SETTINGS}
    get_client_factory().reset()
    yield settings.PAYMENT_GATEWAYS
    get_client_factory().reset()


@pytest.fixture
def factory():
    return GatewayClientFactory()


@pytest.fixture
def user(db):
    return get_user_model().objects.create_user(
        username="alice",
        email="alice@example.com",
        password="password123",
    )


@pytest.fixture
def admin_user(db):
    User = get_user_model()
    return User.objects.create_user(
        username="bob",
        email="bob@example.com",
        password="password123",
        role=User.Role.ADMIN,
    )


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def admin_client(api_client, admin_user):
    api_client.force_authenticate(user=admin_user)
    return api_client


@pytest.fixture
def credit_package(db):
    return CreditPackage.objects.create(name="Starter Pack", credits=100, price=Decimal("10.00"))


@pytest.fixture
def pro_plan(db):
    plan, _ = Plan.objects.update_or_create(
        name="pro",
        defaults={
            "display_name": "Pro",
            "included_credits": 2000,
            "monthly_price": Decimal("49.00"),
            "yearly_price": Decimal("490.00"),
        },
    )
    return plan


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def handlers(notifier, factory):
    return WebhookHandlers(audit=PaymentAuditService(), notifier=notifier, client_factory=factory)
