import pytest
from django.urls import reverse

from payments.services import settings_store


@pytest.mark.django_db
def test_config_endpoint_returns_public_settings(api_client, user, gateway_settings):
    api_client.force_authenticate(user=user)

    response = api_client.get(reverse("payments:razorpay-config"))

    assert response.status_code == 200
    body = response.json()
    assert body["gateway"] == "razorpay"
    assert body["enabled"] is True
    assert body["public_key"] == "rzp_test_key"
    assert body["currency"] == "INR"
    assert body["currency_symbol"] == "₹"
    assert body["currency_locked"] is False
    assert "INR" in body["supported_currencies"]


@pytest.mark.django_db
def test_config_endpoint_requires_authentication(api_client, gateway_settings):
    response = api_client.get(reverse("payments:stripe-config"))
    assert response.status_code in (401, 403)


@pytest.mark.django_db
def test_admin_changes_currency(admin_client, gateway_settings):
    response = admin_client.post(reverse("payments:stripe-currency"), {"currency": "eur"}, format="json")

    assert response.status_code == 200
    assert response.json() == {"currency": "EUR", "symbol": "€", "locked": False}
    assert settings_store.get_currency_config("stripe").currency == "EUR"


@pytest.mark.django_db
def test_unsupported_currency_is_rejected(admin_client, gateway_settings):
    response = admin_client.post(reverse("payments:paystack-currency"), {"currency": "EUR"}, format="json")

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "unsupported_currency"
    assert body["details"]["supported_currencies"] == ["NGN", "GHS", "ZAR", "KES", "USD"]


@pytest.mark.django_db
def test_locked_currency_cannot_change(admin_client, gateway_settings):
    lock = admin_client.post(reverse("payments:paypal-currency-lock"), format="json")
    assert lock.status_code == 200
    assert lock.json() == {"currency": "USD", "symbol": "$", "locked": True}

    change = admin_client.post(reverse("payments:paypal-currency"), {"currency": "EUR"}, format="json")
    assert change.status_code == 400
    assert change.json()["code"] == "currency_locked"

    relock = admin_client.post(reverse("payments:paypal-currency-lock"), format="json")
    assert relock.status_code == 400
    assert relock.json()["code"] == "currency_locked"


@pytest.mark.django_db
def test_lock_persists_effective_currency(gateway_settings, settings):
    settings_store.lock_currency("mercadopago")
    settings.PAYMENT_GATEWAYS["mercadopago"]["currency"] = "ARS"

    assert settings_store.get_currency_config("mercadopago").currency == "BRL"


@pytest.mark.django_db
def test_currency_changes_require_platform_admin(api_client, user, gateway_settings):
    api_client.force_authenticate(user=user)
    response = api_client.post(reverse("payments:stripe-currency"), {"currency": "EUR"}, format="json")
    assert response.status_code == 403


@pytest.mark.django_db
def test_default_currency_without_settings(no_gateway_settings):
    config = settings_store.get_currency_config("razorpay")
    assert config.currency == "INR"
    assert not config.locked
