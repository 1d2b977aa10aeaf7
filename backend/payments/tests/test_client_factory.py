from unittest import mock

import pytest
import requests
import stripe

from payments.models import GatewaySetting
from payments.services import settings_store
from payments.services.clients import (
    GatewayNotConfigured,
    GatewayRequestError,
    PayPalClient,
    RestGatewayClient,
    StripeClient,
    get_client_factory,
)


@pytest.mark.django_db
def test_unconfigured_gateway_has_no_client(factory, no_gateway_settings):
    assert not factory.is_configured("stripe")
    assert not factory.is_enabled("stripe")
    assert factory.get_client("stripe") is None
    with pytest.raises(GatewayNotConfigured):
        factory.require_client("stripe")


@pytest.mark.django_db
def test_configured_gateways_build_matching_clients(factory, gateway_settings):
    assert isinstance(factory.get_client("stripe"), StripeClient)
    assert isinstance(factory.get_client("paypal"), PayPalClient)
    razorpay = factory.get_client("razorpay")
    assert isinstance(razorpay, RestGatewayClient)
    assert razorpay.base_url == "https://api.razorpay.com/v1"
    assert razorpay.session.auth == ("rzp_test_key", "rzp_test_secret")
    paystack = factory.get_client("paystack")
    assert paystack.session.headers["Authorization"] == "Bearer sk_test_paystack"


@pytest.mark.django_db
def test_clients_are_cached_until_reset(factory, gateway_settings):
    first = factory.get_client("stripe")
    assert factory.get_client("stripe") is first

    factory.reset("stripe")
    second = factory.get_client("stripe")
    assert second is not first

    factory.reset()
    assert factory.get_client("stripe") is not second


@pytest.mark.django_db
def test_saving_gateway_setting_resets_default_factory(gateway_settings):
    factory = get_client_factory()
    client = factory.get_client("razorpay")

    settings_store.set_gateway_value("razorpay", "key_secret", "rotated")

    rebuilt = factory.get_client("razorpay")
    assert rebuilt is not client
    assert rebuilt.session.auth == ("rzp_test_key", "rotated")


@pytest.mark.django_db
def test_database_settings_override_environment(factory, gateway_settings):
    GatewaySetting.objects.create(key="stripe_publishable_key", value="pk_live_db")
    assert factory.get_config("stripe")["public_key"] == "pk_live_db"


@pytest.mark.django_db
def test_enabled_flag_disables_gateway(factory, gateway_settings):
    settings_store.set_gateway_value("stripe", "enabled", False)

    config = factory.get_config("stripe")

    assert config["configured"] is True
    assert config["enabled"] is False
    assert config["public_key"] is None


@pytest.mark.django_db
def test_public_config_never_contains_secrets(factory, gateway_settings):
    for gateway, values in gateway_settings.items():
        config = factory.get_config(gateway)
        rendered = repr(config)
        for name, value in values.items():
            if "secret" in name or name in ("access_token", "webhook_id"):
                assert value not in rendered
        assert config["currency"] == values["currency"]


@pytest.mark.django_db
def test_webhook_secret_per_gateway(factory, gateway_settings):
    assert factory.get_webhook_secret("stripe") == "whsec_test"
    assert factory.get_webhook_secret("paypal") == "WH-123"
    assert factory.get_webhook_secret("paystack") == "sk_test_paystack"
    assert factory.get_webhook_secret("unknown") == ""


def _response(status_code=200, payload=None, text=""):
    response = mock.Mock()
    response.status_code = status_code
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    response.text = text
    return response


def test_rest_client_maps_http_errors():
    session = mock.Mock(spec=requests.Session)
    session.headers = {}
    client = RestGatewayClient("paystack", base_url="https://api.paystack.co/", session=session)

    session.request.return_value = _response(200, {"data": {"id": 1}})
    assert client.post("/refund", json={"transaction": "ref"}) == {"data": {"id": 1}}
    assert session.request.call_args.args[1] == "https://api.paystack.co/refund"

    session.request.return_value = _response(422, None, text="invalid")
    with pytest.raises(GatewayRequestError) as exc:
        client.post("/refund")
    assert exc.value.status_code == 422
    assert exc.value.gateway == "paystack"

    session.request.side_effect = requests.Timeout("slow")
    with pytest.raises(GatewayRequestError):
        client.get("/transaction/verify/ref")


def test_paypal_client_fetches_and_reuses_token():
    session = mock.Mock(spec=requests.Session)
    session.headers = {}
    session.post.return_value = _response(200, {"access_token": "A21", "expires_in": 3600})
    session.request.return_value = _response(200, {"id": "REF-1"})
    client = PayPalClient(client_id="id", client_secret="secret", session=session)

    client.post("/v2/payments/captures/CAP-1/refund", json={})
    client.post("/v2/payments/captures/CAP-2/refund", json={})

    assert session.post.call_count == 1
    assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer A21"
    assert client.base_url == "https://api-m.sandbox.paypal.com"


def test_stripe_client_wraps_sdk_errors():
    client = StripeClient(secret_key="sk_test_123")
    with mock.patch("stripe.Refund.create", side_effect=stripe.APIConnectionError("down")):
        with pytest.raises(GatewayRequestError):
            client.create_refund("pi_1", amount_minor=100)

    with mock.patch("stripe.Refund.create", return_value={"id": "re_1"}) as create:
        client.create_refund("ch_1", amount_minor=100)
    create.assert_called_once_with(api_key="sk_test_123", charge="ch_1", amount=100)
