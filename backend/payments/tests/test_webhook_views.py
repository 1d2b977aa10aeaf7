import hashlib
import hmac
from decimal import Decimal
from unittest import mock

import pytest
from django.urls import reverse

from audit.models import PaymentAuditLog
from payments.models import GatewaySetting, PaymentTransaction, WebhookRetryItem
from payments.services.handlers import WebhookHandlers

from .helpers import encode, paystack_signature, razorpay_signature


def razorpay_credit_capture(user, package, payment_id="pay_1"):
    return {
        "entity": "event",
        "event": "payment.captured",
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "amount": 50000,
                    "currency": "INR",
                    "notes": {"type": "credits", "user_id": str(user.pk), "package_id": str(package.pk)},
                }
            }
        },
    }


def post_razorpay(client, body, signature=None):
    return client.post(
        reverse("payments:razorpay-webhook"),
        data=body,
        content_type="application/json",
        HTTP_X_RAZORPAY_SIGNATURE=signature if signature is not None else razorpay_signature(body),
    )


@pytest.mark.django_db
def test_signed_credit_capture_awards_credits(api_client, gateway_settings, user, credit_package, mailoutbox):
    body = encode(razorpay_credit_capture(user, credit_package))

    response = post_razorpay(api_client, body)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    user.refresh_from_db()
    assert user.credits == 100
    payment = PaymentTransaction.objects.get(gateway="razorpay", gateway_transaction_id="pay_1")
    assert payment.amount == Decimal("500.00")
    assert payment.currency == "INR"
    audit = PaymentAuditLog.objects.get(action=PaymentAuditLog.Action.WEBHOOK_RECEIVED)
    assert audit.reference == "payment.captured:pay_1"
    assert audit.details["action"] == "credits_awarded"
    assert GatewaySetting.objects.filter(key="razorpay_last_webhook_at").exists()
    assert len(mailoutbox) == 1
    assert mailoutbox[0].to == ["alice@example.com"]


@pytest.mark.django_db
def test_redelivered_webhook_is_acknowledged_without_side_effects(api_client, gateway_settings, user,
                                                                  credit_package):
    body = encode(razorpay_credit_capture(user, credit_package))

    post_razorpay(api_client, body)
    response = post_razorpay(api_client, body)

    assert response.status_code == 200
    user.refresh_from_db()
    assert user.credits == 100
    assert PaymentTransaction.objects.count() == 1


@pytest.mark.django_db
def test_invalid_signature_is_rejected(api_client, gateway_settings, user, credit_package):
    body = encode(razorpay_credit_capture(user, credit_package))

    response = post_razorpay(api_client, body, signature="0" * 64)

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid webhook signature"}
    assert not PaymentTransaction.objects.exists()
    assert not PaymentAuditLog.objects.exists()


@pytest.mark.django_db
def test_missing_webhook_secret_is_rejected(api_client, no_gateway_settings):
    body = encode({"event": "payment.captured"})

    response = post_razorpay(api_client, body)

    assert response.status_code == 400
    assert "not configured" in response.json()["error"]


@pytest.mark.django_db
def test_signed_but_malformed_body_is_rejected(api_client, gateway_settings):
    body = b"not json"
    response = post_razorpay(api_client, body)
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid webhook payload"}

    no_type = encode({"payload": {}})
    response = post_razorpay(api_client, no_type)
    assert response.status_code == 400


@pytest.mark.django_db
def test_unhandled_event_is_acknowledged(api_client, gateway_settings):
    body = encode({"event": "order.paid", "payload": {"payment": {"entity": {"id": "pay_9"}}}})

    response = post_razorpay(api_client, body)

    assert response.status_code == 200
    audit = PaymentAuditLog.objects.get(action=PaymentAuditLog.Action.WEBHOOK_RECEIVED)
    assert audit.details["action"] == "unhandled"


@pytest.mark.django_db
def test_handler_failure_is_queued_for_retry(api_client, gateway_settings, user, credit_package):
    body = encode(razorpay_credit_capture(user, credit_package))

    with mock.patch.object(WebhookHandlers, "checkout_completed", side_effect=RuntimeError("database unavailable")):
        response = post_razorpay(api_client, body)

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook processing failed"}
    item = WebhookRetryItem.objects.get(gateway="razorpay", event_id="payment.captured:pay_1")
    assert item.status == WebhookRetryItem.Status.PENDING
    assert item.last_error == "database unavailable"
    assert item.normalized_event["kind"] == "CheckoutCompleted"
    assert item.payload["event"] == "payment.captured"
    assert not PaymentTransaction.objects.exists()


@pytest.mark.django_db
def test_paystack_charge_is_processed(api_client, gateway_settings, user, credit_package):
    body = encode({
        "event": "charge.success",
        "data": {
            "id": 4099,
            "reference": "ref_4099",
            "amount": 1000000,
            "currency": "NGN",
            "metadata": {"type": "credits", "user_id": str(user.pk), "package_id": str(credit_package.pk)},
        },
    })

    response = api_client.post(
        reverse("payments:paystack-webhook"),
        data=body,
        content_type="application/json",
        HTTP_X_PAYSTACK_SIGNATURE=paystack_signature(body),
    )

    assert response.status_code == 200
    payment = PaymentTransaction.objects.get(gateway="paystack")
    assert payment.gateway_transaction_id == "ref_4099"
    assert payment.amount == Decimal("10000.00")


@pytest.mark.django_db
def test_mercadopago_payment_is_fetched_before_handling(api_client, gateway_settings, user, credit_package):
    body = encode({"type": "payment", "action": "payment.created", "data": {"id": "777"}})
    manifest = "id:777;request-id:req-1;ts:1700000000;"
    digest = hmac.new(b"mp_webhook_secret", manifest.encode(), hashlib.sha256).hexdigest()
    client = mock.Mock()
    client.get.return_value = {
        "id": 777,
        "status": "approved",
        "transaction_amount": 25.5,
        "currency_id": "BRL",
        "external_reference": (
            f'{{"type": "credits", "user_id": "{user.pk}", "package_id": "{credit_package.pk}"}}'
        ),
    }

    with mock.patch("payments.services.clients.GatewayClientFactory.get_client", return_value=client):
        response = api_client.post(
            reverse("payments:mercadopago-webhook"),
            data=body,
            content_type="application/json",
            HTTP_X_SIGNATURE=f"ts=1700000000,v1={digest}",
            HTTP_X_REQUEST_ID="req-1",
        )

    assert response.status_code == 200
    client.get.assert_called_once_with("/v1/payments/777")
    payment = PaymentTransaction.objects.get(gateway="mercadopago")
    assert payment.gateway_transaction_id == "777"
    assert payment.amount == Decimal("25.50")
    user.refresh_from_db()
    assert user.credits == 100


@pytest.mark.django_db
def test_webhook_rejects_get(client):
    response = client.get("/api/payments/stripe/webhook/")
    assert response.status_code == 405
