import uuid
from decimal import Decimal
from unittest import mock

import pytest
from django.urls import reverse

from audit.models import PaymentAuditLog
from payments.models import CreditLedgerEntry, PaymentTransaction, Refund
from payments.services.clients import GatewayRequestError
from payments.services.credit_ledger import add_credits
from payments.services.ledger import record_payment_transaction

URL = reverse("payments:admin-refund")


@pytest.fixture
def credit_payment(user, credit_package):
    payment = record_payment_transaction(
        user_id=user.pk,
        type=PaymentTransaction.Type.CREDITS,
        gateway="razorpay",
        gateway_transaction_id="pay_100",
        amount=Decimal("500.00"),
        currency="INR",
        credit_package=credit_package,
        credits_awarded=credit_package.credits,
    )
    add_credits(user_id=user.pk, amount=credit_package.credits, description="pack",
                idempotency_key="credits_razorpay_pay_100")
    return payment


def gateway_client(**post_kwargs):
    client = mock.Mock()
    client.post.configure_mock(**post_kwargs)
    factory = mock.Mock()
    factory.get_client.return_value = client
    return client, factory


@pytest.mark.django_db
def test_refund_requires_platform_admin(api_client, user, credit_payment):
    api_client.force_authenticate(user=user)
    response = api_client.post(URL, {"transaction_id": str(credit_payment.pk), "reason": "duplicate"}, format="json")
    assert response.status_code == 403


@pytest.mark.django_db
def test_refund_requires_authentication(api_client):
    response = api_client.post(URL, {}, format="json")
    assert response.status_code in (401, 403)


@pytest.mark.django_db
def test_admin_refund_calls_gateway_and_reverses_credits(admin_client, admin_user, user, credit_payment):
    client, factory = gateway_client(return_value={"id": "rfnd_1"})

    with mock.patch("payments.views.refunds.get_client_factory", return_value=factory):
        response = admin_client.post(
            URL, {"transaction_id": str(credit_payment.pk), "reason": "Customer request"}, format="json"
        )

    assert response.status_code == 200
    body = response.json()
    assert body["credits_reversed"] == 100
    assert body["credits_shortfall"] == 0
    assert body["refund"]["gateway_refund_id"] == "rfnd_1"
    assert body["refund"]["reason"] == Refund.Reason.ADMIN_INITIATED
    client.post.assert_called_once_with("/payments/pay_100/refund", json={"amount": 50000})

    refund = Refund.objects.get(pk=body["refund_id"])
    assert refund.admin == admin_user
    assert refund.initiated_by == Refund.Initiator.ADMIN
    assert not refund.user_suspended
    assert refund.metadata["reason"] == "Customer request"
    credit_payment.refresh_from_db()
    assert credit_payment.status == PaymentTransaction.Status.REFUNDED
    assert credit_payment.refunded_at is not None
    user.refresh_from_db()
    assert user.credits == 0
    assert user.is_active
    assert CreditLedgerEntry.objects.filter(entry_type=CreditLedgerEntry.EntryType.REFUND_REVERSAL).count() == 1
    assert PaymentAuditLog.objects.filter(action=PaymentAuditLog.Action.REFUND_COMPLETED).count() == 1


@pytest.mark.django_db
def test_refund_reports_shortfall_when_credits_were_spent(admin_client, user, credit_payment):
    type(user).objects.filter(pk=user.pk).update(credits=25)
    _, factory = gateway_client(return_value={"id": "rfnd_2"})

    with mock.patch("payments.views.refunds.get_client_factory", return_value=factory):
        response = admin_client.post(URL, {"transaction_id": str(credit_payment.pk), "reason": "spent"},
                                     format="json")

    assert response.status_code == 200
    assert response.json()["credits_reversed"] == 25
    assert response.json()["credits_shortfall"] == 75
    user.refresh_from_db()
    assert user.credits == 0


@pytest.mark.django_db
def test_second_refund_is_rejected(admin_client, credit_payment):
    client, factory = gateway_client(return_value={"id": "rfnd_3"})
    payload = {"transaction_id": str(credit_payment.pk), "reason": "twice"}

    with mock.patch("payments.views.refunds.get_client_factory", return_value=factory):
        admin_client.post(URL, payload, format="json")
        response = admin_client.post(URL, payload, format="json")

    assert response.status_code == 400
    assert response.json()["code"] == "already_refunded"
    assert client.post.call_count == 1


@pytest.mark.django_db
def test_refund_notification_arriving_first_is_attributed_to_admin(admin_client, admin_user, user, handlers,
                                                                    credit_payment):
    def refund_then_notify(path, json):
        handlers.refunds.apply(transaction_id=credit_payment.pk, reason=Refund.Reason.GATEWAY_REFUND,
                               gateway_refund_id="rfnd_9")
        return {"id": "rfnd_9"}

    _, factory = gateway_client(side_effect=refund_then_notify)

    with mock.patch("payments.views.refunds.get_client_factory", return_value=factory):
        response = admin_client.post(URL, {"transaction_id": str(credit_payment.pk), "reason": "raced"},
                                     format="json")

    assert response.status_code == 200
    body = response.json()
    assert body["credits_reversed"] == 100
    refund = Refund.objects.get(transaction=credit_payment)
    assert str(refund.pk) == body["refund_id"]
    assert refund.reason == Refund.Reason.ADMIN_INITIATED
    assert refund.initiated_by == Refund.Initiator.ADMIN
    assert refund.admin == admin_user
    assert refund.gateway_refund_id == "rfnd_9"
    user.refresh_from_db()
    assert user.credits == 0
    assert CreditLedgerEntry.objects.filter(entry_type=CreditLedgerEntry.EntryType.REFUND_REVERSAL).count() == 1


@pytest.mark.django_db
def test_unknown_transaction_returns_404(admin_client):
    response = admin_client.post(URL, {"transaction_id": str(uuid.uuid4()), "reason": "missing"}, format="json")
    assert response.status_code == 404
    assert response.json()["code"] == "transaction_not_found"


@pytest.mark.django_db
def test_invalid_request_is_rejected(admin_client):
    response = admin_client.post(URL, {"transaction_id": "nope"}, format="json")
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "invalid_request"
    assert "transaction_id" in body["details"]
    assert "reason" in body["details"]


@pytest.mark.django_db
def test_gateway_failure_leaves_transaction_untouched(admin_client, user, credit_payment):
    _, factory = gateway_client(side_effect=GatewayRequestError("razorpay", "timeout"))

    with mock.patch("payments.views.refunds.get_client_factory", return_value=factory):
        response = admin_client.post(URL, {"transaction_id": str(credit_payment.pk), "reason": "x"}, format="json")

    assert response.status_code == 502
    assert response.json()["code"] == "gateway_error"
    credit_payment.refresh_from_db()
    assert credit_payment.status == PaymentTransaction.Status.COMPLETED
    assert not Refund.objects.exists()
    user.refresh_from_db()
    assert user.credits == 100


@pytest.mark.django_db
def test_unconfigured_gateway_is_reported(admin_client, credit_payment):
    factory = mock.Mock()
    factory.get_client.return_value = None

    with mock.patch("payments.views.refunds.get_client_factory", return_value=factory):
        response = admin_client.post(URL, {"transaction_id": str(credit_payment.pk), "reason": "x"}, format="json")

    assert response.status_code == 400
    assert response.json()["code"] == "gateway_not_configured"


@pytest.mark.django_db
def test_stripe_refund_uses_minor_units(admin_client, user, credit_package):
    payment = record_payment_transaction(
        user_id=user.pk,
        type=PaymentTransaction.Type.CREDITS,
        gateway="stripe",
        gateway_transaction_id="pi_55",
        amount=Decimal("19.99"),
        currency="USD",
        credit_package=credit_package,
        credits_awarded=credit_package.credits,
    )
    client = mock.Mock()
    client.create_refund.return_value = {"id": "re_55"}
    factory = mock.Mock()
    factory.get_client.return_value = client

    with mock.patch("payments.views.refunds.get_client_factory", return_value=factory):
        response = admin_client.post(URL, {"transaction_id": str(payment.pk), "reason": "x"}, format="json")

    assert response.status_code == 200
    client.create_refund.assert_called_once_with("pi_55", amount_minor=1999)
    assert response.json()["credits_shortfall"] == 100
