from decimal import Decimal
from unittest import mock

import pytest
from django.core.mail import get_connection
from django.utils import timezone

from accounts.models import Notification
from payments.models import Invoice, PaymentTransaction
from payments.observability.metrics import SIDE_EFFECT_FAILURE_COUNT
from payments.services.invoices import generate_invoice_for_transaction, next_invoice_number
from payments.services.ledger import record_payment_transaction
from payments.services.notifications import NotificationDispatcher


def make_payment(user, ref, amount="10.00"):
    return record_payment_transaction(
        user_id=user.pk,
        type=PaymentTransaction.Type.CREDITS,
        gateway="stripe",
        gateway_transaction_id=ref,
        amount=Decimal(amount),
        currency="USD",
        credits_awarded=100,
    )


def failure_count(operation):
    return SIDE_EFFECT_FAILURE_COUNT.labels(operation=operation)._value.get()


@pytest.mark.django_db
def test_invoices_are_numbered_sequentially_per_year(user):
    year = timezone.now().year
    first = generate_invoice_for_transaction(make_payment(user, "pi_1"))
    second = generate_invoice_for_transaction(make_payment(user, "pi_2"))

    assert first.invoice_number == f"INV-{year}-0001"
    assert second.invoice_number == f"INV-{year}-0002"
    assert next_invoice_number(year=year) == f"INV-{year}-0003"
    assert next_invoice_number(year=year + 1) == f"INV-{year + 1}-0001"


@pytest.mark.django_db
def test_invoice_is_issued_once_per_transaction(user):
    payment = make_payment(user, "pi_1")
    assert generate_invoice_for_transaction(payment).pk == generate_invoice_for_transaction(payment).pk
    assert Invoice.objects.count() == 1


@pytest.mark.django_db
def test_purchase_confirmation_emails_invoice(user, mailoutbox):
    payment = make_payment(user, "pi_1", amount="19.99")

    NotificationDispatcher().purchase_confirmed(payment)

    invoice = Invoice.objects.get(transaction=payment)
    assert len(mailoutbox) == 1
    message = mailoutbox[0]
    assert invoice.invoice_number in message.subject
    assert message.to == [user.email]
    assert "19.99" in message.body


@pytest.mark.django_db
def test_email_failure_never_raises(user, mailoutbox):
    payment = make_payment(user, "pi_1")
    before = failure_count("purchase_confirmation")

    with mock.patch("payments.services.notifications.send_mail", side_effect=ConnectionRefusedError("smtp down")):
        NotificationDispatcher().purchase_confirmed(payment)

    assert failure_count("purchase_confirmation") == before + 1
    assert Invoice.objects.filter(transaction=payment).exists()
    assert PaymentTransaction.objects.filter(pk=payment.pk).exists()


@pytest.mark.django_db
def test_membership_and_failure_notifications(user, mailoutbox):
    dispatcher = NotificationDispatcher()

    dispatcher.membership_upgraded(user.pk, "Pro")
    dispatcher.payment_failed(user.pk, amount=Decimal("49.00"), currency="usd", reason="card_declined")

    kinds = list(Notification.objects.filter(user=user).values_list("kind", flat=True))
    assert sorted(kinds) == [Notification.Kind.MEMBERSHIP, Notification.Kind.PAYMENT]
    assert len(mailoutbox) == 2


@pytest.mark.django_db
def test_suspension_notice_for_missing_user_is_reported(mailoutbox):
    before = failure_count("account_suspended")

    NotificationDispatcher().account_suspended(999999, reason="chargeback")

    assert failure_count("account_suspended") == before + 1
    assert mailoutbox == []


def test_smtp_connections_are_bounded(settings):
    connection = get_connection("django.core.mail.backends.smtp.EmailBackend")

    assert settings.EMAIL_TIMEOUT > 0
    assert connection.timeout == settings.EMAIL_TIMEOUT
