from datetime import datetime, timezone
from decimal import Decimal

from payments.events import (
    CheckoutCompleted,
    DisputeCreated,
    InvoicePaid,
    InvoicePaymentFailed,
    RefundProcessed,
    SubscriptionCancelled,
    SubscriptionUpdated,
    Unhandled,
    event_from_payload,
    event_to_payload,
)
from payments.gateways import mercadopago, paypal, paystack, razorpay, stripe
from payments.gateways.common import coerce_timestamp, convert_minor_amount, to_minor_amount


def test_convert_minor_amount_respects_zero_decimal_currencies():
    assert convert_minor_amount(1999, "usd") == Decimal("19.99")
    assert convert_minor_amount(1000, "JPY") == Decimal("1000.00")
    assert convert_minor_amount(None, "usd") == Decimal("0.00")
    assert to_minor_amount(Decimal("19.99"), "USD") == 1999
    assert to_minor_amount(Decimal("1000"), "JPY") == 1000


def test_coerce_timestamp_accepts_unix_and_iso():
    assert coerce_timestamp(1700000000) == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert coerce_timestamp("2026-01-01T00:00:00Z") == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert coerce_timestamp("") is None
    assert coerce_timestamp("not a date") is None


def test_canonical_event_survives_serialisation():
    event = InvoicePaid(
        gateway="stripe",
        event_id="evt_1",
        event_type="invoice.paid",
        subscription_ref="sub_1",
        amount=Decimal("49.00"),
        period_end=datetime(2026, 2, 1, tzinfo=timezone.utc),
    )
    assert event_from_payload(event_to_payload(event)) == event


# Stripe


def _stripe(event_type, obj):
    payload = {"id": "evt_1", "type": event_type, "data": {"object": obj}}
    return stripe.normalize(event_type, payload, "evt_1")


def test_stripe_credit_checkout():
    event = _stripe(
        "checkout.session.completed",
        {
            "id": "cs_1",
            "mode": "payment",
            "payment_intent": "pi_1",
            "amount_total": 1000,
            "currency": "usd",
            "metadata": {"user_id": "7", "package_id": "3"},
        },
    )
    assert isinstance(event, CheckoutCompleted)
    assert event.external_ref == "pi_1"
    assert event.amount == Decimal("10.00")
    assert event.currency == "USD"
    assert event.metadata == {"user_id": "7", "package_id": "3", "type": "credits"}
    assert event.subscription_ref is None


def test_stripe_subscription_checkout_defaults_type_from_mode():
    event = _stripe(
        "checkout.session.completed",
        {"id": "cs_2", "mode": "subscription", "subscription": "sub_1", "amount_total": 4900, "currency": "usd"},
    )
    assert event.metadata["type"] == "subscription"
    assert event.subscription_ref == "sub_1"
    assert event.external_ref == "cs_2"


def test_stripe_invoice_renewal_flag_and_period():
    invoice = {
        "id": "in_1",
        "subscription": "sub_1",
        "amount_paid": 4900,
        "currency": "usd",
        "billing_reason": "subscription_cycle",
        "lines": {"data": [{"period": {"start": 1700000000, "end": 1702592000}}]},
    }
    event = _stripe("invoice.paid", invoice)
    assert isinstance(event, InvoicePaid)
    assert event.is_renewal
    assert event.subscription_ref == "sub_1"
    assert event.period_end == datetime.fromtimestamp(1702592000, tz=timezone.utc)

    first = _stripe("invoice.payment_succeeded", {**invoice, "billing_reason": "subscription_create"})
    assert not first.is_renewal


def test_stripe_subscription_id_from_invoice_parent():
    event = _stripe(
        "invoice.payment_failed",
        {"id": "in_2", "parent": {"subscription_details": {"subscription": "sub_9"}}, "amount_due": 100,
         "currency": "usd"},
    )
    assert isinstance(event, InvoicePaymentFailed)
    assert event.subscription_ref == "sub_9"


def test_stripe_lifecycle_and_disputes():
    assert isinstance(_stripe("customer.subscription.deleted", {"id": "sub_1"}), SubscriptionCancelled)

    updated = _stripe("customer.subscription.updated", {"id": "sub_1", "cancel_at_period_end": True,
                                                        "status": "active"})
    assert isinstance(updated, SubscriptionUpdated)
    assert updated.cancel_at_period_end is True

    dispute = _stripe("charge.dispute.created", {"id": "dp_1", "charge": "ch_1", "payment_intent": "pi_1",
                                                 "amount": 1000, "currency": "usd", "reason": "fraudulent"})
    assert isinstance(dispute, DisputeCreated)
    assert (dispute.charge_ref, dispute.payment_ref, dispute.amount) == ("ch_1", "pi_1", Decimal("10.00"))


def test_stripe_partial_refund_is_not_fully_refunded():
    event = _stripe("charge.refunded", {"id": "ch_1", "payment_intent": "pi_1", "amount_refunded": 500,
                                        "currency": "usd", "refunded": False,
                                        "refunds": {"data": [{"id": "re_1"}]}})
    assert isinstance(event, RefundProcessed)
    assert not event.fully_refunded
    assert event.refund_ref == "re_1"


def test_stripe_unknown_event_is_unhandled():
    assert isinstance(_stripe("customer.created", {"id": "cus_1"}), Unhandled)


# Razorpay


def _razorpay(event_type, **entities):
    payload = {"event": event_type, "payload": {name: {"entity": entity} for name, entity in entities.items()}}
    event_id, parsed_type = razorpay.parse_envelope(payload)
    return razorpay.normalize(parsed_type, payload, event_id)


def test_razorpay_credit_capture():
    event = _razorpay(
        "payment.captured",
        payment={"id": "pay_1", "amount": 50000, "currency": "INR",
                 "notes": {"type": "credits", "user_id": "1", "package_id": "2"}},
    )
    assert isinstance(event, CheckoutCompleted)
    assert event.event_id == "payment.captured:pay_1"
    assert event.amount == Decimal("500.00")
    assert event.metadata["package_id"] == "2"


def test_razorpay_subscription_capture_is_left_to_subscription_events():
    event = _razorpay("payment.captured", payment={"id": "pay_1", "amount": 100, "currency": "INR", "notes": {}})
    assert isinstance(event, Unhandled)


def test_razorpay_subscription_activation_and_charge():
    subscription = {"id": "sub_R1", "current_start": 1700000000, "current_end": 1702592000,
                    "notes": {"user_id": "1", "plan_id": "pro"}}
    payment = {"id": "pay_2", "amount": 49900, "currency": "INR"}

    activated = _razorpay("subscription.activated", subscription=subscription, payment=payment)
    assert isinstance(activated, CheckoutCompleted)
    assert activated.subscription_ref == "sub_R1"
    assert activated.external_ref == "pay_2"
    assert activated.metadata["type"] == "subscription"

    charged = _razorpay("subscription.charged", subscription=subscription, payment=payment)
    assert isinstance(charged, InvoicePaid)
    assert charged.external_ref == "pay_2"


def test_razorpay_refund_completeness():
    full = _razorpay("refund.created", refund={"id": "rfnd_1", "payment_id": "pay_1", "amount": 100},
                     payment={"id": "pay_1", "amount": 100, "amount_refunded": 100, "currency": "INR"})
    assert full.fully_refunded
    partial = _razorpay("refund.created", refund={"id": "rfnd_2", "payment_id": "pay_1", "amount": 50},
                        payment={"id": "pay_1", "amount": 100, "amount_refunded": 50, "currency": "INR"})
    assert not partial.fully_refunded


def test_razorpay_halted_subscription_is_payment_failure():
    event = _razorpay("subscription.halted", subscription={"id": "sub_R1"})
    assert isinstance(event, InvoicePaymentFailed)
    assert event.subscription_ref == "sub_R1"


# PayPal


def _paypal(event_type, resource):
    payload = {"id": "WH-1", "event_type": event_type, "resource": resource}
    return paypal.normalize(event_type, payload, "WH-1")


def test_paypal_capture_reads_custom_id_metadata():
    event = _paypal("PAYMENT.CAPTURE.COMPLETED", {
        "id": "CAP-1",
        "amount": {"value": "10.00", "currency_code": "USD"},
        "custom_id": '{"type": "credits", "user_id": "1", "package_id": "2"}',
    })
    assert isinstance(event, CheckoutCompleted)
    assert event.amount == Decimal("10.00")
    assert event.metadata["package_id"] == "2"


def test_paypal_sale_without_agreement_is_unhandled():
    assert isinstance(_paypal("PAYMENT.SALE.COMPLETED", {"id": "SALE-1"}), Unhandled)
    renewal = _paypal("PAYMENT.SALE.COMPLETED", {"id": "SALE-2", "billing_agreement_id": "I-SUB",
                                                 "amount": {"total": "49.00", "currency": "USD"}})
    assert isinstance(renewal, InvoicePaid)
    assert renewal.amount == Decimal("49.00")


def test_paypal_refund_resolves_capture_from_links():
    event = _paypal("PAYMENT.CAPTURE.REFUNDED", {
        "id": "REF-1",
        "amount": {"value": "10.00", "currency_code": "USD"},
        "links": [{"rel": "up", "href": "https://api.paypal.com/v2/payments/captures/CAP-1"}],
    })
    assert event.charge_ref == "CAP-1"
    assert event.refund_ref == "REF-1"


def test_paypal_dispute():
    event = _paypal("CUSTOMER.DISPUTE.CREATED", {
        "dispute_id": "PP-D-1",
        "reason": "UNAUTHORISED",
        "disputed_transactions": [{"seller_transaction_id": "CAP-1"}],
        "dispute_amount": {"value": "10.00", "currency_code": "USD"},
    })
    assert isinstance(event, DisputeCreated)
    assert event.charge_ref == "CAP-1"


# Paystack


def _paystack(event_type, data):
    payload = {"event": event_type, "data": data}
    event_id, parsed_type = paystack.parse_envelope(payload)
    return paystack.normalize(parsed_type, payload, event_id)


def test_paystack_credit_charge():
    event = _paystack("charge.success", {"id": 99, "reference": "ref_1", "amount": 500000, "currency": "NGN",
                                         "metadata": {"type": "credits", "user_id": "1", "package_id": "2"}})
    assert event.event_id == "charge.success:99"
    assert event.amount == Decimal("5000.00")
    assert event.subscription_ref is None


def test_paystack_subscription_charge_uses_subscription_code():
    event = _paystack("charge.success", {"id": 100, "reference": "ref_2", "amount": 100, "currency": "NGN",
                                         "metadata": {"user_id": "1"},
                                         "subscription": {"subscription_code": "SUB_abc"}})
    assert event.metadata["type"] == "subscription"
    assert event.subscription_ref == "SUB_abc"


def test_paystack_not_renew_sets_cancel_at_period_end():
    event = _paystack("subscription.not_renew", {"subscription_code": "SUB_abc"})
    assert isinstance(event, SubscriptionUpdated)
    assert event.cancel_at_period_end is True


# MercadoPago


def test_mercadopago_yields_lookup_events():
    payment = mercadopago.normalize("payment", {"type": "payment", "data": {"id": "123"}}, "payment:123")
    assert isinstance(payment, CheckoutCompleted)
    assert payment.external_ref == "123"

    preapproval = mercadopago.normalize("subscription_preapproval", {"data": {"id": "pre_1"}}, "evt")
    assert isinstance(preapproval, SubscriptionUpdated)
    assert preapproval.subscription_ref == "pre_1"

    assert isinstance(mercadopago.normalize("merchant_order", {"data": {"id": "1"}}, "evt"), Unhandled)


def test_mercadopago_envelope_falls_back_to_data_id():
    assert mercadopago.parse_envelope({"type": "payment", "data": {"id": "123"}}) == ("payment:123", "payment")
    assert mercadopago.parse_envelope({"id": 5, "type": "payment"}) == ("5", "payment")
