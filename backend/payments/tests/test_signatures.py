import hashlib
import hmac
import time
from unittest import mock

import pytest

from payments.gateways import UnknownGateway, get_adapter, mercadopago, paypal, paystack, razorpay, stripe
from payments.services.clients import GatewayRequestError
from payments.services.signatures import get_header, parse_signature_header, signatures_match

from .helpers import encode, paystack_signature, razorpay_signature


def _factory(secret="", client=None):
    factory = mock.Mock()
    factory.get_webhook_secret.return_value = secret
    factory.get_client.return_value = client
    return factory


def _stripe_header(body: bytes, secret: str, timestamp=None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{body.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_get_header_is_case_insensitive():
    headers = {"x-razorpay-signature": "abc"}
    assert get_header(headers, "X-Razorpay-Signature") == "abc"
    assert get_header(headers, "X-Missing") is None


def test_parse_signature_header_splits_pairs():
    assert parse_signature_header("ts=1700000000, v1=deadbeef") == {"ts": "1700000000", "v1": "deadbeef"}
    assert parse_signature_header(None) == {}


def test_signatures_match_rejects_empty_values():
    assert signatures_match("abc", "ABC")
    assert not signatures_match("abc", "")
    assert not signatures_match("", "abc")
    assert not signatures_match("abc", None)


def test_get_adapter_rejects_unknown_gateway():
    with pytest.raises(UnknownGateway):
        get_adapter("square")


def test_razorpay_verify_accepts_valid_signature():
    body = encode({"event": "payment.captured"})
    headers = {"X-Razorpay-Signature": razorpay_signature(body)}
    assert razorpay.verify(body, headers, _factory("rzp_webhook_secret"))


def test_razorpay_verify_rejects_tampered_body():
    body = encode({"event": "payment.captured"})
    headers = {"X-Razorpay-Signature": razorpay_signature(body)}
    assert not razorpay.verify(body + b" ", headers, _factory("rzp_webhook_secret"))


def test_razorpay_verify_fails_closed_without_secret():
    body = encode({"event": "payment.captured"})
    headers = {"X-Razorpay-Signature": razorpay_signature(body, secret="")}
    assert not razorpay.verify(body, headers, _factory(""))


def test_paystack_verify_uses_sha512_of_secret_key():
    body = encode({"event": "charge.success"})
    assert paystack.verify(body, {"X-Paystack-Signature": paystack_signature(body)}, _factory("sk_test_paystack"))
    sha256 = hmac.new(b"sk_test_paystack", body, hashlib.sha256).hexdigest()
    assert not paystack.verify(body, {"X-Paystack-Signature": sha256}, _factory("sk_test_paystack"))


def test_stripe_verify_accepts_signed_payload():
    body = encode({"id": "evt_1", "type": "checkout.session.completed"})
    headers = {"Stripe-Signature": _stripe_header(body, "whsec_test")}
    assert stripe.verify(body, headers, _factory("whsec_test"))


def test_stripe_verify_rejects_wrong_secret_and_stale_timestamp():
    body = encode({"id": "evt_1", "type": "checkout.session.completed"})
    assert not stripe.verify(body, {"Stripe-Signature": _stripe_header(body, "other")}, _factory("whsec_test"))
    stale = _stripe_header(body, "whsec_test", timestamp=int(time.time()) - 3600)
    assert not stripe.verify(body, {"Stripe-Signature": stale}, _factory("whsec_test"))
    assert not stripe.verify(body, {}, _factory("whsec_test"))


def test_mercadopago_verify_checks_manifest():
    body = encode({"type": "payment", "data": {"id": "123456"}})
    ts = "1700000000"
    manifest = f"id:123456;request-id:req-1;ts:{ts};"
    digest = hmac.new(b"mp_webhook_secret", manifest.encode(), hashlib.sha256).hexdigest()
    headers = {"x-signature": f"ts={ts},v1={digest}", "x-request-id": "req-1"}

    assert mercadopago.verify(body, headers, _factory("mp_webhook_secret"))
    assert not mercadopago.verify(body, {**headers, "x-request-id": "req-2"}, _factory("mp_webhook_secret"))
    assert not mercadopago.verify(body, {"x-request-id": "req-1"}, _factory("mp_webhook_secret"))


def test_mercadopago_verify_lowercases_alphanumeric_ids():
    body = encode({"type": "subscription_preapproval", "data": {"id": "ABC123"}})
    manifest = "id:abc123;request-id:req-1;ts:1;"
    digest = hmac.new(b"mp_webhook_secret", manifest.encode(), hashlib.sha256).hexdigest()
    headers = {"X-Signature": f"ts=1,v1={digest}", "X-Request-Id": "req-1"}
    assert mercadopago.verify(body, headers, _factory("mp_webhook_secret"))


PAYPAL_HEADERS = {
    "PayPal-Auth-Algo": "SHA256withRSA",
    "PayPal-Cert-Url": "https://api.paypal.com/cert.pem",
    "PayPal-Transmission-Id": "tx-1",
    "PayPal-Transmission-Sig": "sig",
    "PayPal-Transmission-Time": "2026-01-01T00:00:00Z",
}


def test_paypal_verify_delegates_to_api():
    client = mock.Mock()
    client.post.return_value = {"verification_status": "SUCCESS"}
    body = encode({"id": "WH-EVT-1", "event_type": "PAYMENT.CAPTURE.COMPLETED"})

    assert paypal.verify(body, PAYPAL_HEADERS, _factory("WH-123", client))

    path = client.post.call_args.args[0]
    sent = client.post.call_args.kwargs["json"]
    assert path == paypal.VERIFY_PATH
    assert sent["webhook_id"] == "WH-123"
    assert sent["transmission_id"] == "tx-1"
    assert sent["webhook_event"]["id"] == "WH-EVT-1"


def test_paypal_verify_fails_closed():
    body = encode({"id": "WH-EVT-1"})
    client = mock.Mock()
    client.post.return_value = {"verification_status": "FAILURE"}
    assert not paypal.verify(body, PAYPAL_HEADERS, _factory("WH-123", client))

    headers = dict(PAYPAL_HEADERS)
    headers.pop("PayPal-Transmission-Sig")
    assert not paypal.verify(body, headers, _factory("WH-123", client))

    client.post.side_effect = GatewayRequestError("paypal", "timeout")
    assert not paypal.verify(body, PAYPAL_HEADERS, _factory("WH-123", client))

    assert not paypal.verify(body, PAYPAL_HEADERS, _factory("", client))
    assert not paypal.verify(body, PAYPAL_HEADERS, _factory("WH-123", None))
