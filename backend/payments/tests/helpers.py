"""Shared doubles and signing helpers for the payments tests."""
import hashlib
import hmac
import json


class RecordingNotifier:
    """Collects notification calls instead of sending email."""

    def __init__(self):
        self.calls = []

    def purchase_confirmed(self, payment):
        self.calls.append(("purchase_confirmed", payment.pk))

    def membership_upgraded(self, user_id, plan_name):
        self.calls.append(("membership_upgraded", user_id, plan_name))

    def payment_failed(self, user_id, *, amount=None, currency="", reason=""):
        self.calls.append(("payment_failed", user_id, reason))

    def account_suspended(self, user_id, *, reason):
        self.calls.append(("account_suspended", user_id))

    def names(self):
        return [call[0] for call in self.calls]


def razorpay_signature(body: bytes, secret: str = "rzp_webhook_secret") -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def paystack_signature(body: bytes, secret: str = "sk_test_paystack") -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def encode(payload) -> bytes:
    return json.dumps(payload).encode()
