"""Gateway API clients and the resettable factory that caches them."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
import stripe
from django.conf import settings

from payments.models import Gateway

from . import settings_store

logger = logging.getLogger(__name__)


class GatewayNotConfigured(RuntimeError):
    """Raised when an operation needs credentials that are not configured."""


class GatewayRequestError(RuntimeError):
    """Raised when a gateway API call fails or times out."""

    def __init__(self, gateway: str, message: str, *, status_code: Optional[int] = None):
        super().__init__(f"[{gateway}] {message}")
        self.gateway = gateway
        self.status_code = status_code


@dataclass(frozen=True)
class CredentialSpec:
    secret: str
    public: str
    webhook: str


CREDENTIALS: Dict[str, CredentialSpec] = {
    Gateway.STRIPE: CredentialSpec(secret="secret_key", public="publishable_key", webhook="webhook_secret"),
    Gateway.RAZORPAY: CredentialSpec(secret="key_secret", public="key_id", webhook="webhook_secret"),
    Gateway.PAYPAL: CredentialSpec(secret="client_secret", public="client_id", webhook="webhook_id"),
    # Paystack signs webhooks with the account secret key.
    Gateway.PAYSTACK: CredentialSpec(secret="secret_key", public="public_key", webhook="secret_key"),
    Gateway.MERCADOPAGO: CredentialSpec(secret="access_token", public="public_key", webhook="webhook_secret"),
}

DEFAULT_BASE_URLS = {
    Gateway.RAZORPAY: "https://api.razorpay.com/v1",
    Gateway.PAYSTACK: "https://api.paystack.co",
    Gateway.MERCADOPAGO: "https://api.mercadopago.com",
}

PAYPAL_BASE_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}


def _timeout() -> float:
    return float(getattr(settings, "PAYMENT_GATEWAY_TIMEOUT_SECONDS", 10))


class StripeClient:
    """Thin wrapper passing the configured key on every Stripe SDK call."""

    gateway = Gateway.STRIPE

    def __init__(self, *, secret_key: str):
        self._api_key = secret_key

    def _call(self, operation: str, func, *args, **kwargs):
        try:
            return func(*args, api_key=self._api_key, **kwargs)
        except stripe.StripeError as exc:
            logger.warning("Stripe %s failed: %s", operation, exc)
            raise GatewayRequestError(self.gateway, f"{operation} failed: {exc}",
                                      status_code=getattr(exc, "http_status", None)) from exc

    def retrieve_subscription(self, subscription_id: str):
        return self._call("retrieve_subscription", stripe.Subscription.retrieve, subscription_id)

    def create_refund(self, payment_ref: str, *, amount_minor: Optional[int] = None, reason: Optional[str] = None):
        params: Dict[str, Any] = {}
        if payment_ref.startswith("ch_"):
            params["charge"] = payment_ref
        else:
            params["payment_intent"] = payment_ref
        if amount_minor is not None:
            params["amount"] = amount_minor
        if reason:
            params["metadata"] = {"reason": reason}
        return self._call("create_refund", stripe.Refund.create, **params)


class RestGatewayClient:
    """JSON-over-HTTP client for gateways without an SDK dependency."""

    def __init__(self, gateway: str, *, base_url: str, auth=None, headers: Optional[Dict[str, str]] = None,
                 session: Optional[requests.Session] = None):
        self.gateway = gateway
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        if auth is not None:
            self.session.auth = auth
        self.session.headers.update({"Content-Type": "application/json", **(headers or {})})

    def _auth_headers(self) -> Dict[str, str]:
        return {}

    def request(self, method: str, path: str, *, json: Any = None, params: Optional[Dict[str, Any]] = None,
                headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        merged_headers = {**self._auth_headers(), **(headers or {})}
        try:
            response = self.session.request(
                method, url, json=json, params=params, headers=merged_headers, timeout=_timeout()
            )
        except requests.RequestException as exc:
            raise GatewayRequestError(self.gateway, f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise GatewayRequestError(
                self.gateway,
                f"{method} {path} returned {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayRequestError(self.gateway, f"{method} {path} returned invalid JSON") from exc

    def get(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("POST", path, **kwargs)


class PayPalClient(RestGatewayClient):
    """PayPal REST client using OAuth2 client-credential tokens."""

    def __init__(self, *, client_id: str, client_secret: str, mode: str = "sandbox",
                 session: Optional[requests.Session] = None):
        base_url = PAYPAL_BASE_URLS.get(mode, PAYPAL_BASE_URLS["sandbox"])
        super().__init__(Gateway.PAYPAL, base_url=base_url, session=session)
        self._client_id = client_id
        self._client_secret = client_secret
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    def _fetch_token(self) -> str:
        try:
            response = self.session.post(
                f"{self.base_url}/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self._client_id, self._client_secret),
                headers={"Accept": "application/json", "Content-Type": "application/x-www-form-urlencoded"},
                timeout=_timeout(),
            )
        except requests.RequestException as exc:
            raise GatewayRequestError(self.gateway, f"OAuth token request failed: {exc}") from exc
        if response.status_code >= 400:
            raise GatewayRequestError(self.gateway, f"OAuth token request returned {response.status_code}",
                                      status_code=response.status_code)
        body = response.json()
        self._access_token = body["access_token"]
        # Refresh a minute before PayPal expires the token.
        self._token_expires_at = time.monotonic() + max(int(body.get("expires_in", 0)) - 60, 0)
        return self._access_token

    def _auth_headers(self) -> Dict[str, str]:
        token = self._access_token
        if not token or time.monotonic() >= self._token_expires_at:
            token = self._fetch_token()
        return {"Authorization": f"Bearer {token}"}


class GatewayClientFactory:
    """Builds and caches one API client per gateway.

    The cache is the only process-level state in the payments domain; call
    :meth:`reset` after credentials change so the next request rebuilds the
    client from fresh settings.
    """

    def __init__(self):
        self._clients: Dict[str, Any] = {}

    def _value(self, gateway: str, name: str) -> str:
        return str(settings_store.get_gateway_value(gateway, name, "") or "")

    def is_configured(self, gateway: str) -> bool:
        spec = CREDENTIALS.get(gateway)
        if spec is None:
            return False
        return bool(self._value(gateway, spec.secret) and self._value(gateway, spec.public))

    def is_enabled(self, gateway: str) -> bool:
        if not self.is_configured(gateway):
            return False
        flag = settings_store.get_enabled_flag(gateway)
        return True if flag is None else flag

    def get_webhook_secret(self, gateway: str) -> str:
        spec = CREDENTIALS.get(gateway)
        if spec is None:
            return ""
        return self._value(gateway, spec.webhook)

    def get_config(self, gateway: str) -> Dict[str, Any]:
        """Public configuration for checkout pages; never includes secrets."""
        spec = CREDENTIALS[gateway]
        enabled = self.is_enabled(gateway)
        currency = settings_store.get_currency_config(gateway)
        return {
            "gateway": gateway,
            "enabled": enabled,
            "configured": self.is_configured(gateway),
            "public_key": self._value(gateway, spec.public) if enabled else None,
            "currency": currency.currency,
            "currency_symbol": currency.symbol,
            "currency_locked": currency.locked,
            "supported_currencies": list(settings_store.SUPPORTED_CURRENCIES[gateway]),
        }

    def get_client(self, gateway: str):
        """Return the cached client, or ``None`` when the gateway is not configured."""
        if gateway in self._clients:
            return self._clients[gateway]
        if not self.is_configured(gateway):
            return None
        client = self._build(gateway)
        self._clients[gateway] = client
        logger.info("Initialised %s gateway client", gateway)
        return client

    def require_client(self, gateway: str):
        client = self.get_client(gateway)
        if client is None:
            raise GatewayNotConfigured(f"{gateway} is not configured.")
        return client

    def reset(self, gateway: Optional[str] = None) -> None:
        if gateway is None:
            self._clients.clear()
        else:
            self._clients.pop(gateway, None)

    def _build(self, gateway: str):
        if gateway == Gateway.STRIPE:
            return StripeClient(secret_key=self._value(gateway, "secret_key"))
        if gateway == Gateway.PAYPAL:
            return PayPalClient(
                client_id=self._value(gateway, "client_id"),
                client_secret=self._value(gateway, "client_secret"),
                mode=self._value(gateway, "mode") or "sandbox",
            )
        base_url = self._value(gateway, "base_url") or DEFAULT_BASE_URLS[gateway]
        if gateway == Gateway.RAZORPAY:
            return RestGatewayClient(
                gateway,
                base_url=base_url,
                auth=(self._value(gateway, "key_id"), self._value(gateway, "key_secret")),
            )
        if gateway == Gateway.PAYSTACK:
            return RestGatewayClient(
                gateway,
                base_url=base_url,
                headers={"Authorization": f"Bearer {self._value(gateway, 'secret_key')}"},
            )
        if gateway == Gateway.MERCADOPAGO:
            return RestGatewayClient(
                gateway,
                base_url=base_url,
                headers={"Authorization": f"Bearer {self._value(gateway, 'access_token')}"},
            )
        raise GatewayNotConfigured(f"Unknown gateway '{gateway}'.")


_default_factory = GatewayClientFactory()


def get_client_factory() -> GatewayClientFactory:
    return _default_factory


__all__ = [
    "CREDENTIALS",
    "GatewayClientFactory",
    "GatewayNotConfigured",
    "GatewayRequestError",
    "PayPalClient",
    "RestGatewayClient",
    "StripeClient",
    "get_client_factory",
]
