"""Gateway configuration lookup backed by ``GatewaySetting`` with settings fallback."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.utils import timezone

from payments.models import Gateway, GatewaySetting
from payments.observability.logging import log_payment_event

CURRENCY_SYMBOLS: Dict[str, str] = {
    "USD": "$", "EUR": "€", "GBP": "£", "INR": "₹", "AUD": "A$", "CAD": "C$",
    "JPY": "¥", "CHF": "CHF", "SEK": "kr", "NOK": "kr", "DKK": "kr", "NZD": "NZ$",
    "SGD": "S$", "HKD": "HK$", "MXN": "MX$", "BRL": "R$", "PLN": "zł", "CZK": "Kč",
    "ZAR": "R", "AED": "د.إ", "THB": "฿", "MYR": "RM", "PHP": "₱", "TWD": "NT$",
    "KRW": "₩", "ILS": "₪", "NGN": "₦", "GHS": "GH₵", "KES": "KSh", "ARS": "$",
    "CLP": "$", "COP": "$", "PEN": "S/", "UYU": "$U",
}

SUPPORTED_CURRENCIES: Dict[str, List[str]] = {
    Gateway.STRIPE: [
        "USD", "EUR", "GBP", "AUD", "CAD", "JPY", "CHF", "SEK", "NOK", "DKK", "NZD", "SGD",
        "HKD", "MXN", "BRL", "PLN", "CZK", "ZAR", "AED", "THB", "MYR", "PHP", "TWD", "KRW",
    ],
    Gateway.RAZORPAY: ["INR", "USD", "EUR", "GBP", "SGD", "AED"],
    Gateway.PAYPAL: [
        "USD", "EUR", "GBP", "AUD", "CAD", "CHF", "JPY", "NZD", "SGD", "HKD", "SEK", "NOK",
        "DKK", "MXN", "BRL", "PLN", "CZK", "ZAR", "ILS", "PHP", "THB", "MYR", "TWD",
    ],
    Gateway.PAYSTACK: ["NGN", "GHS", "ZAR", "KES", "USD"],
    Gateway.MERCADOPAGO: ["BRL", "ARS", "MXN", "CLP", "COP", "PEN", "UYU", "USD"],
}

DEFAULT_CURRENCIES: Dict[str, str] = {
    Gateway.STRIPE: "USD",
    Gateway.RAZORPAY: "INR",
    Gateway.PAYPAL: "USD",
    Gateway.PAYSTACK: "NGN",
    Gateway.MERCADOPAGO: "BRL",
}


class GatewaySettingsError(ValueError):
    """Raised when a gateway configuration change is rejected."""


class CurrencyLocked(GatewaySettingsError):
    """Raised when changing or re-locking a locked gateway currency."""


class UnsupportedCurrency(GatewaySettingsError):
    """Raised when the requested currency is not accepted by the gateway."""


@dataclass(frozen=True)
class CurrencyConfig:
    currency: str
    locked: bool
    symbol: str


def setting_key(gateway: str, name: str) -> str:
    return f"{gateway}_{name}"


def _validate_gateway(gateway: str) -> str:
    if gateway not in Gateway.values:
        raise GatewaySettingsError(f"Unknown payment gateway '{gateway}'.")
    return gateway


def get_gateway_value(gateway: str, name: str, default: Any = None) -> Any:
    """Return a gateway setting from the database, falling back to Django settings."""
    _validate_gateway(gateway)
    stored = GatewaySetting.objects.filter(key=setting_key(gateway, name)).values_list("value", flat=True).first()
    if stored not in (None, ""):
        return stored
    env_defaults = (getattr(settings, "PAYMENT_GATEWAYS", {}) or {}).get(gateway, {})
    value = env_defaults.get(name)
    if value in (None, ""):
        return default
    return value


def set_gateway_value(gateway: str, name: str, value: Any) -> GatewaySetting:
    _validate_gateway(gateway)
    record, _ = GatewaySetting.objects.update_or_create(
        key=setting_key(gateway, name),
        defaults={"value": value},
    )
    return record


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def get_enabled_flag(gateway: str) -> Optional[bool]:
    """Explicit on/off flag, or ``None`` when the operator never set one."""
    value = get_gateway_value(gateway, "enabled")
    if value is None:
        return None
    return _as_bool(value)


def currency_symbol(currency: str) -> str:
    code = (currency or "").upper()
    return CURRENCY_SYMBOLS.get(code, code)


def get_currency_config(gateway: str) -> CurrencyConfig:
    currency = str(get_gateway_value(gateway, "currency", DEFAULT_CURRENCIES[gateway])).upper()
    locked = _as_bool(get_gateway_value(gateway, "currency_locked", False))
    return CurrencyConfig(currency=currency, locked=locked, symbol=currency_symbol(currency))


def set_currency(gateway: str, currency: str) -> CurrencyConfig:
    current = get_currency_config(gateway)
    if current.locked:
        raise CurrencyLocked(f"{gateway} currency is locked and cannot be changed.")
    code = (currency or "").strip().upper()
    supported = SUPPORTED_CURRENCIES[gateway]
    if code not in supported:
        raise UnsupportedCurrency(
            f"Invalid currency: {currency}. Supported currencies: {', '.join(supported)}"
        )
    set_gateway_value(gateway, "currency", code)
    log_payment_event(message="gateway currency updated", gateway=gateway, extra={"currency": code})
    return get_currency_config(gateway)


def lock_currency(gateway: str) -> CurrencyConfig:
    """Lock the gateway currency. Locking is one-way."""
    current = get_currency_config(gateway)
    if current.locked:
        raise CurrencyLocked(f"{gateway} currency is already locked.")
    # Persist the effective currency so later env changes cannot move it.
    set_gateway_value(gateway, "currency", current.currency)
    set_gateway_value(gateway, "currency_locked", True)
    log_payment_event(message="gateway currency locked", gateway=gateway, extra={"currency": current.currency})
    return get_currency_config(gateway)


def record_webhook_received(gateway: str) -> None:
    set_gateway_value(gateway, "last_webhook_at", timezone.now().isoformat())


__all__ = [
    "CURRENCY_SYMBOLS",
    "SUPPORTED_CURRENCIES",
    "DEFAULT_CURRENCIES",
    "CurrencyConfig",
    "CurrencyLocked",
    "GatewaySettingsError",
    "UnsupportedCurrency",
    "currency_symbol",
    "get_currency_config",
    "get_enabled_flag",
    "get_gateway_value",
    "lock_currency",
    "record_webhook_received",
    "set_currency",
    "set_gateway_value",
    "setting_key",
]
