"""Amount, timestamp and metadata coercion shared by the gateway normalizers."""
from __future__ import annotations

import json
from datetime import datetime, timezone as dt_timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Optional

from django.utils.dateparse import parse_datetime

TWO_PLACES = Decimal("0.01")

ZERO_DECIMAL_CURRENCIES: set[str] = {
    "bif",
    "clp",
    "djf",
    "gnf",
    "jpy",
    "kmf",
    "krw",
    "mga",
    "pyg",
    "rwf",
    "ugx",
    "vnd",
    "vuv",
    "xaf",
    "xof",
    "xpf",
}


def _divisor(currency: Optional[str]) -> Decimal:
    return Decimal("1") if currency and currency.lower() in ZERO_DECIMAL_CURRENCIES else Decimal("100")


def convert_minor_amount(value: Any, currency: Optional[str]) -> Decimal:
    """Minor units (cents, paise, kobo) to major units."""
    if value in (None, "", [], {}):
        return Decimal("0.00")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0.00")
    return (amount / _divisor(currency)).quantize(TWO_PLACES)


def to_minor_amount(value: Decimal, currency: Optional[str]) -> int:
    return int((Decimal(str(value)) * _divisor(currency)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def major_amount(value: Any) -> Decimal:
    """Parse an amount the gateway already reports in major units."""
    if value in (None, "", [], {}):
        return Decimal("0.00")
    try:
        return Decimal(str(value)).quantize(TWO_PLACES)
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0.00")


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """Accept unix seconds or ISO-8601 strings; returns an aware UTC datetime."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=dt_timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.replace(".", "", 1).isdigit()):
        try:
            return datetime.fromtimestamp(float(value), tz=dt_timezone.utc)
        except (OverflowError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = parse_datetime(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed is None:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=dt_timezone.utc)
    return None


def parse_json_metadata(value: Any) -> Dict[str, Any]:
    """Metadata smuggled through a gateway string field (custom_id, external_reference)."""
    if isinstance(value, dict):
        return dict(value)
    if not value or not isinstance(value, str):
        return {}
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        return {}
    return decoded if isinstance(decoded, dict) else {}


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_str(value: Any) -> str:
    return "" if value is None else str(value)


__all__ = [
    "ZERO_DECIMAL_CURRENCIES",
    "as_dict",
    "as_str",
    "coerce_timestamp",
    "convert_minor_amount",
    "major_amount",
    "parse_json_metadata",
    "to_minor_amount",
]
