"""HMAC helpers shared by the gateway signature verifiers."""
from __future__ import annotations

import hashlib
import hmac
from typing import Dict, Mapping, Optional, Union

Body = Union[bytes, str]


def _to_bytes(value: Body) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def hmac_hex_digest(secret: str, message: Body, *, algorithm=hashlib.sha256) -> str:
    return hmac.new(_to_bytes(secret), _to_bytes(message), algorithm).hexdigest()


def signatures_match(expected: str, provided: Optional[str]) -> bool:
    """Constant-time comparison that rejects empty values."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.strip().lower(), provided.strip().lower())


def get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def parse_signature_header(value: Optional[str]) -> Dict[str, str]:
    """Split ``k1=v1,k2=v2`` signature headers into a dict."""
    parts: Dict[str, str] = {}
    if not value:
        return parts
    for chunk in value.split(","):
        key, sep, item = chunk.partition("=")
        if sep:
            parts[key.strip()] = item.strip()
    return parts


__all__ = ["get_header", "hmac_hex_digest", "parse_signature_header", "signatures_match"]
