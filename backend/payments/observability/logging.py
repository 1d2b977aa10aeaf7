"""Structured logging helpers for payment processing."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .metrics import SIDE_EFFECT_FAILURE_COUNT

logger = logging.getLogger("payments")


def log_payment_event(*, message: str, gateway: Optional[str] = None, user_id: Optional[Any] = None,
                      event_id: Optional[str] = None, extra: Optional[Dict[str, Any]] = None,
                      level: int = logging.INFO) -> None:
    payload: Dict[str, Any] = {"message": message}
    if gateway:
        payload["gateway"] = gateway
    if user_id is not None:
        payload["user_id"] = str(user_id)
    if event_id:
        payload["event_id"] = event_id
    if extra:
        payload.update(extra)
    logger.log(level, payload)


def report_side_effect_failure(*, operation: str, exc: BaseException, gateway: Optional[str] = None,
                               user_id: Optional[Any] = None, extra: Optional[Dict[str, Any]] = None) -> None:
    """Single sink for failures of best-effort work that must not undo a ledger write."""
    payload: Dict[str, Any] = {
        "message": "payment side effect failed",
        "operation": operation,
        "error": str(exc),
        "error_type": type(exc).__name__,
    }
    if gateway:
        payload["gateway"] = gateway
    if user_id is not None:
        payload["user_id"] = str(user_id)
    if extra:
        payload.update(extra)
    SIDE_EFFECT_FAILURE_COUNT.labels(operation=operation).inc()
    logger.error(payload, exc_info=(type(exc), exc, exc.__traceback__))
