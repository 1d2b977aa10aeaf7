"""User credit ledger with idempotent, single-statement balance mutations."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import F, Value
from django.db.models.functions import Greatest

from payments.models import CreditLedgerEntry, Plan
from payments.observability.logging import log_payment_event
from payments.observability.metrics import CREDIT_MUTATION_COUNT


class CreditLedgerError(Exception):
    """Base exception for credit ledger operations."""


class CreditAccountNotFound(CreditLedgerError):
    """Raised when the user whose balance should change does not exist."""


class IdempotencyConflict(CreditLedgerError):
    """Raised when an idempotency key is reused for a different mutation."""


@dataclass(frozen=True)
class CreditLedgerResult:
    user_id: Any
    entry: Optional[CreditLedgerEntry]
    created: bool
    delta: int
    requested: int = 0

    @property
    def shortfall(self) -> int:
        return max(self.requested - abs(self.delta), 0)


def add_credits(
    *,
    user_id: Any,
    amount: Union[int, str],
    description: str,
    idempotency_key: Optional[str] = None,
    entry_type: str = CreditLedgerEntry.EntryType.PURCHASE,
    reference: str = "",
    metadata: Optional[Dict[str, Any]] = None,
) -> CreditLedgerResult:
    """Increase a user's balance by ``amount`` exactly once per ``idempotency_key``."""

    credits = _to_positive_credits(amount)
    User = get_user_model()

    with transaction.atomic():
        existing = _existing_entry(idempotency_key, user_id=user_id, amount=credits)
        if existing is not None:
            return CreditLedgerResult(user_id=user_id, entry=existing, created=False, delta=existing.amount,
                                      requested=credits)

        entry = _create_entry(
            user_id=user_id,
            amount=credits,
            entry_type=entry_type,
            description=description,
            idempotency_key=idempotency_key,
            reference=reference,
            metadata=metadata,
        )
        if entry is None:
            existing = _existing_entry(idempotency_key, user_id=user_id, amount=credits)
            return CreditLedgerResult(user_id=user_id, entry=existing, created=False, delta=credits,
                                      requested=credits)

        updated = User.objects.filter(pk=user_id).update(credits=F("credits") + credits)
        if not updated:
            raise CreditAccountNotFound(f"User {user_id} does not exist.")

    CREDIT_MUTATION_COUNT.labels(entry_type=entry_type).inc()
    log_payment_event(message="credits added", user_id=user_id,
                      extra={"credits": credits, "entry_type": str(entry_type), "reference": reference})
    return CreditLedgerResult(user_id=user_id, entry=entry, created=True, delta=credits, requested=credits)


def reverse_credits(
    *,
    user_id: Any,
    amount: Union[int, str],
    description: str,
    idempotency_key: Optional[str] = None,
    entry_type: str = CreditLedgerEntry.EntryType.REFUND_REVERSAL,
    reference: str = "",
    metadata: Optional[Dict[str, Any]] = None,
) -> CreditLedgerResult:
    """Remove up to ``amount`` credits, flooring the balance at zero.

    The unrecovered part of the request is not carried as debt; it is stored
    as ``shortfall`` in the entry metadata.
    """

    credits = _to_positive_credits(amount)
    User = get_user_model()

    with transaction.atomic():
        existing = _existing_entry(idempotency_key, user_id=user_id, amount=-credits, compare_amount=False)
        if existing is not None:
            return CreditLedgerResult(user_id=user_id, entry=existing, created=False, delta=existing.amount,
                                      requested=credits)

        balance = (
            User.objects.select_for_update()
            .filter(pk=user_id)
            .values_list("credits", flat=True)
            .first()
        )
        if balance is None:
            raise CreditAccountNotFound(f"User {user_id} does not exist.")

        applied = min(balance, credits)
        entry = _create_entry(
            user_id=user_id,
            amount=-applied,
            entry_type=entry_type,
            description=description,
            idempotency_key=idempotency_key,
            reference=reference,
            metadata=_merge_metadata(
                metadata,
                {"requested": credits, "shortfall": credits - applied, "balance_before": balance},
            ),
        )
        if entry is None:
            existing = _existing_entry(idempotency_key, user_id=user_id, amount=-credits, compare_amount=False)
            return CreditLedgerResult(user_id=user_id, entry=existing, created=False,
                                      delta=existing.amount if existing else 0, requested=credits)

        User.objects.filter(pk=user_id).update(credits=Greatest(F("credits") - credits, Value(0)))

    CREDIT_MUTATION_COUNT.labels(entry_type=entry_type).inc()
    log_payment_event(message="credits reversed", user_id=user_id,
                      extra={"requested": credits, "applied": applied, "reference": reference})
    return CreditLedgerResult(user_id=user_id, entry=entry, created=True, delta=-applied, requested=credits)


def apply_plan_credits(*, user_id: Any, plan: Plan, gateway: str, reference: str) -> Optional[CreditLedgerResult]:
    """Grant the plan's included credits once per gateway reference."""

    if not plan or plan.included_credits <= 0:
        return None
    return add_credits(
        user_id=user_id,
        amount=plan.included_credits,
        description=f"{plan.display_name} plan credits",
        idempotency_key=f"plan_credits_{gateway}_{reference}",
        entry_type=CreditLedgerEntry.EntryType.PLAN_GRANT,
        reference=reference,
        metadata={"plan": plan.name, "gateway": gateway},
    )


def get_balance(user_id: Any) -> int:
    balance = get_user_model().objects.filter(pk=user_id).values_list("credits", flat=True).first()
    if balance is None:
        raise CreditAccountNotFound(f"User {user_id} does not exist.")
    return balance


def _create_entry(*, user_id, amount, entry_type, description, idempotency_key, reference, metadata):
    """Insert the ledger row; ``None`` when a concurrent writer already used the key."""
    try:
        with transaction.atomic():
            return CreditLedgerEntry.objects.create(
                user_id=user_id,
                amount=amount,
                entry_type=entry_type,
                description=(description or "")[:255],
                idempotency_key=idempotency_key,
                reference=reference or "",
                metadata=metadata or {},
            )
    except IntegrityError:
        if idempotency_key and CreditLedgerEntry.objects.filter(idempotency_key=idempotency_key).exists():
            return None
        raise


def _existing_entry(idempotency_key, *, user_id, amount, compare_amount=True) -> Optional[CreditLedgerEntry]:
    if not idempotency_key:
        return None
    existing = CreditLedgerEntry.objects.filter(idempotency_key=idempotency_key).first()
    if existing is None:
        return None
    if str(existing.user_id) != str(user_id):
        raise IdempotencyConflict("Idempotency key already used for a different user.")
    if compare_amount and existing.amount != amount:
        raise IdempotencyConflict("Idempotency key already used with a different amount.")
    return existing


def _to_positive_credits(value: Union[int, str]) -> int:
    try:
        credits = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid credit amount: {value!r}") from exc
    if credits <= 0:
        raise ValueError("Credit amount must be positive.")
    return credits


def _merge_metadata(base: Optional[dict], extra: Optional[dict]) -> dict:
    result = dict(base or {})
    if extra:
        result.update(extra)
    return result


__all__ = [
    "CreditAccountNotFound",
    "CreditLedgerError",
    "CreditLedgerResult",
    "IdempotencyConflict",
    "add_credits",
    "apply_plan_credits",
    "get_balance",
    "reverse_credits",
]
