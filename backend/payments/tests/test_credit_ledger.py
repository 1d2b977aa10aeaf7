import pytest
from django.core.exceptions import ValidationError

from payments.models import CreditLedgerEntry, Plan
from payments.services.credit_ledger import (
    CreditAccountNotFound,
    IdempotencyConflict,
    add_credits,
    apply_plan_credits,
    get_balance,
    reverse_credits,
)


@pytest.mark.django_db
def test_add_credits_applies_once_per_key(user):
    first = add_credits(user_id=user.pk, amount=100, description="Starter Pack", idempotency_key="credits_x_1")
    second = add_credits(user_id=user.pk, amount=100, description="Starter Pack", idempotency_key="credits_x_1")

    assert first.created
    assert not second.created
    assert second.entry.pk == first.entry.pk
    assert get_balance(user.pk) == 100
    assert CreditLedgerEntry.objects.filter(user=user).count() == 1


@pytest.mark.django_db
def test_add_credits_rejects_key_reuse_with_different_amount(user):
    add_credits(user_id=user.pk, amount=100, description="pack", idempotency_key="credits_x_2")
    with pytest.raises(IdempotencyConflict):
        add_credits(user_id=user.pk, amount=50, description="pack", idempotency_key="credits_x_2")
    assert get_balance(user.pk) == 100


@pytest.mark.django_db
def test_add_credits_validates_amount(user):
    with pytest.raises(ValueError):
        add_credits(user_id=user.pk, amount=0, description="nothing")
    with pytest.raises(ValueError):
        add_credits(user_id=user.pk, amount="lots", description="nothing")


@pytest.mark.django_db
def test_reverse_credits_floors_balance_at_zero_and_records_shortfall(user):
    add_credits(user_id=user.pk, amount=30, description="pack", idempotency_key="credits_x_3")

    result = reverse_credits(user_id=user.pk, amount=100, description="refund", idempotency_key="refund_x_3")

    assert result.delta == -30
    assert result.shortfall == 70
    assert get_balance(user.pk) == 0
    assert result.entry.amount == -30
    assert result.entry.metadata["requested"] == 100
    assert result.entry.metadata["shortfall"] == 70
    assert result.entry.metadata["balance_before"] == 30


@pytest.mark.django_db
def test_reverse_credits_is_idempotent(user):
    add_credits(user_id=user.pk, amount=200, description="pack", idempotency_key="credits_x_4")

    reverse_credits(user_id=user.pk, amount=100, description="refund", idempotency_key="refund_x_4")
    repeat = reverse_credits(user_id=user.pk, amount=100, description="refund", idempotency_key="refund_x_4")

    assert not repeat.created
    assert get_balance(user.pk) == 100


@pytest.mark.django_db
def test_reverse_credits_for_missing_user():
    with pytest.raises(CreditAccountNotFound):
        reverse_credits(user_id=999999, amount=10, description="refund")
    with pytest.raises(CreditAccountNotFound):
        get_balance(999999)


@pytest.mark.django_db
def test_apply_plan_credits_grants_once_per_reference(user):
    plan, _ = Plan.objects.update_or_create(name="starter", defaults={"display_name": "Starter",
                                                                       "included_credits": 500})

    apply_plan_credits(user_id=user.pk, plan=plan, gateway="stripe", reference="cs_1")
    apply_plan_credits(user_id=user.pk, plan=plan, gateway="stripe", reference="cs_1")

    assert get_balance(user.pk) == 500
    entry = CreditLedgerEntry.objects.get(user=user)
    assert entry.entry_type == CreditLedgerEntry.EntryType.PLAN_GRANT
    assert entry.idempotency_key == "plan_credits_stripe_cs_1"


@pytest.mark.django_db
def test_apply_plan_credits_skips_free_plan(user):
    plan, _ = Plan.objects.update_or_create(name="free", defaults={"display_name": "Free", "included_credits": 0})
    assert apply_plan_credits(user_id=user.pk, plan=plan, gateway="stripe", reference="cs_2") is None
    assert get_balance(user.pk) == 0


@pytest.mark.django_db
def test_ledger_entries_are_immutable(user):
    result = add_credits(user_id=user.pk, amount=10, description="pack")
    entry = result.entry
    entry.amount = 1000
    with pytest.raises(ValidationError):
        entry.save()
