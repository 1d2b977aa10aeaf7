"""Invoice numbering and issuance for completed payment transactions."""
from __future__ import annotations

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from payments.models import Invoice, PaymentTransaction

logger = logging.getLogger(__name__)

_MAX_NUMBERING_ATTEMPTS = 3


class InvoiceError(Exception):
    """Raised when an invoice cannot be issued for a transaction."""


def next_invoice_number(*, year: int) -> str:
    prefix = f"INV-{year}-"
    last = (
        Invoice.objects.filter(invoice_number__startswith=prefix)
        .order_by("-invoice_number")
        .values_list("invoice_number", flat=True)
        .first()
    )
    sequence = int(last.rsplit("-", 1)[-1]) + 1 if last else 1
    return f"{prefix}{sequence:04d}"


def generate_invoice_for_transaction(payment: PaymentTransaction) -> Invoice:
    """Issue the invoice for ``payment``; returns the existing one when already issued."""

    if payment.status != PaymentTransaction.Status.COMPLETED:
        raise InvoiceError(f"Cannot invoice transaction {payment.pk} in status {payment.status}.")

    existing = Invoice.objects.filter(transaction=payment).first()
    if existing:
        return existing

    issued_at = timezone.now()
    for attempt in range(1, _MAX_NUMBERING_ATTEMPTS + 1):
        number = next_invoice_number(year=issued_at.year)
        try:
            with transaction.atomic():
                invoice = Invoice.objects.create(
                    transaction=payment,
                    invoice_number=number,
                    amount=payment.amount,
                    currency=payment.currency,
                    issued_at=issued_at,
                )
        except IntegrityError:
            existing = Invoice.objects.filter(transaction=payment).first()
            if existing:
                return existing
            if attempt == _MAX_NUMBERING_ATTEMPTS:
                raise
            logger.info("Invoice number %s taken, retrying", number)
            continue
        logger.info("Issued invoice %s for transaction %s", number, payment.pk)
        return invoice
    raise InvoiceError("Unable to allocate an invoice number.")  # pragma: no cover


__all__ = ["InvoiceError", "generate_invoice_for_transaction", "next_invoice_number"]
