"""Invoice derivation and totals.

Every mutation goes through :meth:`Invoices.recalculate_totals`, which
restores ``total = subtotal + tax - discount`` and
``amount_due = total - amount_paid``.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.payments import (
    Invoice,
    InvoiceStatus,
    PaymentProvider,
    PaymentStatus,
    Transaction,
)
from app.schemas.payments import InvoiceRead
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_or_404,
    percent_of,
    utcnow,
    validate_enum,
)
from app.services.payments.errors import StorageConflictError
from app.services.payments.upsert import find, upsert
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

NUMBER_ATTEMPTS = 3


def _number_pattern(prefix: str, year: int) -> re.Pattern:
    return re.compile(rf"^{re.escape(prefix)}-{year}-(\d+)$")


def line_item(description: str | None, quantity: int | None, unit_price: int | None, amount: int | None) -> dict[str, Any]:
    quantity = quantity or 1
    if amount is None:
        amount = (unit_price or 0) * quantity
    if unit_price is None:
        unit_price = amount // quantity if quantity else amount
    return {
        "description": description or "Payment",
        "quantity": quantity,
        "unit_price": unit_price,
        "amount": amount,
    }


class Invoices(ListResponseMixin):
    read_schema = InvoiceRead

    @staticmethod
    def next_number(db: Session, issued_at: datetime | None = None) -> str:
        """Next ``PREFIX-YYYY-NNNN`` number for the year of ``issued_at``."""
        year = (issued_at or utcnow()).year
        prefix = settings.invoice_number_prefix
        pattern = _number_pattern(prefix, year)
        numbers = (
            db.query(Invoice.number)
            .filter(Invoice.number.like(f"{prefix}-{year}-%"))
            .all()
        )
        highest = 0
        for (number,) in numbers:
            match = pattern.match(number or "")
            if match:
                highest = max(highest, int(match.group(1)))
        return f"{prefix}-{year}-{highest + 1:04d}"

    @staticmethod
    def recalculate_totals(
        invoice: Invoice,
        *,
        tax_rate: Decimal | float | str | None = None,
        from_lines: bool = True,
    ) -> Invoice:
        if from_lines and invoice.line_items:
            invoice.subtotal = sum(int(item.get("amount") or 0) for item in invoice.line_items)
        invoice.subtotal = invoice.subtotal or 0
        if tax_rate is not None:
            invoice.tax = percent_of(invoice.subtotal, tax_rate)
        invoice.tax = invoice.tax or 0
        invoice.discount = invoice.discount or 0
        invoice.amount_paid = invoice.amount_paid or 0
        invoice.total = invoice.subtotal + invoice.tax - invoice.discount
        invoice.amount_due = invoice.total - invoice.amount_paid
        return invoice

    @staticmethod
    def for_transaction(db: Session, transaction: Transaction) -> Invoice | None:
        return (
            db.query(Invoice)
            .filter(Invoice.transaction_id == transaction.id)
            .first()
        )

    @staticmethod
    def unlinked_for_payment(db: Session, transaction: Transaction) -> Invoice | None:
        """Provider invoice that names this payment but arrived before it."""
        return (
            db.query(Invoice)
            .filter(Invoice.provider == transaction.provider)
            .filter(Invoice.payment_ref == transaction.external_id)
            .filter(Invoice.transaction_id.is_(None))
            .first()
        )

    @staticmethod
    def create_from_transaction(db: Session, transaction: Transaction) -> Invoice:
        """Invoice for a transaction; returns the existing one on replay.

        A provider invoice that was paid before the payment itself was seen
        is linked to the transaction instead of numbering a second invoice.
        """
        existing = Invoices.for_transaction(db, transaction)
        if existing:
            return existing

        pending = Invoices.unlinked_for_payment(db, transaction)
        if pending is not None:
            pending.transaction = transaction
            if pending.customer_id is None:
                pending.customer_id = transaction.customer_id
            if pending.subscription_id is None:
                pending.subscription_id = transaction.subscription_id
            db.flush()
            logger.info(
                "Linked invoice %s to transaction %s", pending.number, transaction.external_id
            )
            return pending

        now = utcnow()
        succeeded = transaction.status == PaymentStatus.succeeded
        customer = transaction.customer
        for _attempt in range(NUMBER_ATTEMPTS):
            invoice = Invoice(
                number=Invoices.next_number(db, now),
                customer_id=transaction.customer_id,
                subscription_id=transaction.subscription_id,
                transaction_id=transaction.id,
                provider=transaction.provider,
                status=InvoiceStatus.paid if succeeded else InvoiceStatus.open,
                currency=transaction.currency,
                billing_name=customer.name if customer else None,
                billing_email=customer.email if customer else None,
                billing_address=dict(customer.billing_address) if customer and customer.billing_address else None,
                line_items=[
                    line_item(transaction.description, 1, transaction.amount, transaction.amount)
                ],
                amount_paid=transaction.amount if succeeded else 0,
                invoice_date=now,
                paid_at=now if succeeded else None,
            )
            Invoices.recalculate_totals(invoice)
            try:
                with db.begin_nested():
                    db.add(invoice)
                    db.flush()
            except IntegrityError:
                existing = Invoices.for_transaction(db, transaction)
                if existing:
                    return existing
                logger.info("Invoice number %s taken, retrying", invoice.number)
                continue
            logger.info(
                "Created invoice %s for transaction %s", invoice.number, transaction.external_id
            )
            return invoice
        raise StorageConflictError("Invoice", transaction.provider.value, transaction.external_id)

    @staticmethod
    def upsert_provider_invoice(
        db: Session,
        provider: PaymentProvider,
        external_id: str,
        attributes: dict[str, Any],
    ) -> tuple[Invoice, bool]:
        """Snapshot of a provider-side invoice; numbered on first sight."""
        data = dict(attributes)
        if find(db, Invoice, provider, external_id) is None:
            data["number"] = Invoices.next_number(db, data.get("invoice_date"))
        invoice, created = upsert(db, Invoice, provider, external_id, data)
        Invoices.recalculate_totals(invoice, from_lines=False)
        db.flush()
        return invoice, created

    @staticmethod
    def mark_paid(db: Session, invoice: Invoice, paid_at: datetime | None = None) -> Invoice:
        invoice.status = InvoiceStatus.paid
        invoice.amount_paid = invoice.total
        invoice.paid_at = paid_at or utcnow()
        Invoices.recalculate_totals(invoice, from_lines=False)
        db.flush()
        return invoice

    @staticmethod
    def mark_open(db: Session, invoice: Invoice) -> Invoice:
        if invoice.status in (InvoiceStatus.paid, InvoiceStatus.void):
            logger.info(
                "Invoice %s is %s, not reopening", invoice.number, invoice.status.value
            )
            return invoice
        invoice.status = InvoiceStatus.open
        db.flush()
        return invoice

    @staticmethod
    def mark_void(db: Session, invoice: Invoice) -> Invoice:
        invoice.status = InvoiceStatus.void
        invoice.voided_at = utcnow()
        db.flush()
        return invoice

    @staticmethod
    def get(db: Session, invoice_id: str) -> Invoice:
        return get_or_404(db, Invoice, invoice_id)

    @staticmethod
    def list(
        db: Session,
        status: str | None = None,
        customer_id: str | None = None,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(Invoice)
        if status:
            query = query.filter(Invoice.status == validate_enum(status, InvoiceStatus, "status"))
        if customer_id:
            query = query.filter(Invoice.customer_id == coerce_uuid(customer_id))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": Invoice.created_at,
                "number": Invoice.number,
                "total": Invoice.total,
            },
        )
        return apply_pagination(query, limit, offset).all()
