"""Helpers shared by the provider event handlers.

Linkage lookups tolerate missing rows: a payment can arrive before its
customer or subscription is known, in which case the reference stays null.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.payments import (
    PaymentCustomer,
    PaymentProvider,
    PaymentStatus,
    Refund,
    RefundStatus,
    Subscription,
    Transaction,
)
from app.services.events import emit_event
from app.services.events.types import Event, EventType
from app.services.payments.errors import MalformedPayloadError
from app.services.payments.invoices import Invoices
from app.services.payments.upsert import find, upsert

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)

# Statuses a late success or failure delivery must not overwrite
AFTER_SUCCESS = {
    PaymentStatus.refunded,
    PaymentStatus.partially_refunded,
    PaymentStatus.disputed,
}
AFTER_FAILURE = {PaymentStatus.succeeded} | AFTER_SUCCESS


@dataclass
class ReconciliationContext:
    """Per-envelope state collected while a handler runs.

    Event ids and invoice ids are acted on only after the ledger transaction
    commits.
    """

    provider: PaymentProvider
    event_type: str
    occurred_at: datetime | None = None
    event_ids: list[UUID] = field(default_factory=list)
    invoice_ids: list[UUID] = field(default_factory=list)

    def emit(self, db: Session, event_type: EventType, payload: dict[str, Any], **ids) -> Event:
        event = emit_event(db, event_type, payload, provider=self.provider.value, **ids)
        self.event_ids.append(event.event_id)
        return event

    def request_document(self, invoice) -> None:
        if invoice.has_document or invoice.id in self.invoice_ids:
            return
        self.invoice_ids.append(invoice.id)


def parse_payload(model: type[PayloadT], payload: dict, context: ReconciliationContext) -> PayloadT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedPayloadError(
            context.provider.value, context.event_type, str(exc)
        ) from exc


def find_customer(db: Session, provider: PaymentProvider, external_id: str | None) -> PaymentCustomer | None:
    if not external_id:
        return None
    customer = find(db, PaymentCustomer, provider, external_id)
    if customer is None:
        logger.info("No local %s customer for %s", provider.value, external_id)
    return customer


def find_subscription(db: Session, provider: PaymentProvider, external_id: str | None) -> Subscription | None:
    if not external_id:
        return None
    return find(db, Subscription, provider, external_id)


def find_transaction(db: Session, provider: PaymentProvider, external_id: str | None) -> Transaction | None:
    if not external_id:
        return None
    return find(db, Transaction, provider, external_id)


def transaction_event_payload(transaction: Transaction, **extra) -> dict[str, Any]:
    payload = {
        "transaction_id": str(transaction.id),
        "external_id": transaction.external_id,
        "amount": transaction.amount,
        "currency": transaction.currency,
        "status": transaction.status.value,
        "description": transaction.description,
    }
    payload.update(extra)
    return payload


def succeed_payment(
    db: Session,
    context: ReconciliationContext,
    external_id: str,
    attributes: dict[str, Any],
) -> Transaction:
    """Record a successful payment, invoice it, and emit once per transition.

    A transaction that was already refunded or disputed keeps its status; a
    late success delivery only refreshes the other attributes.
    """
    existing = find_transaction(db, context.provider, external_id)
    previous = existing.status if existing else None
    data = {**attributes, "status": PaymentStatus.succeeded, "failure_reason": None}
    if previous in AFTER_SUCCESS:
        logger.info(
            "%s transaction %s is %s, keeping status",
            context.provider.value,
            external_id,
            previous.value,
        )
        data.pop("status")
    transaction, _ = upsert(db, Transaction, context.provider, external_id, data)
    if previous in AFTER_SUCCESS:
        return transaction

    invoice = Invoices.create_from_transaction(db, transaction)
    context.request_document(invoice)
    if previous != PaymentStatus.succeeded:
        context.emit(
            db,
            EventType.payment_succeeded,
            transaction_event_payload(transaction, invoice_number=invoice.number),
            customer_id=transaction.customer_id,
            transaction_id=transaction.id,
            subscription_id=transaction.subscription_id,
        )
    return transaction


def fail_payment(
    db: Session,
    context: ReconciliationContext,
    external_id: str,
    attributes: dict[str, Any],
    reason: str,
) -> Transaction:
    existing = find_transaction(db, context.provider, external_id)
    if existing is not None and existing.status in AFTER_FAILURE:
        logger.info(
            "Ignoring failure for %s transaction %s already %s",
            context.provider.value,
            external_id,
            existing.status.value,
        )
        return existing
    transaction, _ = upsert(
        db,
        Transaction,
        context.provider,
        external_id,
        {**attributes, "status": PaymentStatus.failed, "failure_reason": reason},
    )
    if existing is None or existing.status != PaymentStatus.failed:
        context.emit(
            db,
            EventType.payment_failed,
            transaction_event_payload(transaction, failure_reason=reason),
            customer_id=transaction.customer_id,
            transaction_id=transaction.id,
            subscription_id=transaction.subscription_id,
        )
    return transaction


def _refunded_total(db: Session, transaction: Transaction, exclude_id: UUID | None = None) -> int:
    query = (
        db.query(func.coalesce(func.sum(Refund.amount), 0))
        .filter(Refund.transaction_id == transaction.id)
        .filter(Refund.status != RefundStatus.failed)
        .filter(Refund.status != RefundStatus.canceled)
    )
    if exclude_id is not None:
        query = query.filter(Refund.id != exclude_id)
    return int(query.scalar() or 0)


def record_refund(
    db: Session,
    context: ReconciliationContext,
    transaction: Transaction,
    external_id: str,
    attributes: dict[str, Any],
) -> Refund | None:
    """Upsert one provider refund under ``transaction``.

    A refund that would push the refunded sum past the transaction amount
    is not recorded. Emits ``refund.processed`` only when the row is new.
    """
    existing = find(db, Refund, context.provider, external_id)
    amount = int(attributes.get("amount") or 0)
    already_refunded = _refunded_total(db, transaction, exclude_id=existing.id if existing else None)
    if transaction.amount and already_refunded + amount > transaction.amount:
        logger.error(
            "Refund %s:%s of %s would exceed transaction %s amount %s (already refunded %s)",
            context.provider.value,
            external_id,
            amount,
            transaction.external_id,
            transaction.amount,
            already_refunded,
        )
        return None

    refund, created = upsert(
        db,
        Refund,
        context.provider,
        external_id,
        {"transaction_id": transaction.id, **attributes},
    )
    transaction.amount_refunded = _refunded_total(db, transaction)
    db.flush()
    if created:
        context.emit(
            db,
            EventType.refund_processed,
            {
                "refund_id": str(refund.id),
                "transaction_id": str(transaction.id),
                "amount": refund.amount,
                "currency": refund.currency,
                "reason": refund.reason,
            },
            customer_id=transaction.customer_id,
            transaction_id=transaction.id,
            refund_id=refund.id,
        )
    return refund


def settle_refund_status(transaction: Transaction, fully_refunded: bool) -> None:
    """Refunded only when the provider says so; otherwise partially refunded."""
    if fully_refunded:
        transaction.status = PaymentStatus.refunded
    elif transaction.amount_refunded:
        transaction.status = PaymentStatus.partially_refunded
