"""Stripe webhook event handling.

Stripe charges are recorded against their payment intent when they carry
one, so ``payment_intent.*`` and ``charge.*`` deliveries for the same payment
converge on a single transaction row.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.models.payments import (
    Invoice,
    InvoiceStatus,
    PaymentProvider,
    PaymentStatus,
    SubscriptionStatus,
    Transaction,
)
from app.schemas.payments import (
    StripeCharge,
    StripeInvoice,
    StripePaymentIntent,
    StripeSubscription,
)
from app.services.common import utcnow
from app.services.events.types import EventType
from app.services.payments._common import (
    ReconciliationContext,
    fail_payment,
    find_customer,
    find_subscription,
    find_transaction,
    parse_payload,
    record_refund,
    settle_refund_status,
    succeed_payment,
)
from app.services.payments.invoices import Invoices, line_item
from app.services.payments.status import invoice_status, refund_status, subscription_status
from app.services.payments.subscriptions import Subscriptions, subscription_event_context
from app.services.payments.upsert import find, upsert

logger = logging.getLogger(__name__)

PROVIDER = PaymentProvider.stripe


class StripeEventType(enum.Enum):
    payment_intent_succeeded = "payment_intent.succeeded"
    payment_intent_failed = "payment_intent.payment_failed"
    charge_succeeded = "charge.succeeded"
    charge_failed = "charge.failed"
    charge_refunded = "charge.refunded"
    subscription_created = "customer.subscription.created"
    subscription_updated = "customer.subscription.updated"
    subscription_deleted = "customer.subscription.deleted"
    subscription_trial_will_end = "customer.subscription.trial_will_end"
    invoice_paid = "invoice.paid"
    invoice_payment_failed = "invoice.payment_failed"
    invoice_finalized = "invoice.finalized"
    invoice_voided = "invoice.voided"


def _customer_attributes(db: Session, customer_ref: str | None) -> dict[str, Any]:
    customer = find_customer(db, PROVIDER, customer_ref)
    return {"customer_id": customer.id} if customer else {}


def _intent_attributes(db: Session, intent: StripePaymentIntent, payload: dict) -> dict[str, Any]:
    return {
        **_customer_attributes(db, intent.customer),
        "amount": intent.amount,
        "currency": intent.currency.upper(),
        "payment_method": intent.payment_method,
        "description": intent.description,
        "provider_response": payload,
    }


def _charge_attributes(db: Session, charge: StripeCharge, payload: dict) -> dict[str, Any]:
    return {
        **_customer_attributes(db, charge.customer),
        "amount": charge.amount,
        "currency": charge.currency.upper(),
        "payment_method": charge.payment_method,
        "description": charge.description,
        "provider_response": payload,
    }


def _charge_key(charge: StripeCharge) -> str:
    return charge.payment_intent or charge.id


def _subscription_attributes(db: Session, subscription: StripeSubscription, payload: dict) -> dict[str, Any]:
    price = subscription.price
    recurring = price.recurring
    first_item = subscription.items.data[0] if subscription.items.data else None
    return {
        **_customer_attributes(db, subscription.customer),
        "plan_id": price.id,
        "status": subscription_status(PROVIDER, subscription.status),
        "amount": price.unit_amount or 0,
        "currency": subscription.currency.upper(),
        "interval": recurring.interval if recurring else "month",
        "interval_count": recurring.interval_count if recurring else 1,
        "quantity": subscription.quantity or (first_item.quantity if first_item else None) or 1,
        "current_period_start": subscription.current_period_start,
        "current_period_end": subscription.current_period_end,
        "trial_start": subscription.trial_start,
        "trial_end": subscription.trial_end,
        "canceled_at": subscription.canceled_at,
        "ended_at": subscription.ended_at,
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "provider_response": payload,
    }


def _invoice_lines(invoice: StripeInvoice) -> list[dict[str, Any]]:
    return [
        line_item(
            line.description,
            line.quantity,
            line.price.unit_amount if line.price else None,
            line.amount,
        )
        for line in invoice.lines.data
    ]


class StripeEventHandler:
    """Dispatches Stripe event types to reconciliation operations."""

    provider = PROVIDER
    event_types = StripeEventType

    def __init__(self):
        self._handlers: dict[StripeEventType, Callable[[Session, dict, ReconciliationContext], None]] = {
            StripeEventType.payment_intent_succeeded: self._payment_intent_succeeded,
            StripeEventType.payment_intent_failed: self._payment_intent_failed,
            StripeEventType.charge_succeeded: self._charge_succeeded,
            StripeEventType.charge_failed: self._charge_failed,
            StripeEventType.charge_refunded: self._charge_refunded,
            StripeEventType.subscription_created: self._subscription_synced,
            StripeEventType.subscription_updated: self._subscription_synced,
            StripeEventType.subscription_deleted: self._subscription_deleted,
            StripeEventType.subscription_trial_will_end: self._trial_will_end,
            StripeEventType.invoice_paid: self._invoice_paid,
            StripeEventType.invoice_payment_failed: self._invoice_reopened,
            StripeEventType.invoice_finalized: self._invoice_reopened,
            StripeEventType.invoice_voided: self._invoice_voided,
        }

    def handles(self, event_type: StripeEventType) -> bool:
        return event_type in self._handlers

    def handle(self, db: Session, event_type: str, payload: dict, context: ReconciliationContext) -> bool:
        """Apply one Stripe event. Returns False for event types we ignore."""
        try:
            kind = StripeEventType(event_type)
        except ValueError:
            logger.debug("Unhandled Stripe webhook type %s", event_type)
            return False
        self._handlers[kind](db, payload, context)
        return True

    # -- payments ---------------------------------------------------------

    def _payment_intent_succeeded(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        intent = parse_payload(StripePaymentIntent, payload, context)
        succeed_payment(db, context, intent.id, _intent_attributes(db, intent, payload))

    def _payment_intent_failed(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        intent = parse_payload(StripePaymentIntent, payload, context)
        reason = "Payment failed"
        if intent.last_payment_error and intent.last_payment_error.message:
            reason = intent.last_payment_error.message
        fail_payment(db, context, intent.id, _intent_attributes(db, intent, payload), reason)

    def _charge_succeeded(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        charge = parse_payload(StripeCharge, payload, context)
        succeed_payment(db, context, _charge_key(charge), _charge_attributes(db, charge, payload))

    def _charge_failed(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        charge = parse_payload(StripeCharge, payload, context)
        fail_payment(
            db,
            context,
            _charge_key(charge),
            _charge_attributes(db, charge, payload),
            charge.failure_message or "Charge failed",
        )

    def _charge_refunded(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        charge = parse_payload(StripeCharge, payload, context)
        key = _charge_key(charge)
        transaction = find_transaction(db, PROVIDER, key)
        if transaction is None:
            # Refund seen before the payment: the charge itself proves the payment
            transaction, _ = upsert(
                db,
                Transaction,
                PROVIDER,
                key,
                {**_charge_attributes(db, charge, payload), "status": PaymentStatus.succeeded},
            )

        for refund in charge.refunds.data:
            record_refund(
                db,
                context,
                transaction,
                refund.id,
                {
                    "amount": refund.amount,
                    "currency": refund.currency.upper(),
                    "status": refund_status(PROVIDER, refund.status),
                    "reason": refund.reason,
                    "failure_reason": refund.failure_reason,
                    "provider_response": refund.model_dump(mode="json"),
                },
            )
        if not charge.refunds.data and charge.amount_refunded:
            logger.warning(
                "Stripe charge %s reports %s refunded without refund objects",
                charge.id,
                charge.amount_refunded,
            )

        settle_refund_status(transaction, charge.refunded)
        db.flush()

    # -- subscriptions ----------------------------------------------------

    def _subscription_synced(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        subscription = parse_payload(StripeSubscription, payload, context)
        existing = find_subscription(db, PROVIDER, subscription.id)
        previous = existing.status if existing else None

        result = Subscriptions.apply_snapshot(
            db,
            PROVIDER,
            subscription.id,
            _subscription_attributes(db, subscription, payload),
            context.occurred_at,
        )
        if not result.applied:
            return
        record = result.subscription
        if result.created:
            context.emit(
                db,
                EventType.subscription_created,
                subscription_event_context(record),
                customer_id=record.customer_id,
                subscription_id=record.id,
            )
        if record.status == SubscriptionStatus.canceled and previous != SubscriptionStatus.canceled:
            context.emit(
                db,
                EventType.subscription_canceled,
                subscription_event_context(record),
                customer_id=record.customer_id,
                subscription_id=record.id,
            )

    def _subscription_deleted(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        subscription = parse_payload(StripeSubscription, payload, context)
        now = context.occurred_at or utcnow()
        existing = find_subscription(db, PROVIDER, subscription.id)
        previous = existing.status if existing else None

        result = Subscriptions.apply_snapshot(
            db,
            PROVIDER,
            subscription.id,
            {
                **_subscription_attributes(db, subscription, payload),
                "status": SubscriptionStatus.canceled,
                "canceled_at": subscription.canceled_at or now,
                "ended_at": subscription.ended_at or now,
            },
            context.occurred_at,
        )
        if result.applied and previous != SubscriptionStatus.canceled:
            record = result.subscription
            context.emit(
                db,
                EventType.subscription_canceled,
                subscription_event_context(record),
                customer_id=record.customer_id,
                subscription_id=record.id,
            )

    def _trial_will_end(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        subscription = parse_payload(StripeSubscription, payload, context)
        result = Subscriptions.apply_snapshot(
            db,
            PROVIDER,
            subscription.id,
            _subscription_attributes(db, subscription, payload),
            context.occurred_at,
        )
        record = result.subscription
        logger.info("Stripe trial ending soon for subscription %s", subscription.id)
        event = Subscriptions.mark_trial_ending(db, record, PROVIDER.value)
        if event is not None:
            context.event_ids.append(event.event_id)

    # -- invoices ---------------------------------------------------------

    def _invoice_paid(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        stripe_invoice = parse_payload(StripeInvoice, payload, context)
        customer = find_customer(db, PROVIDER, stripe_invoice.customer)
        subscription = find_subscription(db, PROVIDER, stripe_invoice.subscription)
        transaction = find_transaction(db, PROVIDER, stripe_invoice.payment_intent)
        now = context.occurred_at or utcnow()

        tax = stripe_invoice.tax or 0
        attributes: dict[str, Any] = {
            "status": InvoiceStatus.paid,
            "currency": stripe_invoice.currency.upper(),
            "subtotal": stripe_invoice.subtotal,
            "tax": tax,
            "discount": max(0, stripe_invoice.subtotal + tax - stripe_invoice.total),
            "amount_paid": stripe_invoice.amount_paid,
            "line_items": _invoice_lines(stripe_invoice),
            "paid_at": now,
            "provider_response": payload,
        }
        if customer:
            attributes["customer_id"] = customer.id
        if subscription:
            attributes["subscription_id"] = subscription.id
        if stripe_invoice.payment_intent:
            attributes["payment_ref"] = stripe_invoice.payment_intent

        existing = find(db, Invoice, PROVIDER, stripe_invoice.id)
        if existing is None and transaction is not None and transaction.invoice is not None:
            # Adopt the invoice already derived from the payment intent
            invoice = transaction.invoice
            invoice.provider = PROVIDER
            invoice.external_id = stripe_invoice.id
            for key, value in attributes.items():
                setattr(invoice, key, value)
            Invoices.recalculate_totals(invoice, from_lines=False)
            db.flush()
        else:
            if existing is None:
                attributes["invoice_date"] = now
                attributes["billing_name"] = stripe_invoice.customer_name or (customer.name if customer else None)
                attributes["billing_email"] = stripe_invoice.customer_email or (customer.email if customer else None)
                if customer and customer.billing_address:
                    attributes["billing_address"] = dict(customer.billing_address)
                if transaction is not None:
                    attributes["transaction_id"] = transaction.id
            invoice, _ = Invoices.upsert_provider_invoice(db, PROVIDER, stripe_invoice.id, attributes)
        context.request_document(invoice)

    def _invoice_reopened(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        stripe_invoice = parse_payload(StripeInvoice, payload, context)
        invoice = find(db, Invoice, PROVIDER, stripe_invoice.id)
        if invoice is None:
            logger.info("No local Stripe invoice %s for %s", stripe_invoice.id, context.event_type)
            return
        if stripe_invoice.status and invoice_status(PROVIDER, stripe_invoice.status) == InvoiceStatus.paid:
            return
        Invoices.mark_open(db, invoice)

    def _invoice_voided(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        stripe_invoice = parse_payload(StripeInvoice, payload, context)
        invoice = find(db, Invoice, PROVIDER, stripe_invoice.id)
        if invoice is None:
            logger.info("No local Stripe invoice %s to void", stripe_invoice.id)
            return
        Invoices.mark_void(db, invoice)
