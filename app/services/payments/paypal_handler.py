"""PayPal webhook event handling.

PayPal reports money as decimal strings; every amount goes through
:meth:`PayPalAmount.minor_units`, which rounds half-up to the nearest minor
unit instead of truncating.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.models.payments import PaymentProvider, SubscriptionStatus, Transaction
from app.schemas.payments import (
    PayPalAmount,
    PayPalCapture,
    PayPalOrder,
    PayPalSale,
    PayPalSubscription,
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
from app.services.payments.status import refund_status, subscription_status
from app.services.payments.subscriptions import Subscriptions, subscription_event_context

logger = logging.getLogger(__name__)

PROVIDER = PaymentProvider.paypal
DEFAULT_CURRENCY = "USD"
ENDED_STATUSES = (SubscriptionStatus.canceled, SubscriptionStatus.expired)


class PayPalEventType(enum.Enum):
    capture_completed = "PAYMENT.CAPTURE.COMPLETED"
    capture_denied = "PAYMENT.CAPTURE.DENIED"
    capture_refunded = "PAYMENT.CAPTURE.REFUNDED"
    order_approved = "CHECKOUT.ORDER.APPROVED"
    order_completed = "CHECKOUT.ORDER.COMPLETED"
    subscription_created = "BILLING.SUBSCRIPTION.CREATED"
    subscription_activated = "BILLING.SUBSCRIPTION.ACTIVATED"
    subscription_updated = "BILLING.SUBSCRIPTION.UPDATED"
    subscription_cancelled = "BILLING.SUBSCRIPTION.CANCELLED"
    subscription_suspended = "BILLING.SUBSCRIPTION.SUSPENDED"
    subscription_expired = "BILLING.SUBSCRIPTION.EXPIRED"
    sale_completed = "PAYMENT.SALE.COMPLETED"
    sale_refunded = "PAYMENT.SALE.REFUNDED"


def _money(amount: PayPalAmount | None, default_currency: str = DEFAULT_CURRENCY) -> tuple[int, str]:
    if amount is None:
        return 0, default_currency
    return amount.minor_units(), amount.currency_or(default_currency)


def _capture_attributes(capture: PayPalCapture, payload: dict) -> dict[str, Any]:
    attributes: dict[str, Any] = {"provider_response": payload}
    if capture.amount is not None:
        attributes["amount"], attributes["currency"] = _money(capture.amount)
    return attributes


def _fully_refunded(transaction: Transaction) -> bool:
    return bool(transaction.amount) and (transaction.amount_refunded or 0) >= transaction.amount


class PayPalEventHandler:
    """Dispatches PayPal event types to reconciliation operations."""

    provider = PROVIDER
    event_types = PayPalEventType

    def __init__(self):
        self._handlers: dict[PayPalEventType, Callable[[Session, dict, ReconciliationContext], None]] = {
            PayPalEventType.capture_completed: self._capture_completed,
            PayPalEventType.capture_denied: self._capture_denied,
            PayPalEventType.capture_refunded: self._capture_refunded,
            PayPalEventType.order_approved: self._order_approved,
            PayPalEventType.order_completed: self._order_completed,
            PayPalEventType.subscription_created: self._subscription_synced,
            PayPalEventType.subscription_activated: self._subscription_activated,
            PayPalEventType.subscription_updated: self._subscription_synced,
            PayPalEventType.subscription_cancelled: self._subscription_cancelled,
            PayPalEventType.subscription_suspended: self._subscription_suspended,
            PayPalEventType.subscription_expired: self._subscription_expired,
            PayPalEventType.sale_completed: self._sale_completed,
            PayPalEventType.sale_refunded: self._sale_refunded,
        }

    def handles(self, event_type: PayPalEventType) -> bool:
        return event_type in self._handlers

    def handle(self, db: Session, event_type: str, payload: dict, context: ReconciliationContext) -> bool:
        """Apply one PayPal event. Returns False for event types we ignore."""
        try:
            kind = PayPalEventType(event_type)
        except ValueError:
            logger.debug("Unhandled PayPal webhook type %s", event_type)
            return False
        self._handlers[kind](db, payload, context)
        return True

    # -- captures and orders ----------------------------------------------

    def _capture_completed(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        capture = parse_payload(PayPalCapture, payload, context)
        succeed_payment(db, context, capture.id, _capture_attributes(capture, payload))

    def _capture_denied(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        capture = parse_payload(PayPalCapture, payload, context)
        reason = "Payment denied"
        if capture.status_details and capture.status_details.reason:
            reason = capture.status_details.reason
        fail_payment(db, context, capture.id, _capture_attributes(capture, payload), reason)

    def _capture_refunded(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        resource = parse_payload(PayPalCapture, payload, context)
        if resource.refund is not None:
            # Capture carrying its refund
            capture_id = resource.id
            refund_id = resource.refund.id or f"{capture_id}-refund"
            amount = resource.refund.amount or resource.amount
            status = resource.refund.status
            reason = resource.refund.note_to_payer
        else:
            parent = resource.parent_capture_id()
            capture_id = parent or resource.id
            refund_id = resource.id if parent else f"{capture_id}-refund"
            amount = resource.amount
            status = resource.status
            reason = resource.note_to_payer

        transaction = find_transaction(db, PROVIDER, capture_id)
        if transaction is None:
            logger.warning("PayPal refund %s for unknown capture %s", refund_id, capture_id)
            return
        minor, currency = _money(amount, transaction.currency)
        record_refund(
            db,
            context,
            transaction,
            refund_id,
            {
                "amount": minor,
                "currency": currency,
                "status": refund_status(PROVIDER, status or "COMPLETED"),
                "reason": reason,
                "provider_response": payload,
            },
        )
        settle_refund_status(transaction, _fully_refunded(transaction))
        db.flush()

    def _order_approved(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        order = parse_payload(PayPalOrder, payload, context)
        logger.info("PayPal order approved: %s", order.id)

    def _order_completed(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        order = parse_payload(PayPalOrder, payload, context)
        if find_transaction(db, PROVIDER, order.id) is None:
            logger.info("No local PayPal transaction for order %s", order.id)
            return
        succeed_payment(db, context, order.id, {"provider_response": payload})

    # -- subscription payments ----------------------------------------------

    def _sale_completed(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        sale = parse_payload(PayPalSale, payload, context)
        subscription = find_subscription(db, PROVIDER, sale.billing_agreement_id)
        amount, currency = _money(sale.amount)
        attributes: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "description": "Subscription payment",
            "provider_response": payload,
        }
        if subscription is not None:
            attributes["subscription_id"] = subscription.id
            if subscription.customer_id:
                attributes["customer_id"] = subscription.customer_id
        succeed_payment(db, context, sale.id, attributes)

    def _sale_refunded(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        sale = parse_payload(PayPalSale, payload, context)
        parent_id = sale.sale_id or sale.id
        transaction = find_transaction(db, PROVIDER, parent_id)
        if transaction is None:
            logger.warning("PayPal sale refund %s for unknown sale %s", sale.id, parent_id)
            return
        amount, currency = _money(sale.amount, transaction.currency)
        record_refund(
            db,
            context,
            transaction,
            sale.id,
            {
                "amount": amount,
                "currency": currency,
                "status": refund_status(PROVIDER, sale.state or "COMPLETED"),
                "provider_response": payload,
            },
        )
        settle_refund_status(transaction, _fully_refunded(transaction))
        db.flush()

    # -- subscriptions --------------------------------------------------------

    def _sync(
        self,
        db: Session,
        payload: dict,
        context: ReconciliationContext,
        **overrides,
    ) -> None:
        """Apply the subscription resource as a snapshot, plus ``overrides``."""
        resource = parse_payload(PayPalSubscription, payload, context)
        existing = find_subscription(db, PROVIDER, resource.id)
        previous = existing.status if existing else None

        status = subscription_status(PROVIDER, resource.status or "APPROVAL_PENDING")
        ended_at = resource.status_update_time if status in ENDED_STATUSES else None
        subscriber = resource.subscriber
        customer = find_customer(db, PROVIDER, subscriber.payer_id if subscriber else None)
        billing = resource.billing_info
        # Every reported field is replaced, absent ones with None; the billed
        # amount is only known once PayPal reports a payment
        attributes: dict[str, Any] = {
            "customer_id": customer.id if customer else None,
            "plan_id": resource.plan_id,
            "status": status,
            "quantity": resource.quantity or 1,
            "current_period_start": resource.start_time,
            "current_period_end": billing.next_billing_time if billing else None,
            "trial_start": None,
            "trial_end": None,
            "cancel_at_period_end": False,
            "canceled_at": ended_at if status == SubscriptionStatus.canceled else None,
            "ended_at": ended_at,
            "provider_response": payload,
        }
        if billing is not None and billing.last_payment is not None and billing.last_payment.amount is not None:
            attributes["amount"], attributes["currency"] = _money(billing.last_payment.amount)
        attributes.update(overrides)

        result = Subscriptions.apply_snapshot(
            db, PROVIDER, resource.id, attributes, context.occurred_at
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

    def _subscription_synced(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        self._sync(db, payload, context)

    def _subscription_activated(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        self._sync(db, payload, context, status=SubscriptionStatus.active)

    def _subscription_suspended(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        self._sync(db, payload, context, status=SubscriptionStatus.paused)

    def _subscription_cancelled(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        now = context.occurred_at or utcnow()
        self._sync(
            db,
            payload,
            context,
            status=SubscriptionStatus.canceled,
            canceled_at=now,
            ended_at=now,
        )

    def _subscription_expired(self, db: Session, payload: dict, context: ReconciliationContext) -> None:
        self._sync(
            db,
            payload,
            context,
            status=SubscriptionStatus.expired,
            ended_at=context.occurred_at or utcnow(),
        )
