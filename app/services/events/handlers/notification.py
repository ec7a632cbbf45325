"""Notification handler for payment domain events.

Queues one notification per event for the affected user. Delivery happens
later in the ``deliver_notification_queue`` task through the configured sink.
"""

import logging

from sqlalchemy.orm import Session

from app.config import settings
from app.models.notification import Notification, NotificationStatus
from app.models.payments import PaymentCustomer, Subscription, Transaction
from app.services.events.types import Event, EventType

logger = logging.getLogger(__name__)


# Template kind and the settings flag that enables it
EVENT_TYPE_TO_TEMPLATE = {
    EventType.payment_succeeded: ("payment_receipt", "notify_payment_receipt"),
    EventType.payment_failed: ("payment_failed", "notify_payment_failed"),
    EventType.subscription_created: ("subscription_created", "notify_subscription_created"),
    EventType.subscription_canceled: ("subscription_canceled", "notify_subscription_canceled"),
    EventType.refund_processed: ("refund_processed", "notify_refund_processed"),
    EventType.subscription_trial_ending: ("trial_ending", "notify_trial_ending"),
}


class NotificationHandler:
    """Handler that queues user notifications."""

    def handle(self, db: Session, event: Event) -> None:
        mapping = EVENT_TYPE_TO_TEMPLATE.get(event.event_type)
        if mapping is None:
            return
        template_kind, flag = mapping
        if not getattr(settings, flag, True):
            logger.debug("Notifications of kind %s are disabled", template_kind)
            return

        customer = self._resolve_customer(db, event)
        user_id = event.user_id or (customer.user_id if customer else None)
        if user_id is None:
            logger.debug(
                "Cannot determine user for event %s (id=%s)",
                event.event_type.value,
                event.event_id,
            )
            return

        existing = (
            db.query(Notification)
            .filter(Notification.event_id == event.event_id)
            .filter(Notification.template_kind == template_kind)
            .first()
        )
        if existing:
            return

        context = dict(event.payload)
        if customer and customer.name:
            context.setdefault("customer_name", customer.name)
        db.add(
            Notification(
                event_id=event.event_id,
                user_id=user_id,
                template_kind=template_kind,
                recipient=customer.email if customer else None,
                context=context,
                status=NotificationStatus.queued,
            )
        )
        db.flush()
        logger.info(
            "Queued %s notification for user %s (event %s)",
            template_kind,
            user_id,
            event.event_id,
        )

    def _resolve_customer(self, db: Session, event: Event) -> PaymentCustomer | None:
        customer_id = event.customer_id
        if customer_id is None and event.transaction_id:
            transaction = db.get(Transaction, event.transaction_id)
            customer_id = transaction.customer_id if transaction else None
        if customer_id is None and event.subscription_id:
            subscription = db.get(Subscription, event.subscription_id)
            customer_id = subscription.customer_id if subscription else None
        if customer_id is None:
            return None
        return db.get(PaymentCustomer, customer_id)
