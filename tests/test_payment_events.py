"""Tests for the payment event outbox, dispatcher and notification handler."""

import uuid

from app.config import settings
from app.models.event_store import EventStatus, EventStore
from app.models.notification import Notification, NotificationStatus
from app.models.payments import PaymentProvider, PaymentStatus, Transaction
from app.services.events import emit_event
from app.services.events.dispatcher import EventDispatcher, get_dispatcher
from app.services.events.handlers.notification import (
    EVENT_TYPE_TO_TEMPLATE,
    NotificationHandler,
)
from app.services.events.types import EventType


class _FailingHandler:
    def handle(self, db, event):
        db.add(Notification(user_id=uuid.uuid4(), template_kind="never_kept"))
        db.flush()
        raise RuntimeError("handler exploded")


class _RecordingHandler:
    def __init__(self):
        self.seen = []

    def handle(self, db, event):
        self.seen.append(event.event_id)


def _record(db_session, event_type=EventType.payment_succeeded, **ids):
    event = emit_event(db_session, event_type, {"amount": 1000, "currency": "USD"}, provider="stripe", **ids)
    db_session.commit()
    return db_session.query(EventStore).filter(EventStore.event_id == event.event_id).one()


def _transaction(db_session, customer):
    transaction = Transaction(
        provider=PaymentProvider.stripe,
        external_id=f"pi_{uuid.uuid4().hex[:10]}",
        customer_id=customer.id,
        amount=1000,
        status=PaymentStatus.succeeded,
    )
    db_session.add(transaction)
    db_session.commit()
    return transaction


# =============================================================================
# Outbox
# =============================================================================


class TestEmitEvent:
    def test_event_is_pending_until_dispatched(self, db_session):
        record = _record(db_session)

        assert record.status == EventStatus.pending
        assert record.event_type == "payment.succeeded"
        assert record.provider == "stripe"
        assert record.payload == {"amount": 1000, "currency": "USD"}

    def test_event_discarded_with_rolled_back_transaction(self, db_session):
        event = emit_event(db_session, EventType.payment_failed, {}, provider="paypal")
        db_session.rollback()

        assert db_session.query(EventStore).filter(EventStore.event_id == event.event_id).count() == 0


class TestDispatcher:
    def test_handler_failure_is_isolated(self, db_session):
        recording = _RecordingHandler()
        dispatcher = EventDispatcher()
        dispatcher.register_handler(_FailingHandler())
        dispatcher.register_handler(recording)
        record = _record(db_session)

        ok = dispatcher.process(db_session, record)

        assert ok is False
        assert recording.seen == [record.event_id]
        assert record.status == EventStatus.failed
        assert record.failed_handlers == [{"handler": "_FailingHandler", "error": "handler exploded"}]
        assert db_session.query(Notification).filter(Notification.template_kind == "never_kept").count() == 0

    def test_retry_runs_only_failed_handlers(self, db_session):
        recording = _RecordingHandler()
        dispatcher = EventDispatcher()
        dispatcher.register_handler(recording)
        record = _record(db_session)
        record.status = EventStatus.failed
        record.failed_handlers = [{"handler": "SomeOtherHandler", "error": "boom"}]
        db_session.commit()

        ok = dispatcher.retry_event(db_session, record)

        assert ok is True
        assert recording.seen == []
        assert record.retry_count == 1
        assert record.status == EventStatus.completed

    def test_completed_event_is_not_reprocessed(self, db_session):
        recording = _RecordingHandler()
        dispatcher = EventDispatcher()
        dispatcher.register_handler(recording)
        record = _record(db_session)

        dispatcher.process(db_session, record)
        dispatcher.process(db_session, record)

        assert recording.seen == [record.event_id]

    def test_global_dispatcher_has_notification_handler(self):
        handlers = get_dispatcher()._handlers
        assert any(isinstance(handler, NotificationHandler) for handler in handlers)


# =============================================================================
# Notifications
# =============================================================================


class TestNotificationHandler:
    def test_every_event_type_has_a_template(self):
        assert set(EVENT_TYPE_TO_TEMPLATE) == set(EventType)

    def test_queues_one_notification_for_customer_user(self, db_session, stripe_customer):
        transaction = _transaction(db_session, stripe_customer)
        record = _record(db_session, transaction_id=transaction.id)
        dispatcher = EventDispatcher()
        dispatcher.register_handler(NotificationHandler())

        dispatcher.process(db_session, record)
        dispatcher.retry_event(db_session, record)

        notifications = (
            db_session.query(Notification).filter(Notification.event_id == record.event_id).all()
        )
        assert len(notifications) == 1
        notification = notifications[0]
        assert notification.user_id == stripe_customer.user_id
        assert notification.template_kind == "payment_receipt"
        assert notification.recipient == stripe_customer.email
        assert notification.context["customer_name"] == stripe_customer.name
        assert notification.status == NotificationStatus.queued

    def test_unknown_user_is_skipped(self, db_session):
        record = _record(db_session)
        dispatcher = EventDispatcher()
        dispatcher.register_handler(NotificationHandler())

        assert dispatcher.process(db_session, record) is True
        assert db_session.query(Notification).count() == 0

    def test_disabled_template_is_skipped(self, db_session, stripe_customer, monkeypatch):
        monkeypatch.setattr(
            "app.services.events.handlers.notification.settings",
            settings.model_copy(update={"notify_payment_receipt": False}),
        )
        record = _record(db_session, customer_id=stripe_customer.id)
        dispatcher = EventDispatcher()
        dispatcher.register_handler(NotificationHandler())

        dispatcher.process(db_session, record)

        assert db_session.query(Notification).count() == 0
