"""Outbox writer and dispatcher for payment domain events.

Reconciliation calls :func:`emit_event`, which only writes an ``event_store``
row inside the caller's transaction. Nothing is delivered until that
transaction commits and the ``dispatch_payment_event`` Celery task runs
:meth:`EventDispatcher.process` on the stored row. A failing handler is
recorded on the row and retried later without touching ledger tables.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.event_store import EventStatus, EventStore
from app.services.common import coerce_uuid
from app.services.events.types import Event, EventType

logger = logging.getLogger(__name__)


def event_from_record(event_record: EventStore) -> Event:
    return Event(
        event_type=EventType(event_record.event_type),
        payload=event_record.payload or {},
        event_id=event_record.event_id,
        provider=event_record.provider,
        user_id=event_record.user_id,
        customer_id=event_record.customer_id,
        transaction_id=event_record.transaction_id,
        subscription_id=event_record.subscription_id,
        refund_id=event_record.refund_id,
    )


class EventDispatcher:
    """Routes stored events to all registered handlers.

    Each handler runs in its own SAVEPOINT so a failure discards only that
    handler's writes.
    """

    def __init__(self):
        self._handlers: list = []

    def register_handler(self, handler):
        """Register an event handler."""
        self._handlers.append(handler)

    def _run_handlers(self, db: Session, event: Event, only: set[str] | None = None) -> list[dict[str, str]]:
        failures: list[dict[str, str]] = []
        for handler in self._handlers:
            handler_name = handler.__class__.__name__
            if only and handler_name not in only:
                continue
            try:
                with db.begin_nested():
                    handler.handle(db, event)
            except Exception as exc:
                logger.exception(
                    "Handler %s failed for event %s (id=%s)",
                    handler_name,
                    event.event_type.value,
                    event.event_id,
                )
                failures.append({"handler": handler_name, "error": str(exc)})
        return failures

    def _finish(self, db: Session, event_record: EventStore, failures: list[dict[str, str]]) -> bool:
        if failures:
            event_record.status = EventStatus.failed
            event_record.failed_handlers = failures
            event_record.error = json.dumps([failure["error"] for failure in failures])
        else:
            event_record.status = EventStatus.completed
            event_record.failed_handlers = None
            event_record.error = None
        event_record.processed_at = datetime.now(timezone.utc)
        db.commit()
        return not failures

    def process(self, db: Session, event_record: EventStore) -> bool:
        """Run every handler for a pending event.

        Returns:
            True if all handlers succeeded, False otherwise
        """
        if event_record.status == EventStatus.completed:
            logger.debug("Event %s already processed", event_record.event_id)
            return True
        event = event_from_record(event_record)
        event_record.status = EventStatus.processing
        db.commit()
        failures = self._run_handlers(db, event)
        return self._finish(db, event_record, failures)

    def retry_event(self, db: Session, event_record: EventStore) -> bool:
        """Retry a failed event, re-running only the handlers that failed.

        Returns:
            True if all retried handlers succeeded, False otherwise
        """
        event = event_from_record(event_record)
        failed_handler_names: set[str] = set()
        if event_record.failed_handlers:
            failed_handler_names = {fh["handler"] for fh in event_record.failed_handlers}

        event_record.retry_count = (event_record.retry_count or 0) + 1
        event_record.status = EventStatus.processing
        db.commit()

        failures = self._run_handlers(db, event, only=failed_handler_names or None)
        return self._finish(db, event_record, failures)


_dispatcher: EventDispatcher | None = None


def get_dispatcher() -> EventDispatcher:
    """Get the global event dispatcher, initializing handlers if needed."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EventDispatcher()
        _initialize_handlers(_dispatcher)
    return _dispatcher


def _initialize_handlers(dispatcher: EventDispatcher) -> None:
    from app.services.events.handlers.notification import NotificationHandler

    dispatcher.register_handler(NotificationHandler())
    logger.info("Event handlers initialized: notification")


def emit_event(
    db: Session,
    event_type: EventType,
    payload: dict[str, Any],
    *,
    provider: str | None = None,
    user_id: UUID | str | None = None,
    customer_id: UUID | str | None = None,
    transaction_id: UUID | str | None = None,
    subscription_id: UUID | str | None = None,
    refund_id: UUID | str | None = None,
) -> Event:
    """Write a domain event to the outbox.

    The row is added to ``db`` but not committed; it becomes visible to the
    consumer only if the caller's transaction commits.

    Example:
        emit_event(
            db,
            EventType.refund_processed,
            {"amount": refund.amount, "currency": refund.currency},
            provider="stripe",
            transaction_id=refund.transaction_id,
            refund_id=refund.id,
        )
    """
    event = Event(
        event_type=event_type,
        payload=payload,
        provider=provider,
        user_id=coerce_uuid(user_id),
        customer_id=coerce_uuid(customer_id),
        transaction_id=coerce_uuid(transaction_id),
        subscription_id=coerce_uuid(subscription_id),
        refund_id=coerce_uuid(refund_id),
    )
    db.add(
        EventStore(
            event_id=event.event_id,
            event_type=event.event_type.value,
            payload=event.payload,
            status=EventStatus.pending,
            provider=event.provider,
            user_id=event.user_id,
            customer_id=event.customer_id,
            transaction_id=event.transaction_id,
            subscription_id=event.subscription_id,
            refund_id=event.refund_id,
        )
    )
    logger.info("Event recorded: %s (id=%s)", event_type.value, event.event_id)
    return event
