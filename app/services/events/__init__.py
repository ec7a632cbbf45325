"""Payment domain event module.

Reconciliation writes events to the outbox; a Celery consumer dispatches
them to handlers (currently the notification fan-out).

Usage:
    from app.services.events import emit_event
    from app.services.events.types import EventType

    emit_event(
        db,
        EventType.payment_succeeded,
        {"amount": txn.amount, "currency": txn.currency},
        provider=txn.provider.value,
        transaction_id=txn.id,
    )
"""

from app.services.events.dispatcher import emit_event, get_dispatcher
from app.services.events.types import Event, EventType

__all__ = ["emit_event", "get_dispatcher", "Event", "EventType"]
