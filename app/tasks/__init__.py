from app.tasks.events import (
    cleanup_old_events,
    dispatch_payment_event,
    dispatch_pending_events,
    mark_stale_processing_events,
    retry_failed_events,
)
from app.tasks.invoice_documents import generate_invoice_document, generate_missing_documents
from app.tasks.notifications import deliver_notification_queue
from app.tasks.subscriptions import expire_subscriptions, send_trial_ending_reminders

__all__ = [
    "dispatch_payment_event",
    "dispatch_pending_events",
    "retry_failed_events",
    "cleanup_old_events",
    "mark_stale_processing_events",
    "generate_invoice_document",
    "generate_missing_documents",
    "deliver_notification_queue",
    "expire_subscriptions",
    "send_trial_ending_reminders",
]
