"""Celery tasks for the payment event outbox.

Dispatches committed events to handlers, retries failed ones and cleans up
old event records.
"""

import logging
import time
from datetime import UTC, datetime, timedelta

from app.celery_app import celery_app
from app.config import settings
from app.db import SessionLocal
from app.metrics import observe_job
from app.models.event_store import EventStatus, EventStore
from app.services.common import coerce_uuid
from app.services.events.dispatcher import get_dispatcher

logger = logging.getLogger(__name__)

MAX_EVENT_AGE_HOURS = 24
BATCH_SIZE = 100
# Pending rows younger than this are still owned by their dispatch task
PENDING_GRACE_MINUTES = 5


@celery_app.task(name="app.tasks.events.dispatch_payment_event")
def dispatch_payment_event(event_id: str):
    """Run the handlers for one committed outbox event."""
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        event_record = (
            session.query(EventStore)
            .filter(EventStore.event_id == coerce_uuid(event_id))
            .first()
        )
        if event_record is None:
            logger.warning("Event %s not found in outbox", event_id)
            status = "missing"
            return {"event_id": event_id, "status": status}
        ok = get_dispatcher().process(session, event_record)
        if not ok:
            status = "failed"
        return {"event_id": event_id, "status": "completed" if ok else "failed"}
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("dispatch_payment_event", status, time.monotonic() - start)


@celery_app.task(name="app.tasks.events.dispatch_pending_events")
def dispatch_pending_events():
    """Dispatch outbox rows whose dispatch task was never queued."""
    session = SessionLocal()
    try:
        cutoff = datetime.now(UTC) - timedelta(minutes=PENDING_GRACE_MINUTES)
        pending = (
            session.query(EventStore)
            .filter(EventStore.status == EventStatus.pending)
            .filter(EventStore.created_at < cutoff)
            .filter(EventStore.is_active.is_(True))
            .order_by(EventStore.created_at.asc())
            .limit(BATCH_SIZE)
            .all()
        )
        dispatcher = get_dispatcher()
        completed = 0
        for event_record in pending:
            if dispatcher.process(session, event_record):
                completed += 1
        result = {"dispatched": len(pending), "completed": completed}
        if pending:
            logger.info("Pending event sweep completed: %s", result)
        return result
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.events.retry_failed_events")
def retry_failed_events():
    """Retry events whose handlers failed.

    Events are retried up to ``EVENT_MAX_RETRIES`` times within
    MAX_EVENT_AGE_HOURS, re-running only the handlers that failed.
    """
    session = SessionLocal()
    try:
        cutoff = datetime.now(UTC) - timedelta(hours=MAX_EVENT_AGE_HOURS)
        max_retries = settings.event_max_retries

        failed_events = (
            session.query(EventStore)
            .filter(EventStore.status == EventStatus.failed)
            .filter(EventStore.retry_count < max_retries)
            .filter(EventStore.created_at > cutoff)
            .filter(EventStore.is_active.is_(True))
            .order_by(EventStore.created_at.asc())
            .limit(BATCH_SIZE)
            .all()
        )

        if not failed_events:
            return {"retried": 0, "succeeded": 0, "failed": 0}

        dispatcher = get_dispatcher()
        succeeded = 0
        failed = 0

        for event_record in failed_events:
            try:
                if dispatcher.retry_event(session, event_record):
                    succeeded += 1
                    logger.info(
                        "Retried event %s (%s)", event_record.event_id, event_record.event_type
                    )
                else:
                    failed += 1
                    logger.warning(
                        "Event %s failed retry (attempt %s/%s)",
                        event_record.event_id,
                        event_record.retry_count,
                        max_retries,
                    )
            except Exception:
                failed += 1
                logger.exception("Error retrying event %s", event_record.event_id)
                session.rollback()

        result = {"retried": len(failed_events), "succeeded": succeeded, "failed": failed}
        logger.info("Event retry task completed: %s", result)
        return result

    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.events.cleanup_old_events")
def cleanup_old_events(retention_days: int = 30):
    """Delete completed events older than ``retention_days``.

    Failed events are kept for inspection.
    """
    session = SessionLocal()
    try:
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        deleted_count = (
            session.query(EventStore)
            .filter(EventStore.status == EventStatus.completed)
            .filter(EventStore.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        session.commit()
        logger.info("Cleaned up %s old completed events", deleted_count)
        return {"deleted": deleted_count}
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.events.mark_stale_processing_events")
def mark_stale_processing_events(stale_minutes: int = 30):
    """Mark events stuck in ``processing`` as failed so they are retried."""
    session = SessionLocal()
    try:
        cutoff = datetime.now(UTC) - timedelta(minutes=stale_minutes)
        stuck_events = (
            session.query(EventStore)
            .filter(EventStore.status == EventStatus.processing)
            .filter(EventStore.updated_at < cutoff)
            .filter(EventStore.is_active.is_(True))
            .all()
        )
        for event_record in stuck_events:
            event_record.status = EventStatus.failed
            event_record.error = "Event processing timed out (marked as stale)"
            logger.warning("Marked stale processing event as failed: %s", event_record.event_id)
        session.commit()
        return {"marked_failed": len(stuck_events)}
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
