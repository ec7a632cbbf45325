"""Celery tasks for subscription maintenance."""

import logging
import time

from app.celery_app import celery_app
from app.db import SessionLocal
from app.metrics import observe_job
from app.services import payments as payments_service

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.subscriptions.expire_subscriptions")
def expire_subscriptions(dry_run: bool = False):
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        expired = payments_service.subscriptions.expire_overdue(session, dry_run=dry_run)
        return {"expired": len(expired), "dry_run": dry_run}
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("expire_subscriptions", status, time.monotonic() - start)


@celery_app.task(name="app.tasks.subscriptions.send_trial_ending_reminders")
def send_trial_ending_reminders():
    from app.tasks.events import dispatch_payment_event

    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        event_ids = payments_service.subscriptions.send_trial_ending_reminders(session)
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("send_trial_ending_reminders", status, time.monotonic() - start)
    for event_id in event_ids:
        dispatch_payment_event.delay(str(event_id))
    if event_ids:
        logger.info("Queued %s trial ending reminders", len(event_ids))
    return {"reminders": len(event_ids)}
