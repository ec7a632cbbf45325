import logging
import os
from datetime import timedelta

logger = logging.getLogger(__name__)


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_bool(name: str) -> bool | None:
    raw = _env_value(name)
    if raw is None:
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return None


def _effective_bool(env_key: str, default: bool) -> bool:
    value = _env_bool(env_key)
    return default if value is None else value


def _effective_int(env_key: str, default: int) -> int:
    value = _env_int(env_key)
    return default if value is None else value


def get_celery_config() -> dict:
    broker = (
        _env_value("CELERY_BROKER_URL")
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/0"
    )
    backend = (
        _env_value("CELERY_RESULT_BACKEND")
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/1"
    )
    config: dict[str, object] = {
        "broker_url": broker,
        "result_backend": backend,
        "timezone": _env_value("CELERY_TIMEZONE") or "UTC",
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
    }
    config["beat_max_loop_interval"] = _effective_int("CELERY_BEAT_MAX_LOOP_INTERVAL", 5)
    return config


def build_beat_schedule() -> dict:
    schedule: dict[str, dict] = {}

    if _effective_bool("EVENT_RETRY_ENABLED", True):
        interval_seconds = _effective_int("EVENT_RETRY_INTERVAL_SECONDS", 300)
        schedule["payment_event_retry"] = {
            "task": "app.tasks.events.retry_failed_events",
            "schedule": timedelta(seconds=max(interval_seconds, 30)),
        }
        schedule["payment_event_stale"] = {
            "task": "app.tasks.events.mark_stale_processing_events",
            "schedule": timedelta(seconds=max(interval_seconds, 30)),
        }
        schedule["payment_event_pending"] = {
            "task": "app.tasks.events.dispatch_pending_events",
            "schedule": timedelta(seconds=max(interval_seconds, 30)),
        }

    if _effective_bool("EVENT_CLEANUP_ENABLED", True):
        retention_days = _effective_int("EVENT_RETENTION_DAYS", 30)
        schedule["payment_event_cleanup"] = {
            "task": "app.tasks.events.cleanup_old_events",
            "schedule": timedelta(hours=24),
            "kwargs": {"retention_days": max(retention_days, 1)},
        }

    if _effective_bool("NOTIFICATION_QUEUE_ENABLED", True):
        interval_seconds = _effective_int("NOTIFICATION_QUEUE_INTERVAL_SECONDS", 60)
        schedule["notification_queue"] = {
            "task": "app.tasks.notifications.deliver_notification_queue",
            "schedule": timedelta(seconds=max(interval_seconds, 10)),
        }

    if _effective_bool("INVOICE_DOCUMENT_SWEEP_ENABLED", True):
        interval_minutes = _effective_int("INVOICE_DOCUMENT_SWEEP_INTERVAL_MINUTES", 15)
        schedule["invoice_document_sweep"] = {
            "task": "app.tasks.invoice_documents.generate_missing_documents",
            "schedule": timedelta(minutes=max(interval_minutes, 1)),
        }

    if _effective_bool("SUBSCRIPTION_EXPIRY_ENABLED", True):
        interval_minutes = _effective_int("SUBSCRIPTION_EXPIRY_INTERVAL_MINUTES", 60)
        schedule["subscription_expiry"] = {
            "task": "app.tasks.subscriptions.expire_subscriptions",
            "schedule": timedelta(minutes=max(interval_minutes, 5)),
        }

    if _effective_bool("TRIAL_REMINDER_ENABLED", True):
        interval_minutes = _effective_int("TRIAL_REMINDER_INTERVAL_MINUTES", 360)
        schedule["trial_ending_reminders"] = {
            "task": "app.tasks.subscriptions.send_trial_ending_reminders",
            "schedule": timedelta(minutes=max(interval_minutes, 5)),
        }

    logger.info("Celery beat schedule: %s", ", ".join(sorted(schedule)) or "empty")
    return schedule
