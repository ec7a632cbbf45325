import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import or_

from app.celery_app import celery_app
from app.db import SessionLocal
from app.metrics import NOTIFICATIONS
from app.models.notification import Notification, NotificationStatus
from app.services.notification_sink import get_notification_sink

logger = logging.getLogger(__name__)

# Timeout for stuck "sending" notifications (5 minutes)
SENDING_TIMEOUT_MINUTES = 5
MAX_DELIVERY_ATTEMPTS = 5


def _deliver_notification_queue(db, batch_size: int = 50, sink=None) -> int:
    sink = sink or get_notification_sink()
    now = datetime.now(UTC)
    stuck_threshold = now - timedelta(minutes=SENDING_TIMEOUT_MINUTES)

    notifications = (
        db.query(Notification)
        .filter(Notification.is_active.is_(True))
        .filter(
            or_(
                Notification.status == NotificationStatus.queued,
                # Crashed during send
                (
                    (Notification.status == NotificationStatus.sending)
                    & (Notification.updated_at < stuck_threshold)
                ),
                (
                    (Notification.status == NotificationStatus.failed)
                    & (Notification.retry_count < MAX_DELIVERY_ATTEMPTS)
                ),
            )
        )
        .order_by(Notification.created_at.asc())
        .limit(batch_size)
        .all()
    )
    delivered = 0
    for notification in notifications:
        notification.status = NotificationStatus.sending
        db.commit()

        try:
            sink.send(notification.user_id, notification.template_kind, notification.context or {})
        except Exception as exc:
            logger.warning(
                "Notification %s (%s) failed: %s",
                notification.id,
                notification.template_kind,
                exc,
            )
            notification.status = NotificationStatus.failed
            notification.retry_count = (notification.retry_count or 0) + 1
            notification.last_error = str(exc)
            NOTIFICATIONS.labels(template=notification.template_kind, status="failed").inc()
        else:
            notification.status = NotificationStatus.delivered
            notification.sent_at = datetime.now(UTC)
            notification.last_error = None
            NOTIFICATIONS.labels(template=notification.template_kind, status="delivered").inc()
            delivered += 1
        db.commit()
    return delivered


@celery_app.task(name="app.tasks.notifications.deliver_notification_queue")
def deliver_notification_queue():
    session = SessionLocal()
    try:
        return {"delivered": _deliver_notification_queue(session)}
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
