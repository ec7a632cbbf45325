"""Event handlers module.

- NotificationHandler: queues user-facing notifications for payment events
"""

from app.services.events.handlers.notification import NotificationHandler

__all__ = ["NotificationHandler"]
