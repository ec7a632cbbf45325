"""Outbound notification sinks.

A sink accepts ``send(user_id, template_kind, context)``. Rendering and the
actual transport (email, SMS, push) belong to whatever sits behind it.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Protocol
from uuid import UUID

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class NotificationSinkError(Exception):
    """Raised when a sink refuses or fails to accept a message."""


class NotificationSink(Protocol):
    """Notification delivery interface."""

    def send(self, user_id: UUID, template_kind: str, context: dict[str, Any]) -> None: ...


class LoggingNotificationSink:
    """Sink used when no delivery endpoint is configured."""

    def send(self, user_id: UUID, template_kind: str, context: dict[str, Any]) -> None:
        logger.info(
            "Notification %s for user %s: %s", template_kind, user_id, context
        )


class HttpNotificationSink:
    """Posts notifications as JSON to a messaging service."""

    def __init__(self, url: str, timeout: int = 10, client: httpx.Client | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self.client = client

    def send(self, user_id: UUID, template_kind: str, context: dict[str, Any]) -> None:
        body = {
            "user_id": str(user_id),
            "template": template_kind,
            "context": context,
        }
        try:
            if self.client is not None:
                response = self.client.post(self.url, json=body, timeout=self.timeout)
            else:
                response = httpx.post(self.url, json=body, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationSinkError(f"Notification sink rejected {template_kind}: {exc}") from exc


@lru_cache
def get_notification_sink() -> NotificationSink:
    if settings.notification_sink_url:
        return HttpNotificationSink(
            settings.notification_sink_url, timeout=settings.notification_sink_timeout
        )
    return LoggingNotificationSink()
