"""Payment webhook orchestration.

Authenticates a provider delivery, normalises it into a
:class:`WebhookEnvelope` and hands it to reconciliation. The response tells
the provider whether to redeliver: only malformed payloads (400) and storage
conflicts (500) do; everything else, ignored event types included, answers
200 so providers do not retry domain-level no-ops.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.payments import PaymentProvider
from app.schemas.payments import WebhookEnvelope
from app.services import payments as payments_service
from app.services.paypal import verify_webhook_signature as verify_paypal_signature
from app.services.payments.errors import MalformedPayloadError, StorageConflictError
from app.services.stripe import verify_webhook_signature as verify_stripe_signature

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def stripe_envelope(event: dict[str, Any]) -> WebhookEnvelope:
    data = event.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    return WebhookEnvelope(
        provider=PaymentProvider.stripe,
        event_type=event.get("type") or "unknown",
        payload=obj if isinstance(obj, dict) else {},
        event_id=event.get("id"),
        occurred_at=_parse_timestamp(event.get("created")),
    )


def paypal_envelope(event: dict[str, Any]) -> WebhookEnvelope:
    resource = event.get("resource")
    return WebhookEnvelope(
        provider=PaymentProvider.paypal,
        event_type=event.get("event_type") or "unknown",
        payload=resource if isinstance(resource, dict) else {},
        event_id=event.get("id"),
        occurred_at=_parse_timestamp(event.get("create_time")),
    )


def _load_json(body: bytes) -> dict[str, Any] | None:
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def reconcile(db: Session, envelope: WebhookEnvelope) -> JSONResponse:
    try:
        result = payments_service.reconciliation.process_envelope(db, envelope)
    except MalformedPayloadError as exc:
        return JSONResponse({"status": "malformed", "detail": exc.detail}, status_code=400)
    except StorageConflictError:
        return JSONResponse({"status": "conflict"}, status_code=500)
    return JSONResponse({"status": "ok", "outcome": result.outcome.value}, status_code=200)


def process_stripe_webhook(*, db: Session, body: bytes, signature: str | None) -> JSONResponse:
    if not verify_stripe_signature(body, signature):
        logger.warning("Invalid Stripe webhook signature")
        return JSONResponse({"status": "invalid signature"}, status_code=400)

    event = _load_json(body)
    if event is None:
        return JSONResponse({"status": "invalid JSON"}, status_code=400)

    try:
        envelope = stripe_envelope(event)
    except ValidationError as exc:
        logger.error("Stripe webhook envelope rejected: %s", exc)
        return JSONResponse({"status": "malformed"}, status_code=400)
    logger.info("Stripe webhook: %s", envelope.event_type)
    return reconcile(db, envelope)


def process_paypal_webhook(*, db: Session, body: bytes, headers: dict[str, str]) -> JSONResponse:
    event = _load_json(body)
    if event is None:
        return JSONResponse({"status": "invalid JSON"}, status_code=400)

    if settings.paypal_verify_webhooks and not verify_paypal_signature(event, headers):
        logger.warning("Invalid PayPal webhook signature")
        return JSONResponse({"status": "invalid signature"}, status_code=400)

    try:
        envelope = paypal_envelope(event)
    except ValidationError as exc:
        logger.error("PayPal webhook envelope rejected: %s", exc)
        return JSONResponse({"status": "malformed"}, status_code=400)
    logger.info("PayPal webhook: %s", envelope.event_type)
    return reconcile(db, envelope)
