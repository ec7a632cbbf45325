"""Webhook envelope reconciliation.

One envelope is one database transaction: the provider handler writes ledger
rows and outbox events, then everything commits together or not at all.
Document generation and event dispatch are queued only after the commit.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from app.metrics import observe_webhook
from app.models.payments import PaymentProvider
from app.schemas.payments import WebhookEnvelope
from app.services.payments._common import ReconciliationContext
from app.services.payments.errors import MalformedPayloadError, StorageConflictError
from app.services.payments.paypal_handler import PayPalEventHandler
from app.services.payments.stripe_handler import StripeEventHandler

logger = logging.getLogger(__name__)


class Outcome(enum.Enum):
    processed = "processed"
    ignored = "ignored"
    malformed = "malformed"
    conflict = "conflict"


@dataclass
class ReconciliationResult:
    outcome: Outcome
    event_ids: list[UUID] = field(default_factory=list)
    invoice_ids: list[UUID] = field(default_factory=list)

    @property
    def retryable(self) -> bool:
        """Whether the provider should redeliver the envelope."""
        return self.outcome in (Outcome.malformed, Outcome.conflict)


HANDLERS = {
    PaymentProvider.stripe: StripeEventHandler(),
    PaymentProvider.paypal: PayPalEventHandler(),
}


def get_handler(provider: PaymentProvider):
    return HANDLERS[provider]


def _enqueue_followups(context: ReconciliationContext) -> None:
    """Queue document renders and event dispatch for committed work.

    Anything that fails to queue here is picked up by the periodic sweepers.
    """
    if not context.invoice_ids and not context.event_ids:
        return
    try:
        from app.tasks.events import dispatch_payment_event
        from app.tasks.invoice_documents import generate_invoice_document

        for invoice_id in context.invoice_ids:
            generate_invoice_document.delay(str(invoice_id))
        for event_id in context.event_ids:
            dispatch_payment_event.delay(str(event_id))
    except Exception as exc:
        logger.error(
            "Failed to queue follow-up tasks for %s %s: %s",
            context.provider.value,
            context.event_type,
            exc,
        )


class Reconciliation:
    @staticmethod
    def process_envelope(db: Session, envelope: WebhookEnvelope) -> ReconciliationResult:
        """Apply one authenticated envelope to the ledger.

        Raises:
            MalformedPayloadError: a recognised event lacked required fields;
                nothing was written.
            StorageConflictError: a uniqueness conflict survived the update
                retry; nothing was written.
        """
        started = time.monotonic()
        provider = envelope.provider
        context = ReconciliationContext(
            provider=provider,
            event_type=envelope.event_type,
            occurred_at=envelope.occurred_at,
        )
        logger.info(
            "Processing %s webhook %s (event %s)",
            provider.value,
            envelope.event_type,
            envelope.event_id,
        )
        try:
            handled = get_handler(provider).handle(db, envelope.event_type, envelope.payload, context)
            db.commit()
        except MalformedPayloadError as exc:
            db.rollback()
            logger.error("Discarding %s: %s", envelope.event_type, exc)
            observe_webhook(provider.value, envelope.event_type, Outcome.malformed.value, time.monotonic() - started)
            raise
        except StorageConflictError as exc:
            db.rollback()
            logger.error("Storage conflict for %s: %s", envelope.event_type, exc)
            observe_webhook(provider.value, envelope.event_type, Outcome.conflict.value, time.monotonic() - started)
            raise
        except Exception:
            db.rollback()
            raise

        outcome = Outcome.processed if handled else Outcome.ignored
        observe_webhook(provider.value, envelope.event_type, outcome.value, time.monotonic() - started)
        _enqueue_followups(context)
        return ReconciliationResult(
            outcome=outcome,
            event_ids=list(context.event_ids),
            invoice_ids=list(context.invoice_ids),
        )
