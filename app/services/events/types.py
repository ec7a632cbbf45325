"""Event types and data structures for payment domain events.

Domain events are facts produced by reconciliation ("payment succeeded",
"refund processed"). They are written to the outbox with the ledger change
and consumed asynchronously.
"""

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4


class EventType(enum.Enum):
    """Payment domain events.

    Event naming convention: {entity}.{action}
    """

    payment_succeeded = "payment.succeeded"
    payment_failed = "payment.failed"

    subscription_created = "subscription.created"
    subscription_canceled = "subscription.canceled"
    subscription_trial_ending = "subscription.trial_ending"

    refund_processed = "refund.processed"


@dataclass
class Event:
    """A domain event with its routing context."""

    event_type: EventType
    payload: dict[str, Any]
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    provider: str | None = None
    user_id: UUID | None = None
    customer_id: UUID | None = None
    transaction_id: UUID | None = None
    subscription_id: UUID | None = None
    refund_id: UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type.value,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": self.payload,
            "provider": self.provider,
            "user_id": str(self.user_id) if self.user_id else None,
            "customer_id": str(self.customer_id) if self.customer_id else None,
            "transaction_id": str(self.transaction_id) if self.transaction_id else None,
            "subscription_id": str(self.subscription_id) if self.subscription_id else None,
            "refund_id": str(self.refund_id) if self.refund_id else None,
        }
