"""Subscription lifecycle tracking.

The provider is the source of truth for subscription state, so snapshots are
applied without a transition table. Each row remembers the provider
timestamp of the newest snapshot applied (``last_event_at``); a snapshot
older than that is a late redelivery and is ignored instead of regressing
the row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import settings
from app.models.payments import PaymentProvider, Subscription, SubscriptionStatus
from app.schemas.payments import SubscriptionRead
from app.services.common import (
    apply_ordering,
    apply_pagination,
    as_utc,
    coerce_uuid,
    utcnow,
    validate_enum,
)
from app.services.events import emit_event
from app.services.events.types import EventType
from app.services.payments.upsert import find, upsert
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


@dataclass
class SnapshotResult:
    subscription: Subscription | None
    created: bool = False
    applied: bool = True


def is_stale(subscription: Subscription, occurred_at: datetime | None) -> bool:
    """True when ``occurred_at`` predates the newest applied snapshot."""
    if occurred_at is None or subscription.last_event_at is None:
        return False
    return as_utc(occurred_at) < as_utc(subscription.last_event_at)


def _stamp(attributes: dict[str, Any], occurred_at: datetime | None) -> dict[str, Any]:
    data = dict(attributes)
    if occurred_at is not None:
        data["last_event_at"] = as_utc(occurred_at)
    return data


def subscription_event_context(subscription: Subscription) -> dict[str, Any]:
    return {
        "subscription_id": str(subscription.id),
        "external_id": subscription.external_id,
        "plan_id": subscription.plan_id,
        "status": subscription.status.value,
        "amount": subscription.amount,
        "currency": subscription.currency,
        "trial_end": as_utc(subscription.trial_end).isoformat() if subscription.trial_end else None,
    }


class Subscriptions(ListResponseMixin):
    read_schema = SubscriptionRead

    @staticmethod
    def apply_snapshot(
        db: Session,
        provider: PaymentProvider,
        external_id: str,
        attributes: dict[str, Any],
        occurred_at: datetime | None = None,
    ) -> SnapshotResult:
        """Replace the stored snapshot with ``attributes`` unless it is stale."""
        existing = find(db, Subscription, provider, external_id)
        if existing is not None and is_stale(existing, occurred_at):
            logger.info(
                "Ignoring stale %s subscription snapshot %s (%s < %s)",
                provider.value,
                external_id,
                occurred_at,
                existing.last_event_at,
            )
            return SnapshotResult(existing, created=False, applied=False)
        subscription, created = upsert(
            db, Subscription, provider, external_id, _stamp(attributes, occurred_at)
        )
        return SnapshotResult(subscription, created=created)

    @staticmethod
    def expire_overdue(db: Session, now: datetime | None = None, dry_run: bool = False) -> list[UUID]:
        """Expire ended trials and lapsed past-due/unpaid subscriptions.

        Past-due and unpaid subscriptions get a grace period of
        ``SUBSCRIPTION_GRACE_PERIOD_DAYS`` after their period ends.
        """
        now = now or utcnow()
        grace_cutoff = now - timedelta(days=settings.subscription_grace_period_days)
        candidates = (
            db.query(Subscription)
            .filter(
                or_(
                    (Subscription.status == SubscriptionStatus.trialing)
                    & (Subscription.trial_end.is_not(None))
                    & (Subscription.trial_end < now),
                    (Subscription.status.in_([SubscriptionStatus.past_due, SubscriptionStatus.unpaid]))
                    & (Subscription.current_period_end.is_not(None))
                    & (Subscription.current_period_end < grace_cutoff),
                )
            )
            .all()
        )
        expired: list[UUID] = []
        for subscription in candidates:
            expired.append(subscription.id)
            if dry_run:
                logger.info("Would expire subscription %s", subscription.external_id)
                continue
            subscription.status = SubscriptionStatus.expired
            subscription.ended_at = now
        if not dry_run and expired:
            db.commit()
        logger.info(
            "Expired %s subscriptions%s", len(expired), " (dry run)" if dry_run else ""
        )
        return expired

    @staticmethod
    def mark_trial_ending(db: Session, subscription: Subscription, provider: str | None = None):
        """Emit ``subscription.trial_ending`` once per subscription."""
        if subscription.trial_reminder_sent_at is not None:
            return None
        subscription.trial_reminder_sent_at = utcnow()
        return emit_event(
            db,
            EventType.subscription_trial_ending,
            subscription_event_context(subscription),
            provider=provider or subscription.provider.value,
            customer_id=subscription.customer_id,
            subscription_id=subscription.id,
        )

    @staticmethod
    def send_trial_ending_reminders(db: Session, now: datetime | None = None, days: int | None = None) -> list[UUID]:
        """Queue reminders for trials ending within ``days``; returns event ids."""
        now = now or utcnow()
        horizon = now + timedelta(days=settings.trial_reminder_days if days is None else days)
        subscriptions = (
            db.query(Subscription)
            .filter(Subscription.status == SubscriptionStatus.trialing)
            .filter(Subscription.trial_reminder_sent_at.is_(None))
            .filter(Subscription.trial_end.is_not(None))
            .filter(Subscription.trial_end > now)
            .filter(Subscription.trial_end <= horizon)
            .all()
        )
        event_ids: list[UUID] = []
        for subscription in subscriptions:
            event = Subscriptions.mark_trial_ending(db, subscription)
            if event is not None:
                event_ids.append(event.event_id)
        if event_ids:
            db.commit()
        return event_ids

    @staticmethod
    def list(
        db: Session,
        status: str | None = None,
        customer_id: str | None = None,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(Subscription)
        if status:
            query = query.filter(
                Subscription.status == validate_enum(status, SubscriptionStatus, "status")
            )
        if customer_id:
            query = query.filter(Subscription.customer_id == coerce_uuid(customer_id))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": Subscription.created_at,
                "current_period_end": Subscription.current_period_end,
            },
        )
        return apply_pagination(query, limit, offset).all()
