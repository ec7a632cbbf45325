"""Idempotent upsert keyed on ``(provider, external_id)``.

The unique constraint on ``(provider, external_id)`` is the only
synchronisation point between concurrent deliveries of the same provider
object. The lookup below is an optimisation; the insert runs in a SAVEPOINT
so losing the race rolls back only that insert, after which the winner's row
is re-read and updated.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.payments import PaymentProvider
from app.services.payments.errors import StorageConflictError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


def find(db: Session, model: type[ModelT], provider: PaymentProvider, external_id: str) -> ModelT | None:
    return (
        db.query(model)
        .filter(model.provider == provider)
        .filter(model.external_id == external_id)
        .first()
    )


def _apply(record, attributes: dict[str, Any]) -> None:
    for key, value in attributes.items():
        setattr(record, key, value)


def _update(db: Session, record, attributes: dict[str, Any]) -> None:
    _apply(record, attributes)
    with db.begin_nested():
        db.flush()


def upsert(
    db: Session,
    model: type[ModelT],
    provider: PaymentProvider,
    external_id: str,
    attributes: dict[str, Any],
) -> tuple[ModelT, bool]:
    """Find-or-create the row for ``(provider, external_id)`` and apply ``attributes``.

    Returns the record and whether this call inserted it. Replaying the same
    attributes is a no-op apart from ``updated_at``.

    Raises:
        StorageConflictError: the insert lost a race and the follow-up update
            conflicted as well.
    """
    entity = model.__name__
    record = find(db, model, provider, external_id)
    if record is not None:
        try:
            _update(db, record, attributes)
        except IntegrityError as exc:
            raise StorageConflictError(entity, provider.value, external_id) from exc
        return record, False

    record = model(provider=provider, external_id=external_id, **attributes)
    try:
        with db.begin_nested():
            db.add(record)
            db.flush()
    except IntegrityError:
        logger.info(
            "Concurrent insert for %s %s:%s, retrying as update",
            entity,
            provider.value,
            external_id,
        )
        existing = find(db, model, provider, external_id)
        if existing is None:
            raise StorageConflictError(entity, provider.value, external_id)
        try:
            _update(db, existing, attributes)
        except IntegrityError as exc:
            raise StorageConflictError(entity, provider.value, external_id) from exc
        return existing, False
    return record, True
