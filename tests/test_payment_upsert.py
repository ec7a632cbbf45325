import pytest

from app.models.payments import PaymentProvider, PaymentStatus, Transaction
from app.services.payments import upsert as upsert_service
from app.services.payments.errors import StorageConflictError


def test_upsert_creates_then_updates(db_session):
    record, created = upsert_service.upsert(
        db_session, Transaction, PaymentProvider.stripe, "pi_up", {"amount": 100}
    )
    assert created is True

    again, created_again = upsert_service.upsert(
        db_session,
        Transaction,
        PaymentProvider.stripe,
        "pi_up",
        {"amount": 250, "status": PaymentStatus.succeeded},
    )

    assert created_again is False
    assert again.id == record.id
    assert again.amount == 250
    assert db_session.query(Transaction).filter(Transaction.external_id == "pi_up").count() == 1


def test_same_external_id_different_provider_is_distinct(db_session):
    stripe_row, _ = upsert_service.upsert(
        db_session, Transaction, PaymentProvider.stripe, "shared-id", {"amount": 1}
    )
    paypal_row, created = upsert_service.upsert(
        db_session, Transaction, PaymentProvider.paypal, "shared-id", {"amount": 2}
    )

    assert created is True
    assert stripe_row.id != paypal_row.id


def test_lost_insert_race_retries_as_update(db_session, monkeypatch):
    winner = Transaction(provider=PaymentProvider.stripe, external_id="pi_race", amount=100)
    db_session.add(winner)
    db_session.flush()

    original_find = upsert_service.find
    calls = {"count": 0}

    def racing_find(db, model, provider, external_id):
        calls["count"] += 1
        if calls["count"] == 1:
            # Concurrent writer inserted between our lookup and insert
            return None
        return original_find(db, model, provider, external_id)

    monkeypatch.setattr(upsert_service, "find", racing_find)

    record, created = upsert_service.upsert(
        db_session, Transaction, PaymentProvider.stripe, "pi_race", {"amount": 300}
    )

    assert created is False
    assert record.id == winner.id
    assert record.amount == 300
    assert db_session.query(Transaction).filter(Transaction.external_id == "pi_race").count() == 1


def test_conflict_without_visible_winner_raises(db_session, monkeypatch):
    db_session.add(Transaction(provider=PaymentProvider.stripe, external_id="pi_ghost", amount=1))
    db_session.flush()
    monkeypatch.setattr(upsert_service, "find", lambda *args: None)

    with pytest.raises(StorageConflictError) as exc_info:
        upsert_service.upsert(
            db_session, Transaction, PaymentProvider.stripe, "pi_ghost", {"amount": 2}
        )

    assert exc_info.value.entity == "Transaction"
    assert exc_info.value.external_id == "pi_ghost"
