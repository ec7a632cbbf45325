import os
import sqlite3
import uuid
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base

# Register UUID adapter for SQLite - store as string
sqlite3.register_adapter(uuid.UUID, lambda u: str(u))


# Monkey-patch SQLAlchemy's UUID type for SQLite compatibility
# This must happen before any models are imported
from sqlalchemy.sql import sqltypes

_original_uuid_bind_processor = sqltypes.Uuid.bind_processor
_original_uuid_result_processor = sqltypes.Uuid.result_processor


def _sqlite_uuid_bind_processor(self, dialect):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return str(value)
                return str(uuid.UUID(value)) if value else None
            return None
        return process
    return _original_uuid_bind_processor(self, dialect)


def _sqlite_uuid_result_processor(self, dialect, coltype):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return value
                return uuid.UUID(value) if value else None
            return None
        return process
    return _original_uuid_result_processor(self, dialect, coltype)


setattr(sqltypes.Uuid, "bind_processor", _sqlite_uuid_bind_processor)
setattr(sqltypes.Uuid, "result_processor", _sqlite_uuid_result_processor)


def _patch_jsonb_for_sqlite():
    """Make JSONB compile as JSON for SQLite dialect."""
    from sqlalchemy.dialects.sqlite.base import SQLiteTypeCompiler

    if not hasattr(SQLiteTypeCompiler, "_original_visit_JSONB"):
        if hasattr(SQLiteTypeCompiler, "visit_JSONB"):
            SQLiteTypeCompiler._original_visit_JSONB = SQLiteTypeCompiler.visit_JSONB

        def visit_JSONB(self, type_, **kw):
            return self.visit_JSON(type_, **kw)

        SQLiteTypeCompiler.visit_JSONB = visit_JSONB


_patch_jsonb_for_sqlite()

import app.models  # noqa: E402,F401
from app.models.orders import Order, OrderStatus  # noqa: E402
from app.models.payments import PaymentCustomer, PaymentProvider  # noqa: E402


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        # Use PostgreSQL for tests (recommended)
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        # pysqlite manages transactions itself and breaks SAVEPOINT; take over
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, _connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)

    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def queued_tasks(monkeypatch):
    """Replace Celery ``.delay`` calls with mocks; no broker in tests."""
    from app.tasks.events import dispatch_payment_event
    from app.tasks.invoice_documents import generate_invoice_document

    mocks = {
        "dispatch_payment_event": MagicMock(),
        "generate_invoice_document": MagicMock(),
    }
    monkeypatch.setattr(dispatch_payment_event, "delay", mocks["dispatch_payment_event"])
    monkeypatch.setattr(generate_invoice_document, "delay", mocks["generate_invoice_document"])
    return mocks


@pytest.fixture()
def invoice_storage(tmp_path, monkeypatch):
    monkeypatch.setattr(
        "app.services.payments.invoice_documents._storage_root", lambda: tmp_path
    )
    return tmp_path


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex}@example.com"


@pytest.fixture()
def stripe_customer(db_session):
    customer = PaymentCustomer(
        user_id=uuid.uuid4(),
        provider=PaymentProvider.stripe,
        external_id=f"cus_{uuid.uuid4().hex[:14]}",
        email=_unique_email(),
        name="Ada Lovelace",
        billing_address={"line1": "12 Analytical Way", "city": "London", "country": "GB"},
    )
    db_session.add(customer)
    db_session.commit()
    db_session.refresh(customer)
    return customer


@pytest.fixture()
def paypal_customer(db_session):
    customer = PaymentCustomer(
        user_id=uuid.uuid4(),
        provider=PaymentProvider.paypal,
        external_id=f"PAYER{uuid.uuid4().hex[:8].upper()}",
        email=_unique_email(),
        name="Grace Hopper",
    )
    db_session.add(customer)
    db_session.commit()
    db_session.refresh(customer)
    return customer


@pytest.fixture()
def order(db_session):
    order = Order(user_id=uuid.uuid4(), status=OrderStatus.pending, total=4999, currency="USD")
    db_session.add(order)
    db_session.commit()
    db_session.refresh(order)
    return order


@pytest.fixture()
def now():
    return datetime.now(UTC)
