"""End-to-end tests for the webhook boundary and read API."""

import json
import time
import uuid

import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.db import get_db
from app.main import app
from app.models.payments import Invoice, PaymentStatus, Transaction
from app.services.stripe import compute_signature

SECRET = "whsec_test"


@pytest.fixture()
def client(db_session, monkeypatch):
    monkeypatch.setattr(
        "app.services.stripe.settings",
        settings.model_copy(update={"stripe_webhook_secret": SECRET}),
    )
    monkeypatch.setattr(
        "app.services.payment_webhooks.settings",
        settings.model_copy(update={"paypal_verify_webhooks": False}),
    )

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.pop(get_db, None)


def _stripe_post(client, event, secret=SECRET, timestamp=None):
    body = json.dumps(event).encode()
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = compute_signature(body, timestamp, secret)
    return client.post(
        "/payment-webhooks/stripe",
        content=body,
        headers={"Stripe-Signature": f"t={timestamp},v1={signature}"},
    )


def _intent_event(intent_id="pi_api", amount=1999):
    return {
        "id": f"evt_{uuid.uuid4().hex[:10]}",
        "type": "payment_intent.succeeded",
        "created": int(time.time()),
        "data": {"object": {"id": intent_id, "amount": amount, "currency": "usd"}},
    }


# =============================================================================
# Stripe boundary
# =============================================================================


class TestStripeWebhook:
    def test_valid_event_is_reconciled(self, client, db_session):
        response = _stripe_post(client, _intent_event())

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "outcome": "processed"}
        transaction = db_session.query(Transaction).filter(Transaction.external_id == "pi_api").one()
        assert transaction.status == PaymentStatus.succeeded

    def test_bad_signature_is_rejected_without_writes(self, client, db_session):
        response = _stripe_post(client, _intent_event(), secret="whsec_wrong")

        assert response.status_code == 400
        assert db_session.query(Transaction).count() == 0

    def test_stale_timestamp_is_rejected(self, client):
        response = _stripe_post(client, _intent_event(), timestamp=int(time.time()) - 3600)

        assert response.status_code == 400

    def test_ignored_type_answers_200(self, client):
        event = {"id": "evt_x", "type": "balance.available", "data": {"object": {}}}

        response = _stripe_post(client, event)

        assert response.status_code == 200
        assert response.json()["outcome"] == "ignored"

    def test_malformed_payload_answers_400(self, client, db_session):
        event = _intent_event()
        event["data"]["object"] = {"amount": "lots"}

        response = _stripe_post(client, event)

        assert response.status_code == 400
        assert response.json()["status"] == "malformed"
        assert db_session.query(Transaction).count() == 0

    def test_invalid_json_answers_400(self, client):
        timestamp = int(time.time())
        body = b"{not json"
        signature = compute_signature(body, timestamp, SECRET)

        response = client.post(
            "/payment-webhooks/stripe",
            content=body,
            headers={"Stripe-Signature": f"t={timestamp},v1={signature}"},
        )

        assert response.status_code == 400

    def test_storage_conflict_answers_500(self, client, monkeypatch):
        from app.services.payments.errors import StorageConflictError

        def conflict(db, envelope):
            raise StorageConflictError("Transaction", "stripe", "pi_api")

        monkeypatch.setattr(
            "app.services.payment_webhooks.payments_service.reconciliation.process_envelope",
            conflict,
        )

        response = _stripe_post(client, _intent_event())

        assert response.status_code == 500


# =============================================================================
# PayPal boundary
# =============================================================================


class TestPayPalWebhook:
    def test_capture_completed(self, client, db_session):
        event = {
            "id": "WH-123",
            "event_type": "PAYMENT.CAPTURE.COMPLETED",
            "create_time": "2026-10-01T10:00:00Z",
            "resource": {"id": "CAP-API", "amount": {"value": "10.50", "currency_code": "USD"}},
        }

        response = client.post("/payment-webhooks/paypal", json=event)

        assert response.status_code == 200
        transaction = db_session.query(Transaction).filter(Transaction.external_id == "CAP-API").one()
        assert transaction.amount == 1050

    def test_verification_failure_is_rejected(self, client, monkeypatch):
        monkeypatch.setattr(
            "app.services.payment_webhooks.settings",
            settings.model_copy(update={"paypal_verify_webhooks": True}),
        )
        monkeypatch.setattr(
            "app.services.payment_webhooks.verify_paypal_signature", lambda event, headers: False
        )

        response = client.post(
            "/payment-webhooks/paypal",
            json={"id": "WH-1", "event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": {"id": "CAP"}},
        )

        assert response.status_code == 400


# =============================================================================
# Read API
# =============================================================================


class TestReadApi:
    def test_transactions_and_invoices(self, client):
        _stripe_post(client, _intent_event(intent_id="pi_read", amount=500))

        listing = client.get("/api/v1/payments/transactions", params={"status": "succeeded"})
        assert listing.status_code == 200
        body = listing.json()
        assert body["count"] == 1
        transaction_id = body["items"][0]["id"]

        detail = client.get(f"/api/v1/payments/transactions/{transaction_id}")
        assert detail.json()["external_id"] == "pi_read"

        invoices = client.get("/api/v1/payments/invoices").json()
        assert invoices["items"][0]["transaction_id"] == transaction_id
        assert invoices["items"][0]["total"] == 500

    def test_invalid_status_filter_is_400(self, client):
        response = client.get("/api/v1/payments/transactions", params={"status": "bogus"})

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid status"

    def test_invoice_document_missing_is_404(self, client, db_session):
        _stripe_post(client, _intent_event(intent_id="pi_doc"))
        invoice = db_session.query(Invoice).one()

        response = client.get(f"/api/v1/payments/invoices/{invoice.id}/document")

        assert response.status_code == 404

    def test_invoice_document_download(self, client, db_session, invoice_storage):
        from app.services.payments import invoice_documents

        _stripe_post(client, _intent_event(intent_id="pi_doc"))
        invoice = db_session.query(Invoice).one()
        invoice_documents.generate_document(
            db_session, invoice, invoice_documents.HtmlInvoiceRenderer()
        )
        db_session.commit()

        response = client.get(f"/api/v1/payments/invoices/{invoice.id}/document")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert invoice.number in response.text


class TestOrdersApi:
    def test_disallowed_transition_is_409(self, client, db_session, order):
        order.status = order.status.__class__.completed
        db_session.commit()

        response = client.post(f"/api/v1/orders/{order.id}/status", json={"status": "pending"})

        assert response.status_code == 409
        assert response.json()["code"] == "invalid_transition"
        assert response.json()["details"] == {"from": "completed", "to": "pending"}

    def test_allowed_transition(self, client, order):
        response = client.post(f"/api/v1/orders/{order.id}/status", json={"status": "confirmed"})

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

    def test_same_status_is_409(self, client, order):
        response = client.post(f"/api/v1/orders/{order.id}/status", json={"status": "pending"})

        assert response.status_code == 409
        assert response.json()["details"] == {"from": "pending", "to": "pending"}

    def test_list_orders(self, client, order):
        response = client.get("/api/v1/orders", params={"status": "pending"})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["items"][0]["id"] == str(order.id)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_metrics_exposes_webhook_counter(client):
    _stripe_post(client, _intent_event(intent_id="pi_metrics"))

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "payment_webhook_events_total" in response.text
