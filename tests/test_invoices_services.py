from datetime import UTC, datetime
from pathlib import Path

import pytest

from app.models.payments import (
    Invoice,
    InvoiceStatus,
    PaymentProvider,
    PaymentStatus,
    Transaction,
)
from app.services import payments as payments_service
from app.services.payments import invoice_documents
from app.services.payments.errors import DocumentRenderError
from app.services.payments.invoices import Invoices, line_item


def _transaction(db_session, customer=None, amount=4200, status=PaymentStatus.succeeded, external_id="pi_doc"):
    transaction = Transaction(
        provider=PaymentProvider.stripe,
        external_id=external_id,
        customer_id=customer.id if customer else None,
        amount=amount,
        currency="USD",
        status=status,
        description="Annual plan",
    )
    db_session.add(transaction)
    db_session.flush()
    return transaction


def _assert_totals(invoice):
    assert invoice.total == invoice.subtotal + invoice.tax - invoice.discount
    assert invoice.amount_due == invoice.total - invoice.amount_paid


# =============================================================================
# Totals and numbering
# =============================================================================


class TestTotals:
    def test_recalculate_from_lines(self):
        invoice = Invoice(
            line_items=[line_item("Seat", 3, 1000, None), line_item("Setup", 1, None, 500)],
            discount=200,
            amount_paid=0,
        )

        Invoices.recalculate_totals(invoice)

        assert invoice.subtotal == 3500
        assert invoice.total == 3300
        assert invoice.amount_due == 3300
        _assert_totals(invoice)

    def test_tax_rate_rounds_half_up(self):
        invoice = Invoice(line_items=[line_item("Plan", 1, 1005, 1005)], amount_paid=0)

        Invoices.recalculate_totals(invoice, tax_rate="10")

        assert invoice.tax == 101
        _assert_totals(invoice)

    def test_line_item_defaults(self):
        assert line_item(None, None, None, 700) == {
            "description": "Payment",
            "quantity": 1,
            "unit_price": 700,
            "amount": 700,
        }


class TestNumbering:
    def test_numbers_increase_within_year(self, db_session):
        issued = datetime(2026, 4, 1, tzinfo=UTC)
        first = Invoices.next_number(db_session, issued)
        db_session.add(Invoice(number=first, line_items=[]))
        db_session.flush()

        second = Invoices.next_number(db_session, issued)

        assert first == "INV-2026-0001"
        assert second == "INV-2026-0002"

    def test_numbers_restart_each_year(self, db_session):
        db_session.add(Invoice(number="INV-2025-0042", line_items=[]))
        db_session.flush()

        assert Invoices.next_number(db_session, datetime(2026, 1, 1, tzinfo=UTC)) == "INV-2026-0001"


# =============================================================================
# Derivation
# =============================================================================


class TestCreateFromTransaction:
    def test_snapshot_and_totals(self, db_session, stripe_customer):
        transaction = _transaction(db_session, stripe_customer)

        invoice = Invoices.create_from_transaction(db_session, transaction)

        assert invoice.status == InvoiceStatus.paid
        assert invoice.billing_name == stripe_customer.name
        assert invoice.billing_address == stripe_customer.billing_address
        assert invoice.subtotal == 4200
        assert invoice.amount_paid == 4200
        assert invoice.amount_due == 0
        _assert_totals(invoice)

    def test_replay_returns_existing_invoice(self, db_session):
        transaction = _transaction(db_session)

        first = Invoices.create_from_transaction(db_session, transaction)
        second = Invoices.create_from_transaction(db_session, transaction)

        assert first.id == second.id
        assert db_session.query(Invoice).filter(Invoice.transaction_id == transaction.id).count() == 1

    def test_billing_snapshot_is_not_resynced(self, db_session, stripe_customer):
        transaction = _transaction(db_session, stripe_customer)
        invoice = Invoices.create_from_transaction(db_session, transaction)

        stripe_customer.name = "Renamed Customer"
        db_session.flush()

        db_session.refresh(invoice)
        assert invoice.billing_name == "Ada Lovelace"

    def test_pending_transaction_gets_open_invoice(self, db_session):
        transaction = _transaction(db_session, status=PaymentStatus.pending)

        invoice = Invoices.create_from_transaction(db_session, transaction)

        assert invoice.status == InvoiceStatus.open
        assert invoice.amount_due == invoice.total


class TestStatusHelpers:
    def test_mark_paid(self, db_session):
        invoice = Invoices.create_from_transaction(
            db_session, _transaction(db_session, status=PaymentStatus.pending)
        )

        Invoices.mark_paid(db_session, invoice)

        assert invoice.status == InvoiceStatus.paid
        assert invoice.amount_due == 0
        assert invoice.paid_at is not None

    def test_mark_open_never_reopens_void(self, db_session):
        invoice = Invoices.create_from_transaction(db_session, _transaction(db_session))
        Invoices.mark_void(db_session, invoice)

        Invoices.mark_open(db_session, invoice)

        assert invoice.status == InvoiceStatus.void


class TestListing:
    def test_filter_by_status(self, db_session):
        Invoices.create_from_transaction(db_session, _transaction(db_session, external_id="pi_a"))
        Invoices.create_from_transaction(
            db_session,
            _transaction(db_session, status=PaymentStatus.pending, external_id="pi_b"),
        )

        paid = payments_service.invoices.list(db_session, status="paid")

        assert [invoice.status for invoice in paid] == [InvoiceStatus.paid]


# =============================================================================
# Documents
# =============================================================================


class _FailingRenderer:
    name = "broken"
    extension = "pdf"
    content_type = "application/pdf"

    def render(self, data):
        raise RuntimeError("renderer crashed")


class _CountingRenderer(invoice_documents.HtmlInvoiceRenderer):
    def __init__(self):
        self.calls = 0

    def render(self, data):
        self.calls += 1
        return super().render(data)


class TestDocuments:
    def test_generate_twice_renders_once(self, db_session, invoice_storage):
        invoice = Invoices.create_from_transaction(db_session, _transaction(db_session))
        renderer = _CountingRenderer()

        first = invoice_documents.generate_document(db_session, invoice, renderer)
        second = invoice_documents.generate_document(db_session, invoice, renderer)

        assert first == second
        assert renderer.calls == 1
        stored = Path(invoice_storage) / first
        assert stored.exists()
        assert invoice.number in stored.read_text()
        assert first.endswith(f"invoice-{invoice.number}.html")

    def test_failed_renderer_falls_back_to_html(self, db_session, invoice_storage):
        invoice = Invoices.create_from_transaction(db_session, _transaction(db_session))

        path = invoice_documents.generate_document(db_session, invoice, _FailingRenderer())

        assert path.endswith(".html")
        assert invoice.document_generated_at is not None

    def test_html_failure_raises(self, db_session, invoice_storage, monkeypatch):
        invoice = Invoices.create_from_transaction(db_session, _transaction(db_session))
        def broken_html(data):
            raise ValueError("bad template")

        monkeypatch.setattr(invoice_documents, "render_invoice_html", broken_html)

        with pytest.raises(DocumentRenderError):
            invoice_documents.generate_document(
                db_session, invoice, invoice_documents.HtmlInvoiceRenderer()
            )

        assert invoice.document_path is None

    def test_document_data_carries_totals(self, db_session):
        invoice = Invoices.create_from_transaction(db_session, _transaction(db_session))

        data = invoice_documents.invoice_document_data(invoice)

        assert data["number"] == invoice.number
        assert data["total"] == invoice.total
        assert data["line_items"][0]["description"] == "Annual plan"

    def test_unknown_renderer_name_uses_html(self):
        assert isinstance(invoice_documents.get_renderer("nope"), invoice_documents.HtmlInvoiceRenderer)

    def test_process_document_skips_second_run(self, db_session, invoice_storage, monkeypatch):
        invoice = Invoices.create_from_transaction(db_session, _transaction(db_session))
        db_session.commit()
        invoice_id = str(invoice.id)
        monkeypatch.setattr(invoice_documents, "SessionLocal", lambda: db_session)
        monkeypatch.setattr(
            invoice_documents, "get_renderer", lambda name=None: invoice_documents.HtmlInvoiceRenderer()
        )

        first = invoice_documents.process_document(invoice_id)
        second = invoice_documents.process_document(invoice_id)

        assert first["status"] == "generated"
        assert second["status"] == "skipped"
        assert second["document_path"] == first["document_path"]
