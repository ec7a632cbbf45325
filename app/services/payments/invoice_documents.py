"""Invoice document generation.

Renders an invoice through a pluggable renderer and stores the result under
``INVOICE_STORAGE_DIR/YYYY/MM/``. Generation is skipped when the invoice
already has a document, so replays and task retries never render twice.
"""

from __future__ import annotations

import html
import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy.orm import Session

from app.config import settings
from app.db import SessionLocal
from app.metrics import INVOICE_DOCUMENTS
from app.models.payments import Invoice
from app.services.common import as_utc, coerce_uuid
from app.services.payments.errors import DocumentRenderError

logger = logging.getLogger(__name__)


class InvoiceRenderer(Protocol):
    """Turns structured invoice data into document bytes."""

    name: str
    extension: str
    content_type: str

    def render(self, data: dict[str, Any]) -> bytes: ...


def _money(amount: int | None, currency: str) -> str:
    value = (amount or 0) / 100
    return f"{currency} {value:,.2f}"


def _date(value: str | None) -> str:
    if not value:
        return ""
    return value[:10]


def invoice_document_data(invoice: Invoice) -> dict[str, Any]:
    """Plain-data snapshot handed to renderers."""
    return {
        "number": invoice.number,
        "status": invoice.status.value,
        "currency": invoice.currency,
        "invoice_date": as_utc(invoice.invoice_date).isoformat() if invoice.invoice_date else None,
        "due_date": as_utc(invoice.due_date).isoformat() if invoice.due_date else None,
        "paid_at": as_utc(invoice.paid_at).isoformat() if invoice.paid_at else None,
        "billing": {
            "name": invoice.billing_name,
            "email": invoice.billing_email,
            "address": invoice.billing_address or {},
        },
        "company": {
            "name": settings.invoice_company_name,
            "address": settings.invoice_company_address,
            "email": settings.invoice_company_email,
        },
        "line_items": list(invoice.line_items or []),
        "subtotal": invoice.subtotal,
        "tax": invoice.tax,
        "discount": invoice.discount,
        "total": invoice.total,
        "amount_paid": invoice.amount_paid,
        "amount_due": invoice.amount_due,
    }


def render_invoice_html(data: dict[str, Any]) -> str:
    currency = data["currency"]
    address = data["billing"].get("address") or {}
    address_text = ", ".join(str(value) for value in address.values() if value)
    rows = "".join(
        "<tr>"
        f"<td>{html.escape(str(item.get('description') or ''))}</td>"
        f"<td class='num'>{int(item.get('quantity') or 1)}</td>"
        f"<td class='num'>{_money(item.get('unit_price'), currency)}</td>"
        f"<td class='num'>{_money(item.get('amount'), currency)}</td>"
        "</tr>"
        for item in data["line_items"]
    )
    discount_row = ""
    if data["discount"]:
        discount_row = (
            f"<tr><th>Discount</th><td class='num'>-{_money(data['discount'], currency)}</td></tr>"
        )
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Invoice {html.escape(data['number'])}</title>
<style>
body {{ font-family: Helvetica, Arial, sans-serif; font-size: 12px; color: #222; }}
table {{ width: 100%; border-collapse: collapse; }}
th, td {{ padding: 6px; border-bottom: 1px solid #ddd; text-align: left; }}
.num {{ text-align: right; }}
.totals {{ width: 40%; margin-left: auto; margin-top: 16px; }}
</style>
</head>
<body>
<h1>Invoice {html.escape(data['number'])}</h1>
<p><strong>{html.escape(data['company']['name'] or '')}</strong><br>
{html.escape(data['company']['address'] or '')}<br>
{html.escape(data['company']['email'] or '')}</p>
<p>Bill to: {html.escape(data['billing'].get('name') or '')}<br>
{html.escape(data['billing'].get('email') or '')}<br>
{html.escape(address_text)}</p>
<p>Date: {_date(data['invoice_date'])} &middot; Status: {html.escape(data['status'])}</p>
<table>
<thead><tr><th>Description</th><th class='num'>Qty</th><th class='num'>Unit price</th><th class='num'>Amount</th></tr></thead>
<tbody>{rows}</tbody>
</table>
<table class="totals">
<tr><th>Subtotal</th><td class='num'>{_money(data['subtotal'], currency)}</td></tr>
<tr><th>Tax</th><td class='num'>{_money(data['tax'], currency)}</td></tr>
{discount_row}
<tr><th>Total</th><td class='num'>{_money(data['total'], currency)}</td></tr>
<tr><th>Paid</th><td class='num'>{_money(data['amount_paid'], currency)}</td></tr>
<tr><th>Amount due</th><td class='num'>{_money(data['amount_due'], currency)}</td></tr>
</table>
</body>
</html>
"""


class HtmlInvoiceRenderer:
    name = "html"
    extension = "html"
    content_type = "text/html"

    def render(self, data: dict[str, Any]) -> bytes:
        return render_invoice_html(data).encode("utf-8")


class WeasyPrintInvoiceRenderer:
    name = "weasyprint"
    extension = "pdf"
    content_type = "application/pdf"

    def render(self, data: dict[str, Any]) -> bytes:
        from weasyprint import HTML

        return HTML(string=render_invoice_html(data)).write_pdf()


RENDERERS: dict[str, type] = {
    HtmlInvoiceRenderer.name: HtmlInvoiceRenderer,
    WeasyPrintInvoiceRenderer.name: WeasyPrintInvoiceRenderer,
}


def get_renderer(name: str | None = None) -> InvoiceRenderer:
    renderer_cls = RENDERERS.get((name or settings.invoice_renderer).lower())
    if renderer_cls is None:
        logger.warning("Unknown invoice renderer %r, using html", name or settings.invoice_renderer)
        renderer_cls = HtmlInvoiceRenderer
    return renderer_cls()


def _storage_root() -> Path:
    return Path(settings.invoice_storage_dir)


def _safe_number(invoice: Invoice) -> str:
    raw = (invoice.number or str(invoice.id)).strip()
    return re.sub(r"[^A-Za-z0-9._-]+", "-", raw).strip("-") or str(invoice.id)


def document_relative_path(invoice: Invoice, extension: str) -> str:
    issued = as_utc(invoice.invoice_date) or datetime.now(UTC)
    return f"{issued:%Y}/{issued:%m}/invoice-{_safe_number(invoice)}.{extension}"


def document_absolute_path(invoice: Invoice) -> Path | None:
    if not invoice.document_path:
        return None
    return _storage_root() / invoice.document_path


def _render(renderer: InvoiceRenderer, data: dict[str, Any], invoice: Invoice) -> tuple[bytes, InvoiceRenderer]:
    try:
        return renderer.render(data), renderer
    except Exception as exc:
        if isinstance(renderer, HtmlInvoiceRenderer):
            INVOICE_DOCUMENTS.labels(renderer=renderer.name, status="failed").inc()
            raise DocumentRenderError(f"Cannot render invoice {invoice.number}: {exc}") from exc
        logger.warning(
            "%s render failed for invoice %s; storing HTML instead: %s",
            renderer.name,
            invoice.number,
            exc,
        )
        INVOICE_DOCUMENTS.labels(renderer=renderer.name, status="fallback").inc()
        fallback = HtmlInvoiceRenderer()
        return fallback.render(data), fallback


def generate_document(
    db: Session,
    invoice: Invoice,
    renderer: InvoiceRenderer | None = None,
) -> str:
    """Render and store the invoice document once.

    Returns the stored path relative to the storage root. The caller owns
    the commit.
    """
    if invoice.has_document:
        logger.debug("Invoice %s already has a document", invoice.number)
        return invoice.document_path

    content, used = _render(renderer or get_renderer(), invoice_document_data(invoice), invoice)
    relative_path = document_relative_path(invoice, used.extension)
    target = _storage_root() / relative_path
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    except OSError as exc:
        raise DocumentRenderError(f"Cannot store invoice {invoice.number}: {exc}") from exc

    invoice.document_path = relative_path
    invoice.document_generated_at = datetime.now(UTC)
    db.flush()
    INVOICE_DOCUMENTS.labels(renderer=used.name, status="generated").inc()
    logger.info("Stored invoice document %s", relative_path)
    return relative_path


def process_document(invoice_id: str) -> dict[str, Any]:
    """Generate the document for one invoice in its own session."""
    db = SessionLocal()
    try:
        invoice = db.get(Invoice, coerce_uuid(invoice_id))
        if invoice is None:
            logger.warning("Invoice %s not found for document generation", invoice_id)
            return {"status": "missing", "invoice_id": invoice_id}
        if invoice.has_document:
            return {
                "status": "skipped",
                "invoice_id": invoice_id,
                "document_path": invoice.document_path,
            }
        path = generate_document(db, invoice)
        db.commit()
        return {"status": "generated", "invoice_id": invoice_id, "document_path": path}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def media_type_for(path: str) -> str:
    if path.endswith(".pdf"):
        return WeasyPrintInvoiceRenderer.content_type
    return HtmlInvoiceRenderer.content_type
