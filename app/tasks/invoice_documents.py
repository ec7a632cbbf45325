"""Celery tasks for invoice document rendering."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from app.celery_app import celery_app
from app.db import SessionLocal
from app.models.payments import Invoice
from app.services.payments import invoice_documents as invoice_documents_service
from app.services.payments.errors import DocumentRenderError

logger = logging.getLogger(__name__)

SWEEP_BATCH_SIZE = 50
SWEEP_MIN_AGE_MINUTES = 5


@celery_app.task(
    name="app.tasks.invoice_documents.generate_invoice_document",
    bind=True,
    max_retries=5,
    autoretry_for=(DocumentRenderError,),
    retry_backoff=True,
    retry_backoff_max=3600,
)
def generate_invoice_document(self, invoice_id: str):
    return invoice_documents_service.process_document(invoice_id)


@celery_app.task(name="app.tasks.invoice_documents.generate_missing_documents")
def generate_missing_documents():
    """Queue renders for invoices whose render task was lost."""
    session = SessionLocal()
    try:
        cutoff = datetime.now(UTC) - timedelta(minutes=SWEEP_MIN_AGE_MINUTES)
        invoice_ids = [
            str(row.id)
            for row in session.query(Invoice.id)
            .filter(Invoice.document_path.is_(None))
            .filter(Invoice.created_at < cutoff)
            .order_by(Invoice.created_at.asc())
            .limit(SWEEP_BATCH_SIZE)
            .all()
        ]
    finally:
        session.close()
    for invoice_id in invoice_ids:
        generate_invoice_document.delay(invoice_id)
    if invoice_ids:
        logger.info("Queued %s missing invoice documents", len(invoice_ids))
    return {"queued": len(invoice_ids)}
