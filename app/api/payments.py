from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas.common import ListResponse
from app.schemas.payments import InvoiceRead, RefundRead, SubscriptionRead, TransactionRead
from app.services import payments as payments_service
from app.services.payments.invoice_documents import document_absolute_path, media_type_for

router = APIRouter(prefix="/payments")


@router.get(
    "/transactions",
    response_model=ListResponse[TransactionRead],
    tags=["payments"],
)
def list_transactions(
    provider: str | None = None,
    status: str | None = None,
    customer_id: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return payments_service.transactions.list_response(
        db, provider, status, customer_id, order_by, order_dir, limit, offset
    )


@router.get("/transactions/{transaction_id}", response_model=TransactionRead, tags=["payments"])
def get_transaction(transaction_id: str, db: Session = Depends(get_db)):
    return payments_service.transactions.get(db, transaction_id)


@router.get(
    "/transactions/{transaction_id}/refunds",
    response_model=list[RefundRead],
    tags=["payments"],
)
def list_transaction_refunds(transaction_id: str, db: Session = Depends(get_db)):
    return payments_service.transactions.refunds(db, transaction_id)


@router.get(
    "/subscriptions",
    response_model=ListResponse[SubscriptionRead],
    tags=["payments"],
)
def list_subscriptions(
    status: str | None = None,
    customer_id: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return payments_service.subscriptions.list_response(
        db, status, customer_id, order_by, order_dir, limit, offset
    )


@router.get(
    "/invoices",
    response_model=ListResponse[InvoiceRead],
    tags=["invoices"],
)
def list_invoices(
    status: str | None = None,
    customer_id: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return payments_service.invoices.list_response(
        db, status, customer_id, order_by, order_dir, limit, offset
    )


@router.get("/invoices/{invoice_id}", response_model=InvoiceRead, tags=["invoices"])
def get_invoice(invoice_id: str, db: Session = Depends(get_db)):
    return payments_service.invoices.get(db, invoice_id)


@router.get("/invoices/{invoice_id}/document", tags=["invoices"])
def download_invoice_document(invoice_id: str, db: Session = Depends(get_db)):
    invoice = payments_service.invoices.get(db, invoice_id)
    path = document_absolute_path(invoice)
    if path is None or not path.exists():
        raise HTTPException(status_code=404, detail="Invoice document not found")
    return FileResponse(
        path,
        media_type=media_type_for(invoice.document_path),
        filename=path.name,
    )
