from __future__ import annotations

from sqlalchemy.orm import Session

from app.models.payments import PaymentProvider, PaymentStatus, Refund, Transaction
from app.schemas.payments import TransactionRead
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_or_404,
    validate_enum,
)
from app.services.response import ListResponseMixin


class Transactions(ListResponseMixin):
    read_schema = TransactionRead

    @staticmethod
    def get(db: Session, transaction_id: str) -> Transaction:
        return get_or_404(db, Transaction, transaction_id)

    @staticmethod
    def list(
        db: Session,
        provider: str | None = None,
        status: str | None = None,
        customer_id: str | None = None,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(Transaction)
        if provider:
            query = query.filter(
                Transaction.provider == validate_enum(provider, PaymentProvider, "provider")
            )
        if status:
            query = query.filter(
                Transaction.status == validate_enum(status, PaymentStatus, "status")
            )
        if customer_id:
            query = query.filter(Transaction.customer_id == coerce_uuid(customer_id))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": Transaction.created_at, "amount": Transaction.amount},
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def refunds(db: Session, transaction_id: str) -> list[Refund]:
        transaction = get_or_404(db, Transaction, transaction_id)
        return (
            db.query(Refund)
            .filter(Refund.transaction_id == transaction.id)
            .order_by(Refund.created_at.asc())
            .all()
        )
