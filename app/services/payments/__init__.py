"""Payment reconciliation services.

Usage:
    from app.services import payments as payments_service
    payments_service.reconciliation.process_envelope(db, envelope)
    payments_service.invoices.list(db, status="paid")
"""

from app.services.payments.invoices import Invoices
from app.services.payments.reconciliation import (
    Outcome,
    Reconciliation,
    ReconciliationResult,
)
from app.services.payments.subscriptions import Subscriptions
from app.services.payments.transactions import Transactions

# Singleton instances for service access
reconciliation = Reconciliation()
invoices = Invoices()
subscriptions = Subscriptions()
transactions = Transactions()

__all__ = [
    "Invoices",
    "Outcome",
    "Reconciliation",
    "ReconciliationResult",
    "Subscriptions",
    "Transactions",
    "reconciliation",
    "invoices",
    "subscriptions",
    "transactions",
]
