"""Service layer for the payment ledger."""
