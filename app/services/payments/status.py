"""Provider status vocabulary → internal status enums.

Lookups are case-insensitive and total: a status a provider introduces later
resolves to the kind's safe default instead of raising.
"""

from __future__ import annotations

import enum
import logging

from app.models.payments import (
    InvoiceStatus,
    PaymentProvider,
    PaymentStatus,
    RefundStatus,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)


class StatusKind(enum.Enum):
    payment = "payment"
    subscription = "subscription"
    refund = "refund"
    invoice = "invoice"


DEFAULTS: dict[StatusKind, enum.Enum] = {
    StatusKind.payment: PaymentStatus.pending,
    StatusKind.subscription: SubscriptionStatus.incomplete,
    StatusKind.refund: RefundStatus.pending,
    StatusKind.invoice: InvoiceStatus.draft,
}

_STRIPE_PAYMENT = {
    "requires_payment_method": PaymentStatus.pending,
    "requires_confirmation": PaymentStatus.pending,
    "pending": PaymentStatus.pending,
    "requires_action": PaymentStatus.requires_action,
    "processing": PaymentStatus.processing,
    "requires_capture": PaymentStatus.requires_capture,
    "succeeded": PaymentStatus.succeeded,
    "failed": PaymentStatus.failed,
    "canceled": PaymentStatus.canceled,
}

_STRIPE_SUBSCRIPTION = {
    "active": SubscriptionStatus.active,
    "trialing": SubscriptionStatus.trialing,
    "past_due": SubscriptionStatus.past_due,
    "canceled": SubscriptionStatus.canceled,
    "unpaid": SubscriptionStatus.unpaid,
    "incomplete": SubscriptionStatus.incomplete,
    "incomplete_expired": SubscriptionStatus.expired,
    "paused": SubscriptionStatus.paused,
}

_STRIPE_REFUND = {
    "pending": RefundStatus.pending,
    "requires_action": RefundStatus.pending,
    "succeeded": RefundStatus.succeeded,
    "failed": RefundStatus.failed,
    "canceled": RefundStatus.canceled,
}

_STRIPE_INVOICE = {
    "draft": InvoiceStatus.draft,
    "open": InvoiceStatus.open,
    "paid": InvoiceStatus.paid,
    "void": InvoiceStatus.void,
    "uncollectible": InvoiceStatus.uncollectible,
}

_PAYPAL_PAYMENT = {
    "created": PaymentStatus.pending,
    "pending": PaymentStatus.pending,
    "approved": PaymentStatus.processing,
    "completed": PaymentStatus.succeeded,
    "declined": PaymentStatus.failed,
    "denied": PaymentStatus.failed,
    "failed": PaymentStatus.failed,
    "voided": PaymentStatus.canceled,
    "refunded": PaymentStatus.refunded,
    "partially_refunded": PaymentStatus.partially_refunded,
}

_PAYPAL_SUBSCRIPTION = {
    "active": SubscriptionStatus.active,
    "approval_pending": SubscriptionStatus.incomplete,
    "approved": SubscriptionStatus.incomplete,
    "suspended": SubscriptionStatus.paused,
    "cancelled": SubscriptionStatus.canceled,
    "expired": SubscriptionStatus.expired,
}

_PAYPAL_REFUND = {
    "pending": RefundStatus.pending,
    "completed": RefundStatus.succeeded,
    "failed": RefundStatus.failed,
    "cancelled": RefundStatus.canceled,
}

_PAYPAL_INVOICE = {
    "draft": InvoiceStatus.draft,
    "sent": InvoiceStatus.open,
    "scheduled": InvoiceStatus.open,
    "paid": InvoiceStatus.paid,
    "marked_as_paid": InvoiceStatus.paid,
    "cancelled": InvoiceStatus.void,
}

STATUS_TABLES: dict[PaymentProvider, dict[StatusKind, dict[str, enum.Enum]]] = {
    PaymentProvider.stripe: {
        StatusKind.payment: _STRIPE_PAYMENT,
        StatusKind.subscription: _STRIPE_SUBSCRIPTION,
        StatusKind.refund: _STRIPE_REFUND,
        StatusKind.invoice: _STRIPE_INVOICE,
    },
    PaymentProvider.paypal: {
        StatusKind.payment: _PAYPAL_PAYMENT,
        StatusKind.subscription: _PAYPAL_SUBSCRIPTION,
        StatusKind.refund: _PAYPAL_REFUND,
        StatusKind.invoice: _PAYPAL_INVOICE,
    },
}


def translate(provider: PaymentProvider, kind: StatusKind, status: str | None):
    """Map a provider status string to the internal enum for ``kind``."""
    default = DEFAULTS[kind]
    if not status:
        return default
    mapped = STATUS_TABLES[provider][kind].get(status.strip().lower())
    if mapped is None:
        logger.warning(
            "Unmapped %s %s status %r, using %s",
            provider.value,
            kind.value,
            status,
            default.value,
        )
        return default
    return mapped


def payment_status(provider: PaymentProvider, status: str | None) -> PaymentStatus:
    return translate(provider, StatusKind.payment, status)


def subscription_status(provider: PaymentProvider, status: str | None) -> SubscriptionStatus:
    return translate(provider, StatusKind.subscription, status)


def refund_status(provider: PaymentProvider, status: str | None) -> RefundStatus:
    return translate(provider, StatusKind.refund, status)


def invoice_status(provider: PaymentProvider, status: str | None) -> InvoiceStatus:
    return translate(provider, StatusKind.invoice, status)
