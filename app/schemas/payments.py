"""Typed views of provider webhook payloads.

The webhook boundary only guarantees a JSON object. Each handler parses the
part of the payload it needs into one of these models before touching it, so
a missing id or a non-numeric amount becomes a validation error instead of a
half-applied event. Unknown keys are kept (``extra="allow"``) because
providers add fields all the time.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.payments import (
    InvoiceStatus,
    PaymentProvider,
    PaymentStatus,
    RefundStatus,
    SubscriptionStatus,
)


class WebhookEnvelope(BaseModel):
    """Authenticated, provider-agnostic webhook event."""

    provider: PaymentProvider
    event_type: str = Field(min_length=1, max_length=120)
    payload: dict
    event_id: str | None = Field(default=None, max_length=255)
    occurred_at: datetime | None = None


class _ProviderObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------


class StripePaymentError(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: str | None = None
    message: str | None = None


class StripePaymentIntent(_ProviderObject):
    amount: int = 0
    currency: str = "usd"
    customer: str | None = None
    payment_method: str | None = None
    description: str | None = None
    status: str | None = None
    last_payment_error: StripePaymentError | None = None


class StripeRefund(_ProviderObject):
    amount: int = 0
    currency: str = "usd"
    status: str | None = None
    reason: str | None = None
    failure_reason: str | None = None


class StripeRefundList(BaseModel):
    model_config = ConfigDict(extra="allow")

    data: list[StripeRefund] = Field(default_factory=list)


class StripeCharge(_ProviderObject):
    amount: int = 0
    amount_refunded: int = 0
    currency: str = "usd"
    customer: str | None = None
    payment_method: str | None = None
    payment_intent: str | None = None
    description: str | None = None
    status: str | None = None
    failure_message: str | None = None
    refunded: bool = False
    refunds: StripeRefundList = Field(default_factory=StripeRefundList)


class StripeRecurring(BaseModel):
    model_config = ConfigDict(extra="allow")

    interval: str = "month"
    interval_count: int = 1


class StripePrice(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    unit_amount: int | None = None
    recurring: StripeRecurring | None = None


class StripeSubscriptionItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    price: StripePrice | None = None
    quantity: int | None = None


class StripeSubscriptionItems(BaseModel):
    model_config = ConfigDict(extra="allow")

    data: list[StripeSubscriptionItem] = Field(default_factory=list)


class StripeSubscription(_ProviderObject):
    customer: str | None = None
    status: str | None = None
    currency: str = "usd"
    quantity: int | None = None
    items: StripeSubscriptionItems = Field(default_factory=StripeSubscriptionItems)
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    canceled_at: datetime | None = None
    ended_at: datetime | None = None
    cancel_at_period_end: bool = False

    @property
    def price(self) -> StripePrice:
        if self.items.data and self.items.data[0].price is not None:
            return self.items.data[0].price
        return StripePrice()


class StripeInvoiceLine(BaseModel):
    model_config = ConfigDict(extra="allow")

    description: str | None = None
    quantity: int | None = None
    amount: int = 0
    price: StripePrice | None = None


class StripeInvoiceLines(BaseModel):
    model_config = ConfigDict(extra="allow")

    data: list[StripeInvoiceLine] = Field(default_factory=list)


class StripeInvoice(_ProviderObject):
    customer: str | None = None
    subscription: str | None = None
    payment_intent: str | None = None
    status: str | None = None
    currency: str = "usd"
    subtotal: int = 0
    tax: int | None = None
    total: int = 0
    amount_paid: int = 0
    amount_due: int = 0
    customer_name: str | None = None
    customer_email: str | None = None
    lines: StripeInvoiceLines = Field(default_factory=StripeInvoiceLines)


# ---------------------------------------------------------------------------
# PayPal
# ---------------------------------------------------------------------------


class PayPalAmount(BaseModel):
    """PayPal money object; ``value`` (v2 APIs) or ``total`` (v1 sales)."""

    model_config = ConfigDict(extra="allow")

    value: Decimal | None = None
    total: Decimal | None = None
    currency_code: str | None = None
    currency: str | None = None

    def minor_units(self) -> int:
        amount = self.value if self.value is not None else self.total
        if amount is None:
            return 0
        return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def currency_or(self, default: str) -> str:
        return (self.currency_code or self.currency or default).upper()


class PayPalLink(BaseModel):
    model_config = ConfigDict(extra="allow")

    href: str
    rel: str


class PayPalStatusDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    reason: str | None = None


class PayPalRefund(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    amount: PayPalAmount | None = None
    status: str | None = None
    note_to_payer: str | None = None


class PayPalCapture(_ProviderObject):
    amount: PayPalAmount | None = None
    status: str | None = None
    status_details: PayPalStatusDetails | None = None
    refund: PayPalRefund | None = None
    note_to_payer: str | None = None
    links: list[PayPalLink] = Field(default_factory=list)

    def parent_capture_id(self) -> str | None:
        """Capture id from the ``up`` link of a refund resource."""
        for link in self.links:
            if link.rel == "up" and "/captures/" in link.href:
                return link.href.rstrip("/").rsplit("/", 1)[-1]
        return None


class PayPalOrder(_ProviderObject):
    status: str | None = None


class PayPalSubscriber(BaseModel):
    model_config = ConfigDict(extra="allow")

    payer_id: str | None = None
    email_address: str | None = None


class PayPalLastPayment(BaseModel):
    model_config = ConfigDict(extra="allow")

    amount: PayPalAmount | None = None
    time: datetime | None = None


class PayPalBillingInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    last_payment: PayPalLastPayment | None = None
    next_billing_time: datetime | None = None


class PayPalSubscription(_ProviderObject):
    status: str | None = None
    plan_id: str | None = None
    quantity: int | None = None
    start_time: datetime | None = None
    status_update_time: datetime | None = None
    update_time: datetime | None = None
    subscriber: PayPalSubscriber | None = None
    billing_info: PayPalBillingInfo | None = None


class PayPalSale(_ProviderObject):
    amount: PayPalAmount | None = None
    state: str | None = None
    billing_agreement_id: str | None = None
    sale_id: str | None = None


# ---------------------------------------------------------------------------
# API responses
# ---------------------------------------------------------------------------


class TransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID | None = None
    subscription_id: UUID | None = None
    provider: PaymentProvider
    external_id: str
    amount: int
    amount_refunded: int
    currency: str
    status: PaymentStatus
    payment_method: str | None = None
    description: str | None = None
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID | None = None
    provider: PaymentProvider
    external_id: str
    plan_id: str | None = None
    status: SubscriptionStatus
    amount: int
    currency: str
    interval: str
    interval_count: int
    quantity: int
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    trial_end: datetime | None = None
    canceled_at: datetime | None = None
    ended_at: datetime | None = None
    cancel_at_period_end: bool


class RefundRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transaction_id: UUID
    external_id: str
    amount: int
    currency: str
    status: RefundStatus
    reason: str | None = None


class InvoiceLineItem(BaseModel):
    description: str = Field(min_length=1, max_length=255)
    quantity: int = Field(default=1, ge=1)
    unit_price: int = 0
    amount: int = 0


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    number: str
    status: InvoiceStatus
    customer_id: UUID | None = None
    transaction_id: UUID | None = None
    payment_ref: str | None = None
    subscription_id: UUID | None = None
    subtotal: int
    tax: int
    discount: int
    total: int
    amount_paid: int
    amount_due: int
    currency: str
    billing_name: str | None = None
    billing_email: str | None = None
    line_items: list[InvoiceLineItem] = Field(default_factory=list)
    invoice_date: datetime | None = None
    paid_at: datetime | None = None
    document_path: str | None = None
