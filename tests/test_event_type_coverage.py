"""Every recognised provider event type must be routed to an operation."""

import pytest

from app.models.payments import PaymentProvider
from app.services.payments.paypal_handler import PayPalEventType
from app.services.payments.reconciliation import get_handler
from app.services.payments.stripe_handler import StripeEventType


@pytest.mark.parametrize("event_type", list(StripeEventType))
def test_stripe_event_types_are_routed(event_type):
    assert get_handler(PaymentProvider.stripe).handles(event_type)


@pytest.mark.parametrize("event_type", list(PayPalEventType))
def test_paypal_event_types_are_routed(event_type):
    assert get_handler(PaymentProvider.paypal).handles(event_type)


@pytest.mark.parametrize(
    "provider,event_type",
    [
        (PaymentProvider.stripe, "customer.created"),
        (PaymentProvider.stripe, "PAYMENT.CAPTURE.COMPLETED"),
        (PaymentProvider.paypal, "payment_intent.succeeded"),
    ],
)
def test_unknown_event_types_are_ignored(db_session, provider, event_type):
    from app.services.payments._common import ReconciliationContext

    context = ReconciliationContext(provider=provider, event_type=event_type, occurred_at=None)

    assert get_handler(provider).handle(db_session, event_type, {}, context) is False
