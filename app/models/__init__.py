from app.models.event_store import EventStatus, EventStore  # noqa: F401
from app.models.notification import Notification, NotificationStatus  # noqa: F401
from app.models.orders import Order, OrderStatus  # noqa: F401
from app.models.payments import (  # noqa: F401
    Invoice,
    InvoiceStatus,
    PaymentCustomer,
    PaymentProvider,
    PaymentStatus,
    Refund,
    RefundStatus,
    Subscription,
    SubscriptionStatus,
    Transaction,
)
