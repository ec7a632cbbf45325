"""Create payment ledger, outbox and order tables.

Revision ID: a1c4e7d2b9f0
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "a1c4e7d2b9f0"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "paymentprovider": ("stripe", "paypal"),
    "paymentstatus": (
        "pending",
        "processing",
        "requires_action",
        "requires_capture",
        "succeeded",
        "failed",
        "canceled",
        "refunded",
        "partially_refunded",
        "disputed",
        "expired",
    ),
    "subscriptionstatus": (
        "incomplete",
        "incomplete_expired",
        "trialing",
        "active",
        "past_due",
        "canceled",
        "unpaid",
        "paused",
        "expired",
    ),
    "refundstatus": ("pending", "succeeded", "failed", "canceled"),
    "invoicestatus": ("draft", "open", "paid", "void", "uncollectible"),
    "eventstatus": ("pending", "processing", "completed", "failed"),
    "notificationstatus": ("queued", "sending", "delivered", "failed", "canceled"),
    "orderstatus": (
        "pending",
        "confirmed",
        "processing",
        "shipped",
        "delivered",
        "completed",
        "cancelled",
        "refunded",
        "on_hold",
        "failed",
    ),
}


def _enum(name: str):
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "payment_customers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("provider", _enum("paymentprovider"), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("name", sa.String(255)),
        sa.Column("billing_address", postgresql.JSONB()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "provider", name="uq_payment_customers_user_provider"),
        sa.UniqueConstraint("provider", "external_id", name="uq_payment_customers_external"),
    )
    op.create_index("ix_payment_customers_user_id", "payment_customers", ["user_id"])

    op.create_table(
        "subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("payment_customers.id"),
        ),
        sa.Column("provider", _enum("paymentprovider"), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("plan_id", sa.String(255)),
        sa.Column("status", _enum("subscriptionstatus")),
        sa.Column("amount", sa.BigInteger()),
        sa.Column("currency", sa.String(3)),
        sa.Column("interval", sa.String(20)),
        sa.Column("interval_count", sa.Integer()),
        sa.Column("quantity", sa.Integer()),
        sa.Column("current_period_start", sa.DateTime(timezone=True)),
        sa.Column("current_period_end", sa.DateTime(timezone=True)),
        sa.Column("trial_start", sa.DateTime(timezone=True)),
        sa.Column("trial_end", sa.DateTime(timezone=True)),
        sa.Column("canceled_at", sa.DateTime(timezone=True)),
        sa.Column("ended_at", sa.DateTime(timezone=True)),
        sa.Column("cancel_at_period_end", sa.Boolean()),
        sa.Column("last_event_at", sa.DateTime(timezone=True)),
        sa.Column("trial_reminder_sent_at", sa.DateTime(timezone=True)),
        sa.Column("provider_response", postgresql.JSONB()),
        *_timestamps(),
        sa.UniqueConstraint("provider", "external_id", name="uq_subscriptions_external"),
    )
    op.create_index("ix_subscriptions_customer_id", "subscriptions", ["customer_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])

    op.create_table(
        "transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("payment_customers.id"),
        ),
        sa.Column(
            "subscription_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("subscriptions.id"),
        ),
        sa.Column("provider", _enum("paymentprovider"), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("amount", sa.BigInteger()),
        sa.Column("amount_refunded", sa.BigInteger()),
        sa.Column("currency", sa.String(3)),
        sa.Column("status", _enum("paymentstatus")),
        sa.Column("payment_method", sa.String(255)),
        sa.Column("description", sa.Text()),
        sa.Column("failure_reason", sa.Text()),
        sa.Column("provider_response", postgresql.JSONB()),
        *_timestamps(),
        sa.UniqueConstraint("provider", "external_id", name="uq_transactions_external"),
    )
    op.create_index("ix_transactions_customer_id", "transactions", ["customer_id"])
    op.create_index("ix_transactions_subscription_id", "transactions", ["subscription_id"])
    op.create_index("ix_transactions_status", "transactions", ["status"])

    op.create_table(
        "refunds",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "transaction_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("transactions.id"),
            nullable=False,
        ),
        sa.Column("provider", _enum("paymentprovider"), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("amount", sa.BigInteger()),
        sa.Column("currency", sa.String(3)),
        sa.Column("status", _enum("refundstatus")),
        sa.Column("reason", sa.Text()),
        sa.Column("failure_reason", sa.Text()),
        sa.Column("provider_response", postgresql.JSONB()),
        *_timestamps(),
        sa.UniqueConstraint("provider", "external_id", name="uq_refunds_external"),
    )
    op.create_index("ix_refunds_transaction_id", "refunds", ["transaction_id"])

    op.create_table(
        "invoices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("payment_customers.id"),
        ),
        sa.Column(
            "subscription_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("subscriptions.id"),
        ),
        sa.Column(
            "transaction_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("transactions.id"),
            unique=True,
        ),
        sa.Column("number", sa.String(60), nullable=False, unique=True),
        sa.Column("provider", _enum("paymentprovider")),
        sa.Column("external_id", sa.String(255)),
        sa.Column("payment_ref", sa.String(255)),
        sa.Column("status", _enum("invoicestatus")),
        sa.Column("subtotal", sa.BigInteger()),
        sa.Column("tax", sa.BigInteger()),
        sa.Column("discount", sa.BigInteger()),
        sa.Column("total", sa.BigInteger()),
        sa.Column("amount_paid", sa.BigInteger()),
        sa.Column("amount_due", sa.BigInteger()),
        sa.Column("currency", sa.String(3)),
        sa.Column("billing_name", sa.String(255)),
        sa.Column("billing_email", sa.String(255)),
        sa.Column("billing_address", postgresql.JSONB()),
        sa.Column("line_items", postgresql.JSONB()),
        sa.Column("invoice_date", sa.DateTime(timezone=True)),
        sa.Column("due_date", sa.DateTime(timezone=True)),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("voided_at", sa.DateTime(timezone=True)),
        sa.Column("document_path", sa.String(500)),
        sa.Column("document_generated_at", sa.DateTime(timezone=True)),
        sa.Column("provider_response", postgresql.JSONB()),
        *_timestamps(),
        sa.UniqueConstraint("provider", "external_id", name="uq_invoices_external"),
    )
    op.create_index("ix_invoices_customer_id", "invoices", ["customer_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])
    op.create_index("ix_invoices_payment_ref", "invoices", ["payment_ref"])

    op.create_table(
        "event_store",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("status", _enum("eventstatus")),
        sa.Column("retry_count", sa.Integer()),
        sa.Column("error", sa.Text()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("provider", sa.String(40)),
        sa.Column("user_id", postgresql.UUID(as_uuid=True)),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True)),
        sa.Column("transaction_id", postgresql.UUID(as_uuid=True)),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True)),
        sa.Column("refund_id", postgresql.UUID(as_uuid=True)),
        sa.Column("failed_handlers", postgresql.JSONB()),
        *_timestamps(),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
    )
    op.create_index("ix_event_store_event_id", "event_store", ["event_id"], unique=True)
    op.create_index("ix_event_store_event_type", "event_store", ["event_type"])
    op.create_index("ix_event_store_status", "event_store", ["status"])
    op.create_index("ix_event_store_user_id", "event_store", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_id", postgresql.UUID(as_uuid=True)),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("template_kind", sa.String(60), nullable=False),
        sa.Column("recipient", sa.String(255)),
        sa.Column("context", postgresql.JSONB()),
        sa.Column("status", _enum("notificationstatus")),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("last_error", sa.Text()),
        sa.Column("retry_count", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("event_id", "template_kind", name="uq_notifications_event_template"),
    )
    op.create_index("ix_notifications_event_id", "notifications", ["event_id"])
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_status", "notifications", ["status"])

    op.create_table(
        "orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True)),
        sa.Column("status", _enum("orderstatus")),
        sa.Column("total", sa.BigInteger()),
        sa.Column("currency", sa.String(3)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_status", "orders", ["status"])


def downgrade() -> None:
    for table in (
        "orders",
        "notifications",
        "event_store",
        "invoices",
        "refunds",
        "transactions",
        "subscriptions",
        "payment_customers",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
