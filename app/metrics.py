from prometheus_client import Counter, Histogram

WEBHOOK_EVENTS = Counter(
    "payment_webhook_events_total",
    "Provider webhook events by outcome",
    ["provider", "event_type", "outcome"],
)
WEBHOOK_LATENCY = Histogram(
    "payment_webhook_duration_seconds",
    "Time spent reconciling one webhook envelope",
    ["provider"],
)
INVOICE_DOCUMENTS = Counter(
    "invoice_documents_total",
    "Invoice document renders",
    ["renderer", "status"],
)
NOTIFICATIONS = Counter(
    "payment_notifications_total",
    "Notification deliveries through the sink",
    ["template", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)


def observe_webhook(provider: str, event_type: str, outcome: str, duration: float) -> None:
    WEBHOOK_EVENTS.labels(provider=provider, event_type=event_type, outcome=outcome).inc()
    WEBHOOK_LATENCY.labels(provider=provider).observe(duration)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)
