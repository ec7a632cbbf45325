"""Reconciliation failures that the webhook boundary must tell apart."""


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class MalformedPayloadError(ReconciliationError):
    """Raised when a recognised event is missing required fields.

    The envelope is rolled back as a whole and the boundary answers 400.
    """

    def __init__(self, provider: str, event_type: str, detail: str):
        self.provider = provider
        self.event_type = event_type
        self.detail = detail
        super().__init__(f"Malformed {provider} {event_type} payload: {detail}")


class StorageConflictError(ReconciliationError):
    """Raised when a uniqueness conflict persists after the update retry."""

    def __init__(self, entity: str, provider: str, external_id: str):
        self.entity = entity
        self.provider = provider
        self.external_id = external_id
        super().__init__(
            f"Storage conflict on {entity} {provider}:{external_id} persisted after retry"
        )


class DocumentRenderError(ReconciliationError):
    """Raised when an invoice document cannot be rendered or stored."""
