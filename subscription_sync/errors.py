class SubscriptionSyncError(Exception):
    """Base class for webhook reconciliation errors."""


class ConfigurationError(SubscriptionSyncError):
    """Missing or invalid process-wide configuration (fatal at startup)."""


class ValidationError(SubscriptionSyncError):
    """Malformed inbound webhook payload."""


class UpstreamError(SubscriptionSyncError):
    """Non-success response (or no response) from the PortOne API."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PersistenceError(SubscriptionSyncError):
    """Ledger read/write failure."""


class NotFoundError(SubscriptionSyncError):
    """Cancellation for a transaction key with no recorded Paid row."""


class NonFatalReconciliationError(SubscriptionSyncError):
    """Schedule creation/lookup/cancel failure; logged, never surfaced."""
