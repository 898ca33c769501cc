# src/nrexport/errors.py
"""Exporter exceptions.

ConfigurationError is the only exception that reaches callers, and only at
construction time. Delivery errors are raised inside the delivery client to
drive retry and split decisions, then converted into DeliveryReport values
before control returns to an exporter.
"""


class ConfigurationError(Exception):
    """Raised when an exporter or client is constructed with invalid settings.

    Attributes:
        component: Name of the component that rejected its configuration
        message: Human-readable error description
    """

    def __init__(self, component: str, message: str) -> None:
        self.component = component
        self.message = message
        super().__init__(f"Invalid configuration for '{component}': {message}")


class DeliveryError(Exception):
    """Base class for failures while delivering a batch.

    Attributes:
        reason: Short description of the failure
        status_code: HTTP status of the response, None for transport failures
        entry_count: Number of entries in the batch that failed
    """

    def __init__(self, reason: str, *, status_code: int | None = None, entry_count: int = 0) -> None:
        self.reason = reason
        self.status_code = status_code
        self.entry_count = entry_count
        super().__init__(reason)


class RetryableDeliveryError(DeliveryError):
    """408, 429, 5xx or a transport failure. Eligible for backoff and retry."""

    def __init__(
        self,
        reason: str,
        *,
        status_code: int | None = None,
        entry_count: int = 0,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(reason, status_code=status_code, entry_count=entry_count)
        self.retry_after = retry_after


class PermanentDeliveryError(DeliveryError):
    """A rejection that retrying cannot fix."""


class PayloadTooLargeError(DeliveryError):
    """413 from the ingestion endpoint. The batch must be split."""


class ShutdownInProgressError(DeliveryError):
    """Delivery attempted after the client started shutting down."""
