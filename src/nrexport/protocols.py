# src/nrexport/protocols.py
"""Protocol definitions for exporters.

Exporters are the entry points used by the embedding application: a span
processing pipeline calls the span exporter from its worker thread, and a
periodic metric reader calls the metric exporter from its timer thread.
"""

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from nrexport.client import ShutdownReport
    from nrexport.exporters import ExportResult


@runtime_checkable
class ExporterProtocol(Protocol):
    """Protocol for span and metric exporters.

    Error handling:
        - Construction MUST raise ConfigurationError on invalid settings
        - export() MUST NOT raise - failures are reported as ExportResult.FAILURE
        - shutdown() MUST be idempotent - safe to call multiple times
    """

    @property
    def name(self) -> str:
        """Exporter name used in logs and lifecycle reports."""
        ...

    def export(self, records: Sequence[Any]) -> "ExportResult":
        """Translate, batch and deliver records.

        Called with every batch handed over by the pipeline, including empty
        ones. One call produces at most one top-level delivery.
        """
        ...

    def force_flush(self, timeout_millis: int = 30_000) -> bool:
        """Flush buffered data. Exporters without buffers return True."""
        ...

    def shutdown(self, timeout: float | None = None) -> "ShutdownReport":
        """Drain in-flight deliveries and release transport resources."""
        ...
