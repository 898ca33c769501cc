# src/nrexport/lifecycle.py
"""Coordinated shutdown for a set of exporters.

The embedding application constructs its exporters once, hands them to its
span pipeline and metric reader, and registers them here. On exit the
controller shuts every exporter down within one shared grace budget, so
buffered and in-flight data is flushed before the process exits.

Shutdown Sequence:
1. Exporters are shut down in reverse registration order (last started,
   first stopped)
2. Each exporter gets whatever remains of the shared grace period
3. A failure in one exporter is logged and does not stop the others
4. Final health metrics are logged per exporter
"""

import atexit
import threading
import time
from collections.abc import Iterable

import structlog

from nrexport.client import ShutdownReport
from nrexport.protocols import ExporterProtocol

logger = structlog.get_logger(__name__)


class LifecycleController:
    """Owns shutdown of a group of exporters.

    Example:
        with LifecycleController([span_exporter, metric_exporter]) as lifecycle:
            run_application()
        # both exporters drained here, on normal exit or exception
    """

    def __init__(self, exporters: Iterable[ExporterProtocol] = (), *, grace_seconds: float = 10.0) -> None:
        if grace_seconds <= 0:
            raise ValueError(f"grace_seconds must be > 0, got {grace_seconds}")
        self._exporters: list[ExporterProtocol] = list(exporters)
        self._grace_seconds = grace_seconds
        self._lock = threading.Lock()
        self._reports: list[tuple[str, ShutdownReport]] | None = None
        self._atexit_installed = False

    @property
    def exporters(self) -> tuple[ExporterProtocol, ...]:
        return tuple(self._exporters)

    @property
    def is_shutdown(self) -> bool:
        return self._reports is not None

    def register(self, exporter: ExporterProtocol) -> None:
        """Add an exporter. Registering after shutdown is an error."""
        with self._lock:
            if self._reports is not None:
                raise RuntimeError("cannot register exporters after shutdown")
            self._exporters.append(exporter)

    def install_atexit(self) -> None:
        """Register shutdown() to run at interpreter exit."""
        with self._lock:
            if not self._atexit_installed:
                atexit.register(self.shutdown)
                self._atexit_installed = True

    def shutdown(self) -> list[tuple[str, ShutdownReport]]:
        """Shut down all exporters within the grace period.

        Timeouts and exporter failures are reported, never raised, so the
        process can always exit. Idempotent: later calls return the first
        result.

        Returns:
            (exporter name, ShutdownReport) per exporter, in shutdown order
        """
        with self._lock:
            if self._reports is not None:
                return list(self._reports)

            deadline = time.monotonic() + self._grace_seconds
            reports: list[tuple[str, ShutdownReport]] = []
            for exporter in reversed(self._exporters):
                remaining = max(0.0, deadline - time.monotonic())
                try:
                    report = exporter.shutdown(timeout=remaining)
                except Exception as e:
                    logger.warning(
                        "Exporter shutdown failed",
                        exporter=exporter.name,
                        error=str(e),
                    )
                    report = ShutdownReport(timed_out=False, in_flight=0)
                reports.append((exporter.name, report))

                health = getattr(exporter, "health_metrics", None)
                logger.info(
                    "Exporter shut down",
                    exporter=exporter.name,
                    timed_out=report.timed_out,
                    in_flight=report.in_flight,
                    health=health,
                )

            timed_out = [name for name, report in reports if report.timed_out]
            if timed_out:
                logger.warning(
                    "Shutdown grace period elapsed before all deliveries finished",
                    exporters=timed_out,
                    grace_seconds=self._grace_seconds,
                )

            self._reports = reports
            if self._atexit_installed:
                atexit.unregister(self.shutdown)
                self._atexit_installed = False
            return list(reports)

    def __enter__(self) -> "LifecycleController":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
