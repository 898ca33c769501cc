# src/nrexport/exporters.py
"""Span and metric exporters.

Each exporter owns one DeliveryClient and one CommonAttributes set for its
lifetime. export() runs translate -> accumulate -> deliver for exactly one
batch and maps the DeliveryReport to an ExportResult:

- SUCCESS only when every entry, across all retries and split halves, was
  delivered (an empty export is a trivial success)
- FAILURE otherwise, including partial success; last_report carries the
  delivered/failed breakdown for callers that need it

Failed data is not re-queued; the next export() call starts fresh.
"""

import threading
from collections.abc import Iterable, Iterator
from enum import StrEnum
from typing import Any, Generic, TypeVar

import httpx
import structlog

from nrexport.attributes import CommonAttributes
from nrexport.batch import accumulate
from nrexport.client import DeliveryClient, ShutdownReport
from nrexport.config import ExporterSettings
from nrexport.delta import DeltaTracker
from nrexport.errors import ConfigurationError
from nrexport.model import DeliveryReport, EntryType, IngestionEntry, PermanentFailure
from nrexport.records import MetricRecord, SpanRecord
from nrexport.translate import translate_metric, translate_span

logger = structlog.get_logger(__name__)

R = TypeVar("R")


class ExportResult(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class _BaseExporter(Generic[R]):
    """Shared export pipeline; subclasses supply translation and endpoint."""

    _name: str
    _entry_type: EntryType

    def __init__(
        self,
        settings: ExporterSettings,
        *,
        client: DeliveryClient | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Any = None,
    ) -> None:
        if not isinstance(settings, ExporterSettings):
            raise ConfigurationError(self._name, f"settings must be ExporterSettings, got {type(settings).__name__}")
        self._settings = settings
        self._common = CommonAttributes(settings.common_attributes)
        self._client = client or DeliveryClient(
            self._endpoint(settings),
            settings,
            name=self._name,
            transport=transport,
            sleep=sleep,
        )
        self._shutdown_lock = threading.Lock()
        self._shutdown_report: ShutdownReport | None = None
        self._last_report: DeliveryReport | None = None

    def _endpoint(self, settings: ExporterSettings) -> str:
        raise NotImplementedError

    def _translate(self, records: Iterable[R]) -> Iterator[IngestionEntry]:
        raise NotImplementedError

    @property
    def name(self) -> str:
        return self._name

    @property
    def common_attributes(self) -> CommonAttributes:
        return self._common

    @property
    def client(self) -> DeliveryClient:
        return self._client

    @property
    def last_report(self) -> DeliveryReport | None:
        """Report from the most recent export() call."""
        return self._last_report

    @property
    def health_metrics(self) -> dict[str, Any]:
        return self._client.health_metrics

    def export(self, records: Iterable[R]) -> ExportResult:
        """Export one batch of records. Never raises."""
        if self._shutdown_report is not None:
            logger.warning("Export called after shutdown, dropping batch", exporter=self._name)
            return ExportResult.FAILURE

        try:
            batch = accumulate(self._translate(records), self._common, self._entry_type)
            report = self._client.deliver(batch)
        except Exception as e:
            logger.error(
                "Export failed unexpectedly",
                exporter=self._name,
                error=str(e),
                exc_info=True,
            )
            report = DeliveryReport.from_outcome(
                PermanentFailure(f"export failed: {type(e).__name__}: {e}", 0),
                attempts=0,
            )

        self._last_report = report
        if report.succeeded:
            return ExportResult.SUCCESS

        logger.warning(
            "Export did not fully succeed",
            exporter=self._name,
            total=report.total,
            delivered=report.delivered,
            failed=report.failed,
            partial=report.partially_succeeded,
            reasons=report.failure_reasons,
        )
        return ExportResult.FAILURE

    def force_flush(self, timeout_millis: int = 30_000) -> bool:
        """Nothing is buffered between export() calls."""
        return True

    def shutdown(self, timeout: float | None = None) -> ShutdownReport:
        """Shut down the delivery client. Idempotent."""
        with self._shutdown_lock:
            if self._shutdown_report is None:
                self._shutdown_report = self._client.shutdown(timeout)
            return self._shutdown_report

    def __enter__(self) -> "_BaseExporter[R]":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


class SpanExporter(_BaseExporter[SpanRecord]):
    """Deliver finished spans to the trace ingest endpoint.

    Example:
        exporter = SpanExporter(ExporterSettings(api_key=key))
        result = exporter.export(spans)
        exporter.shutdown()
    """

    _name = "spans"
    _entry_type = EntryType.SPAN

    def _endpoint(self, settings: ExporterSettings) -> str:
        return settings.resolved_span_endpoint

    def _translate(self, records: Iterable[SpanRecord]) -> Iterator[IngestionEntry]:
        for record in records:
            yield translate_span(record, self._common)


class MetricExporter(_BaseExporter[MetricRecord]):
    """Deliver metric snapshots to the metric ingest endpoint.

    Counters are converted from cumulative totals to per-interval deltas
    unless cumulative_to_delta is disabled in settings. Each export() call
    is one collection interval for the delta tracker.
    """

    _name = "metrics"
    _entry_type = EntryType.METRIC

    def __init__(
        self,
        settings: ExporterSettings,
        *,
        client: DeliveryClient | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Any = None,
    ) -> None:
        super().__init__(settings, client=client, transport=transport, sleep=sleep)
        self._delta = DeltaTracker() if settings.cumulative_to_delta else None

    def _endpoint(self, settings: ExporterSettings) -> str:
        return settings.resolved_metric_endpoint

    def _translate(self, records: Iterable[MetricRecord]) -> Iterator[IngestionEntry]:
        for record in records:
            if self._delta is not None:
                record = self._delta.to_delta(record)
            yield from translate_metric(record, self._common)
        if self._delta is not None:
            self._delta.end_interval()
