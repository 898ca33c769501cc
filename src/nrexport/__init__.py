"""
nrexport: deliver OpenTelemetry spans and metrics to New Relic ingest APIs.

Translates finished spans and metric snapshots into the New Relic batch
format and delivers them over HTTP with retry, backoff and oversized-batch
splitting.

Usage:
    from nrexport import ExporterSettings, LifecycleController
    from nrexport.otel import create_exporters

    settings = ExporterSettings(api_key=key, common_attributes={"service.name": "checkout"})
    span_exporter, metric_exporter = create_exporters(settings)
    lifecycle = LifecycleController([span_exporter.exporter, metric_exporter.exporter])
"""

from nrexport._version import __version__
from nrexport.attributes import CommonAttributes
from nrexport.batch import accumulate, serialize_batch
from nrexport.client import DeliveryClient, ShutdownReport
from nrexport.config import ExporterSettings, Region
from nrexport.errors import (
    ConfigurationError,
    DeliveryError,
    PermanentDeliveryError,
    RetryableDeliveryError,
)
from nrexport.exporters import ExportResult, MetricExporter, SpanExporter
from nrexport.lifecycle import LifecycleController
from nrexport.model import (
    Batch,
    DeliveryOutcome,
    DeliveryReport,
    EntryType,
    IngestionEntry,
    PermanentFailure,
    RetryableFailure,
    Success,
)
from nrexport.protocols import ExporterProtocol
from nrexport.records import (
    MetricKind,
    MetricPoint,
    MetricRecord,
    SpanEvent,
    SpanKind,
    SpanRecord,
    SpanStatus,
    StatusCode,
    SummaryValue,
)
from nrexport.translate import translate_metric, translate_span

__all__ = [
    "Batch",
    "CommonAttributes",
    "ConfigurationError",
    "DeliveryClient",
    "DeliveryError",
    "DeliveryOutcome",
    "DeliveryReport",
    "EntryType",
    "ExportResult",
    "ExporterProtocol",
    "ExporterSettings",
    "IngestionEntry",
    "LifecycleController",
    "MetricExporter",
    "MetricKind",
    "MetricPoint",
    "MetricRecord",
    "PermanentDeliveryError",
    "PermanentFailure",
    "Region",
    "RetryableDeliveryError",
    "RetryableFailure",
    "ShutdownReport",
    "SpanEvent",
    "SpanExporter",
    "SpanKind",
    "SpanRecord",
    "SpanStatus",
    "StatusCode",
    "Success",
    "SummaryValue",
    "__version__",
    "accumulate",
    "serialize_batch",
    "translate_metric",
    "translate_span",
]
