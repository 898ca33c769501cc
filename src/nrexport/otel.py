# src/nrexport/otel.py
"""OpenTelemetry SDK integration.

Wraps SpanExporter / MetricExporter in the SDK's exporter interfaces so
they can be plugged into a BatchSpanProcessor and a
PeriodicExportingMetricReader:

    span_exporter, metric_exporter = create_exporters(settings)
    tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    reader = PeriodicExportingMetricReader(
        metric_exporter,
        export_interval_millis=settings.export_interval_seconds * 1000,
    )

No global providers are touched; the caller owns the wiring.

Conversion rules:
- Span ids are rendered as lowercase hex; SDK kind/status map to SpanKind/
  StatusCode; span events are carried through
- Resource attributes are added beneath record attributes, but never
  override an exporter common attribute with the same key
- Monotonic Sum -> COUNTER; non-monotonic Sum and Gauge -> GAUGE;
  Histogram -> SUMMARY (count/sum/min/max); ExponentialHistogram is skipped
"""

from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any

import structlog
from opentelemetry.sdk.metrics import (
    Counter,
    ObservableCounter,
    ObservableGauge,
    ObservableUpDownCounter,
    UpDownCounter,
)
from opentelemetry.sdk.metrics import Histogram as HistogramInstrument
from opentelemetry.sdk.metrics.export import (
    AggregationTemporality,
    Gauge,
    Histogram,
    MetricExportResult,
    MetricsData,
    Sum,
)
from opentelemetry.sdk.metrics.export import MetricExporter as SdkMetricExporter
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter as SdkSpanExporter
from opentelemetry.sdk.trace.export import SpanExportResult
from opentelemetry.trace import StatusCode as OtelStatusCode
from opentelemetry.trace import format_span_id, format_trace_id

from nrexport.config import ExporterSettings
from nrexport.exporters import ExportResult, MetricExporter, SpanExporter
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

logger = structlog.get_logger(__name__)

_STATUS_CODES: dict[OtelStatusCode, StatusCode] = {
    OtelStatusCode.UNSET: StatusCode.UNSET,
    OtelStatusCode.OK: StatusCode.OK,
    OtelStatusCode.ERROR: StatusCode.ERROR,
}

_CUMULATIVE = {
    Counter: AggregationTemporality.CUMULATIVE,
    UpDownCounter: AggregationTemporality.CUMULATIVE,
    HistogramInstrument: AggregationTemporality.CUMULATIVE,
    ObservableCounter: AggregationTemporality.CUMULATIVE,
    ObservableUpDownCounter: AggregationTemporality.CUMULATIVE,
    ObservableGauge: AggregationTemporality.CUMULATIVE,
}


def _resource_defaults(resource: Any, common: Mapping[str, Any]) -> dict[str, Any]:
    if resource is None:
        return {}
    return {k: v for k, v in resource.attributes.items() if k not in common}


def _span_kind(kind: Any) -> SpanKind | str:
    name = getattr(kind, "name", str(kind)).lower()
    try:
        return SpanKind(name)
    except ValueError:
        return name


def span_record_from_readable(span: ReadableSpan, common: Mapping[str, Any] | None = None) -> SpanRecord:
    """Convert an SDK ReadableSpan into a SpanRecord."""
    common = common or {}
    context = span.context
    start = span.start_time or 0
    end = span.end_time if span.end_time is not None else start
    status = SpanStatus(
        code=_STATUS_CODES.get(span.status.status_code, StatusCode.UNSET),
        description=span.status.description,
    )
    events = tuple(
        SpanEvent(name=event.name, timestamp_ns=event.timestamp, attributes=dict(event.attributes or {}))
        for event in span.events
    )
    attributes = _resource_defaults(span.resource, common)
    attributes.update(span.attributes or {})

    return SpanRecord(
        trace_id=format_trace_id(context.trace_id),
        span_id=format_span_id(context.span_id),
        parent_span_id=format_span_id(span.parent.span_id) if span.parent is not None else None,
        name=span.name,
        kind=_span_kind(span.kind),
        start_time_ns=start,
        end_time_ns=end,
        status=status,
        attributes=attributes,
        events=events,
    )


def _number_points(data_points: Iterable[Any], resource_attrs: Mapping[str, Any]) -> tuple[MetricPoint, ...]:
    return tuple(
        MetricPoint(
            labels={**resource_attrs, **dict(point.attributes or {})},
            value=point.value,
            timestamp_ns=point.time_unix_nano,
            start_time_ns=getattr(point, "start_time_unix_nano", None) or None,
        )
        for point in data_points
    )


def _summary_points(data_points: Iterable[Any], resource_attrs: Mapping[str, Any]) -> tuple[MetricPoint, ...]:
    return tuple(
        MetricPoint(
            labels={**resource_attrs, **dict(point.attributes or {})},
            value=SummaryValue(count=point.count, sum=point.sum, min=point.min, max=point.max),
            timestamp_ns=point.time_unix_nano,
            start_time_ns=point.start_time_unix_nano or None,
        )
        for point in data_points
    )


def metric_records_from_data(
    metrics_data: MetricsData,
    common: Mapping[str, Any] | None = None,
) -> Iterator[MetricRecord]:
    """Lazily convert SDK MetricsData into MetricRecords."""
    common = common or {}
    for resource_metrics in metrics_data.resource_metrics:
        resource_attrs = _resource_defaults(resource_metrics.resource, common)
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                data = metric.data
                if isinstance(data, Sum):
                    kind = MetricKind.COUNTER if data.is_monotonic else MetricKind.GAUGE
                    points = _number_points(data.data_points, resource_attrs)
                elif isinstance(data, Gauge):
                    kind = MetricKind.GAUGE
                    points = _number_points(data.data_points, resource_attrs)
                elif isinstance(data, Histogram):
                    kind = MetricKind.SUMMARY
                    points = _summary_points(data.data_points, resource_attrs)
                else:
                    logger.debug("Skipping unsupported metric data", metric=metric.name, data_type=type(data).__name__)
                    continue
                if not points:
                    continue
                yield MetricRecord(
                    name=metric.name,
                    kind=kind,
                    points=points,
                    unit=metric.unit or "",
                    description=metric.description or "",
                )


class NewRelicSpanExporter(SdkSpanExporter):
    """OpenTelemetry SDK span exporter backed by SpanExporter."""

    def __init__(self, settings: ExporterSettings | None = None, *, exporter: SpanExporter | None = None, **kwargs: Any) -> None:
        if exporter is None:
            if settings is None:
                raise TypeError("either settings or exporter is required")
            exporter = SpanExporter(settings, **kwargs)
        self._exporter = exporter

    @property
    def exporter(self) -> SpanExporter:
        return self._exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        common = self._exporter.common_attributes
        result = self._exporter.export(span_record_from_readable(span, common) for span in spans)
        return SpanExportResult.SUCCESS if result == ExportResult.SUCCESS else SpanExportResult.FAILURE

    def shutdown(self) -> None:
        self._exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30_000) -> bool:
        return self._exporter.force_flush(timeout_millis)


class NewRelicMetricExporter(SdkMetricExporter):
    """OpenTelemetry SDK metric exporter backed by MetricExporter.

    Requests cumulative temporality for every instrument; conversion to
    deltas happens in MetricExporter when cumulative_to_delta is enabled.
    """

    def __init__(self, settings: ExporterSettings | None = None, *, exporter: MetricExporter | None = None, **kwargs: Any) -> None:
        super().__init__(preferred_temporality=dict(_CUMULATIVE))
        if exporter is None:
            if settings is None:
                raise TypeError("either settings or exporter is required")
            exporter = MetricExporter(settings, **kwargs)
        self._exporter = exporter

    @property
    def exporter(self) -> MetricExporter:
        return self._exporter

    def export(self, metrics_data: MetricsData, timeout_millis: float = 10_000, **kwargs: Any) -> MetricExportResult:
        common = self._exporter.common_attributes
        result = self._exporter.export(metric_records_from_data(metrics_data, common))
        return MetricExportResult.SUCCESS if result == ExportResult.SUCCESS else MetricExportResult.FAILURE

    def force_flush(self, timeout_millis: float = 10_000) -> bool:
        return self._exporter.force_flush(int(timeout_millis))

    def shutdown(self, timeout_millis: float = 30_000, **kwargs: Any) -> None:
        self._exporter.shutdown(timeout_millis / 1000)


def create_exporters(
    settings: ExporterSettings,
    **kwargs: Any,
) -> tuple[NewRelicSpanExporter, NewRelicMetricExporter]:
    """Build the span and metric SDK exporters for one set of settings.

    Extra keyword arguments (transport, sleep) are passed to both exporters.
    """
    return (
        NewRelicSpanExporter(settings, **kwargs),
        NewRelicMetricExporter(settings, **kwargs),
    )
