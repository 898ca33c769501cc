# src/nrexport/translate.py
"""Translate instrumentation records into ingestion entries.

Translation is a pure mapping. It never rejects a record: negative
durations, unknown span kinds and odd attribute types are all passed through
or coerced, and validation is left to the ingestion service.

Span mapping:
- top-level ``id`` / ``trace.id`` from span_id / trace_id
- ``timestamp`` = start time in ms
- attributes: name, duration.ms, parent.id, span.kind, error, error.message,
  instrumentation.provider, collector.name, flattened events, then record
  attributes on top

Metric mapping (one entry per point):
- COUNTER -> type "count" (cumulative or delta value, see nrexport.delta)
- GAUGE   -> type "gauge" (raw value)
- SUMMARY -> type "summary" (count/sum/min/max)
"""

from collections.abc import Iterator, Mapping
from typing import Any

from nrexport import attributes as attr
from nrexport.attributes import Scalar, coerce_attributes, merge_attributes
from nrexport.model import EntryType, IngestionEntry
from nrexport.records import MetricKind, MetricPoint, MetricRecord, SpanKind, SpanRecord, SummaryValue

UNSPECIFIED_KIND = "unspecified"

_SPAN_KIND_WIRE: dict[str, str] = {kind.value: kind.value for kind in SpanKind}

_METRIC_TYPE_WIRE: dict[MetricKind, str] = {
    MetricKind.COUNTER: "count",
    MetricKind.GAUGE: "gauge",
    MetricKind.SUMMARY: "summary",
}


def _ns_to_ms(ns: int) -> int:
    return ns // 1_000_000


def span_kind_to_wire(kind: Any) -> str:
    """Map a span kind to its wire value; anything unrecognised is 'unspecified'."""
    value = kind.value if isinstance(kind, SpanKind) else str(kind).lower()
    return _SPAN_KIND_WIRE.get(value, UNSPECIFIED_KIND)


def _event_attributes(record: SpanRecord) -> dict[str, Scalar]:
    flattened: dict[str, Scalar] = {}
    for event in record.events:
        prefix = f"event.{event.name}"
        flattened[f"{prefix}.timestamp"] = _ns_to_ms(event.timestamp_ns)
        for key, value in coerce_attributes(event.attributes).items():
            flattened[f"{prefix}.{key}"] = value
    return flattened


def translate_span(record: SpanRecord, common: Mapping[str, Any] | None = None) -> IngestionEntry:
    """Translate one finished span into a span entry.

    Args:
        record: The span to translate
        common: Exporter-wide attributes; span attributes win on collision

    Returns:
        Span entry carrying merged attributes
    """
    derived: dict[str, Scalar] = {
        attr.NAME: record.name,
        attr.DURATION_MS: record.duration_ms,
        attr.SPAN_KIND: span_kind_to_wire(record.kind),
        attr.INSTRUMENTATION_PROVIDER: attr.INSTRUMENTATION_PROVIDER_VALUE,
        attr.COLLECTOR_NAME: attr.COLLECTOR_NAME_VALUE,
    }
    if record.parent_span_id:
        derived[attr.PARENT_ID] = record.parent_span_id
    if record.status.is_error:
        derived[attr.ERROR] = True
        if record.status.description:
            derived[attr.ERROR_MESSAGE] = record.status.description
    derived.update(_event_attributes(record))

    # common < derived < span attributes
    attributes = merge_attributes(merge_attributes(common, derived), record.attributes)

    return IngestionEntry(
        entry_type=EntryType.SPAN,
        timestamp_ms=_ns_to_ms(record.start_time_ns),
        attributes=attributes,
        fields={"id": record.span_id, "trace.id": record.trace_id},
    )


def _metric_value(kind: MetricKind, value: int | float | SummaryValue) -> Any:
    if kind == MetricKind.SUMMARY:
        if not isinstance(value, SummaryValue):
            # A bare number recorded against a summary is a single observation
            number = float(value)
            return {"count": 1, "sum": number, "min": number, "max": number}
        return {"count": value.count, "sum": value.sum, "min": value.min, "max": value.max}
    if isinstance(value, SummaryValue):
        # Numeric kinds only carry the total of a summary-shaped value
        return value.sum
    return value


def translate_metric_point(
    record: MetricRecord,
    point: MetricPoint,
    common: Mapping[str, Any] | None = None,
) -> IngestionEntry:
    """Translate a single point of a metric into a metric entry."""
    derived: dict[str, Scalar] = {}
    if record.unit:
        derived[attr.UNIT] = record.unit
    if record.description:
        derived[attr.DESCRIPTION] = record.description

    fields: dict[str, Any] = {
        "name": record.name,
        "type": _METRIC_TYPE_WIRE[record.kind],
        "value": _metric_value(record.kind, point.value),
    }
    if record.kind != MetricKind.GAUGE and point.start_time_ns is not None:
        fields["interval.ms"] = _ns_to_ms(point.timestamp_ns - point.start_time_ns)

    return IngestionEntry(
        entry_type=EntryType.METRIC,
        timestamp_ms=_ns_to_ms(point.timestamp_ns),
        attributes=merge_attributes(merge_attributes(common, derived), point.labels),
        fields=fields,
    )


def translate_metric(record: MetricRecord, common: Mapping[str, Any] | None = None) -> Iterator[IngestionEntry]:
    """Lazily yield one metric entry per point of ``record``."""
    for point in record.points:
        yield translate_metric_point(record, point, common)
