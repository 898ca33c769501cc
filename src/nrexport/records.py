# src/nrexport/records.py
"""Instrumentation records handed to the exporters.

These are the exporter-facing shapes of finished spans and metric snapshots.
They are produced by the instrumentation side (see nrexport.otel for the
OpenTelemetry SDK conversion) and are immutable once handed over.

Timestamps are integer nanoseconds since the Unix epoch, matching what
OpenTelemetry SDKs record.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class SpanKind(StrEnum):
    """Role of a span in a trace."""

    INTERNAL = "internal"
    SERVER = "server"
    CLIENT = "client"
    PRODUCER = "producer"
    CONSUMER = "consumer"


class StatusCode(StrEnum):
    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


class MetricKind(StrEnum):
    """How a metric's points should be interpreted.

    Values:
        COUNTER: Monotonic sum; points carry the cumulative total
        GAUGE: Non-monotonic measure; points carry the raw observed value
        SUMMARY: Distribution summarised as count/sum/min/max
    """

    COUNTER = "counter"
    GAUGE = "gauge"
    SUMMARY = "summary"


@dataclass(frozen=True, slots=True)
class SpanStatus:
    code: StatusCode = StatusCode.UNSET
    description: str | None = None

    @property
    def is_error(self) -> bool:
        return self.code == StatusCode.ERROR

    @classmethod
    def ok(cls) -> "SpanStatus":
        return cls(StatusCode.OK)

    @classmethod
    def error(cls, description: str | None = None) -> "SpanStatus":
        return cls(StatusCode.ERROR, description)


@dataclass(frozen=True, slots=True)
class SpanEvent:
    """A timestamped annotation recorded during a span."""

    name: str
    timestamp_ns: int
    attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SpanRecord:
    """A finished span.

    Attributes:
        trace_id: 32-character lowercase hex trace identifier
        span_id: 16-character lowercase hex span identifier
        parent_span_id: Parent span identifier, None for root spans
        name: Operation name
        kind: Span role; values outside SpanKind are tolerated
        start_time_ns: Start timestamp in nanoseconds since epoch
        end_time_ns: End timestamp in nanoseconds since epoch
        status: Completion status
        attributes: Span attributes
        events: Span events in recording order
    """

    trace_id: str
    span_id: str
    name: str
    start_time_ns: int
    end_time_ns: int
    parent_span_id: str | None = None
    kind: SpanKind | str = SpanKind.INTERNAL
    status: SpanStatus = field(default_factory=SpanStatus)
    attributes: Mapping[str, Any] = field(default_factory=dict)
    events: tuple[SpanEvent, ...] = ()

    @property
    def duration_ms(self) -> float:
        """End minus start in milliseconds. Not clamped; may be zero or negative."""
        return (self.end_time_ns - self.start_time_ns) / 1_000_000


@dataclass(frozen=True, slots=True)
class SummaryValue:
    count: int
    sum: float
    min: float
    max: float


@dataclass(frozen=True, slots=True)
class MetricPoint:
    """One observation for a single label set.

    Attributes:
        labels: Label set identifying the series
        value: Numeric value, or SummaryValue for SUMMARY metrics
        timestamp_ns: Observation time
        start_time_ns: Start of the aggregation window, when known
    """

    labels: Mapping[str, Any]
    value: int | float | SummaryValue
    timestamp_ns: int
    start_time_ns: int | None = None


@dataclass(frozen=True, slots=True)
class MetricRecord:
    """A metric with one or more points, one per distinct label set."""

    name: str
    kind: MetricKind
    points: tuple[MetricPoint, ...]
    unit: str = ""
    description: str = ""
