#!/usr/bin/env python3
"""
Send a handful of spans and metrics to New Relic through the OpenTelemetry SDK.

Creates:
- 10 root spans named "testSpan", about half marked as errors
- A "spanCounter" counter labelled with spanName and isItAnError
- A "spanTimer" histogram of how long each span took

Requires NEW_RELIC_API_KEY (and optionally NEW_RELIC_REGION=eu). Every
outgoing payload is logged by the audit logger.

Usage:
    NEW_RELIC_API_KEY=... python basic_example.py
    NEW_RELIC_API_KEY=... python basic_example.py 50     # 50 spans
"""

import random
import sys
import time

from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import SpanKind, Status, StatusCode

from nrexport import ConfigurationError, ExporterSettings, LifecycleController
from nrexport.logging import configure_logging
from nrexport.otel import create_exporters


def run(num_spans: int = 10) -> None:
    """Instrument some simulated work and flush it to New Relic."""
    settings = ExporterSettings.create(
        **ExporterSettings.from_env().model_dump()
        | {"common_attributes": {"service.name": "best service ever"}, "audit_logging": True}
    )
    span_exporter, metric_exporter = create_exporters(settings)
    lifecycle = LifecycleController(
        [span_exporter.exporter, metric_exporter.exporter],
        grace_seconds=settings.shutdown_grace_seconds,
    )
    lifecycle.install_atexit()

    tracer_provider = TracerProvider()
    tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    reader = PeriodicExportingMetricReader(
        metric_exporter,
        export_interval_millis=settings.export_interval_seconds * 1000,
    )
    meter_provider = MeterProvider(metric_readers=[reader])

    tracer = tracer_provider.get_tracer("sample-app", "1.0")
    meter = meter_provider.get_meter("sample-app", "1.0")
    span_counter = meter.create_counter("spanCounter", unit="one", description="Counting all the spans")
    span_timer = meter.create_histogram("spanTimer", unit="ms", description="How long the spans take")

    for _ in range(num_spans):
        started = time.monotonic()
        with tracer.start_as_current_span("testSpan", kind=SpanKind.INTERNAL) as span:
            mark_as_error = random.choice([True, False])
            if mark_as_error:
                span.set_status(Status(StatusCode.ERROR, "internalError"))
            span_counter.add(1, {"spanName": "testSpan", "isItAnError": str(mark_as_error).lower()})
            time.sleep(random.uniform(0, 1))
        span_timer.record((time.monotonic() - started) * 1000, {"spanName": "testSpan"})

    # Providers flush their pipelines first, then the exporters drain
    meter_provider.shutdown()
    tracer_provider.shutdown()
    for name, report in lifecycle.shutdown():
        print(f"{name}: timed_out={report.timed_out} in_flight={report.in_flight}")  # noqa: T201


if __name__ == "__main__":
    num_spans = int(sys.argv[1]) if len(sys.argv) > 1 else 10

    configure_logging(level="INFO")
    try:
        run(num_spans)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)
