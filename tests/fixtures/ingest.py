# tests/fixtures/ingest.py
"""Fake ingestion endpoint and helpers for delivery tests.

- FakeIngest: scripted ingestion endpoint behind httpx.MockTransport. Records
  every request and decodes gzip/JSON payloads for assertions.
- SleepRecorder: stands in for backoff sleeps so no test waits for real.
"""

import gzip
import json
import threading
from collections.abc import Callable
from typing import Any

import httpx

from nrexport.config import ExporterSettings
from nrexport.records import SpanRecord, SpanStatus

# Ingest endpoints used by tests (https so settings validation passes)
SPAN_URL = "https://trace.test/trace/v1"
METRIC_URL = "https://metric.test/metric/v1"

Step = int | httpx.Response | Exception | Callable[[httpx.Request], httpx.Response]


class FakeIngest:
    """Scripted ingestion endpoint.

    Each request consumes the next scripted step; once the script is
    exhausted every request gets ``default``. A step may be a status code, a
    prepared httpx.Response, an exception to raise (transport failure), or a
    callable producing a response.

    Thread-safe: split halves may hit the endpoint concurrently.
    """

    def __init__(self, *script: Step, default: Step = 202) -> None:
        self._script: list[Step] = list(script)
        self._default = default
        self._lock = threading.Lock()
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            step = self._script.pop(0) if self._script else self._default
        if isinstance(step, Exception):
            raise step
        if isinstance(step, httpx.Response):
            return step
        if isinstance(step, int):
            return httpx.Response(step)
        return step(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def payloads(self) -> list[list[dict[str, Any]]]:
        with self._lock:
            requests = list(self.requests)
        return [decode_payload(request) for request in requests]

    def entry_counts(self, key: str = "spans") -> list[int]:
        return [len(payload[0][key]) for payload in self.payloads]


def decode_payload(request: httpx.Request) -> list[dict[str, Any]]:
    body = request.content
    if request.headers.get("Content-Encoding") == "gzip":
        body = gzip.decompress(body)
    return json.loads(body)


def entries_in(request: httpx.Request, key: str = "spans") -> list[dict[str, Any]]:
    return decode_payload(request)[0][key]


def respond_by_size(limit: int, *, ok: int = 202, key: str = "spans") -> Callable[[httpx.Request], httpx.Response]:
    """Responder that answers 413 when a request carries more than ``limit`` entries."""

    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(413 if len(entries_in(request, key)) > limit else ok)

    return _respond


class SleepRecorder:
    """Records requested backoff delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._lock = threading.Lock()

    def __call__(self, seconds: float) -> None:
        with self._lock:
            self.delays.append(seconds)


def make_span(
    index: int = 0,
    *,
    status: SpanStatus | None = None,
    attributes: dict[str, Any] | None = None,
    parent: str | None = None,
    duration_ns: int = 5_000_000,
) -> SpanRecord:
    start = 1_700_000_000_000_000_000 + index * 1_000_000
    return SpanRecord(
        trace_id=f"{index:032x}",
        span_id=f"{index + 1:016x}",
        parent_span_id=parent,
        name=f"span-{index}",
        start_time_ns=start,
        end_time_ns=start + duration_ns,
        status=status or SpanStatus.ok(),
        attributes=attributes if attributes is not None else {"index": index},
    )


def build_settings(**overrides: Any) -> ExporterSettings:
    """Settings with test endpoints, three attempts and a 0.5s backoff base."""
    values: dict[str, Any] = {
        "api_key": "test-insert-key-1234",
        "common_attributes": {"service.name": "checkout"},
        "span_endpoint": SPAN_URL,
        "metric_endpoint": METRIC_URL,
        "max_retries": 3,
        "backoff_base_seconds": 0.5,
        "backoff_cap_seconds": 60.0,
        "shutdown_grace_seconds": 5.0,
    }
    values.update(overrides)
    return ExporterSettings(**values)
