# tests/fixtures/__init__.py
"""Shared test helpers for nrexport tests.

Available helpers:
- FakeIngest: scripted ingestion endpoint behind httpx.MockTransport
- SleepRecorder: records backoff delays instead of sleeping
- build_settings / make_span: settings and span factories
"""

from tests.fixtures.ingest import FakeIngest, SleepRecorder, build_settings, make_span

__all__ = [
    "FakeIngest",
    "SleepRecorder",
    "build_settings",
    "make_span",
]
