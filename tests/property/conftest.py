# tests/property/conftest.py
"""Shared Hypothesis strategies for property-based tests.

Strategy Categories:
- Attribute keys and scalar/non-scalar values (what instrumentation hands us)
- Span records with arbitrary status, kind and timing
- HTTP status scripts for the fake ingestion endpoint

Usage:
    from tests.property.conftest import span_records, status_scripts

    @given(record=span_records())
    def test_translation_property(record: SpanRecord) -> None:
        ...
"""

from __future__ import annotations

from typing import Any

from hypothesis import strategies as st

from nrexport.records import SpanKind, SpanRecord, SpanStatus, StatusCode

# =============================================================================
# Attributes
# =============================================================================

attribute_keys = st.text(
    alphabet=st.characters(categories=("Ll", "Lu", "Nd"), include_characters="._-"),
    min_size=1,
    max_size=20,
)

scalar_values = st.one_of(
    st.text(max_size=30),
    st.booleans(),
    st.integers(min_value=-(2**53), max_value=2**53),
    st.floats(allow_nan=False, allow_infinity=False),
)

# Values translation must coerce rather than reject
messy_values = st.one_of(
    scalar_values,
    st.lists(scalar_values, max_size=3),
    st.binary(max_size=10),
    st.sampled_from(list(SpanKind)),
)

attribute_maps = st.dictionaries(attribute_keys, scalar_values, max_size=8)
messy_attribute_maps = st.dictionaries(attribute_keys, messy_values, max_size=8)

# =============================================================================
# Spans
# =============================================================================

hex_ids_32 = st.integers(min_value=1, max_value=2**128 - 1).map(lambda v: f"{v:032x}")
hex_ids_16 = st.integers(min_value=1, max_value=2**64 - 1).map(lambda v: f"{v:016x}")

statuses = st.one_of(
    st.just(SpanStatus()),
    st.just(SpanStatus.ok()),
    st.builds(SpanStatus, code=st.just(StatusCode.ERROR), description=st.none() | st.text(min_size=1, max_size=40)),
)

span_kinds: st.SearchStrategy[Any] = st.one_of(st.sampled_from(list(SpanKind)), st.text(max_size=10))


@st.composite
def span_records(draw: st.DrawFn, *, attributes: st.SearchStrategy[dict[str, Any]] = messy_attribute_maps) -> SpanRecord:
    """Arbitrary finished spans, including zero and negative durations."""
    start = draw(st.integers(min_value=0, max_value=2**62))
    end = start + draw(st.integers(min_value=-(10**9), max_value=10**12))
    return SpanRecord(
        trace_id=draw(hex_ids_32),
        span_id=draw(hex_ids_16),
        parent_span_id=draw(st.none() | hex_ids_16),
        name=draw(st.text(min_size=1, max_size=30)),
        kind=draw(span_kinds),
        start_time_ns=start,
        end_time_ns=end,
        status=draw(statuses),
        attributes=draw(attributes),
    )


# =============================================================================
# Ingestion responses
# =============================================================================

retryable_statuses = st.sampled_from([408, 429, 500, 502, 503, 504])
success_statuses = st.sampled_from([200, 202, 204])
permanent_statuses = st.sampled_from([400, 401, 403, 404])

# Scripts of responses the fake endpoint plays back in order
status_scripts = st.lists(st.one_of(retryable_statuses, success_statuses, permanent_statuses), min_size=1, max_size=8)
