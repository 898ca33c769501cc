# src/nrexport/attributes.py
"""Attribute names, value coercion and the common-attribute set.

The ingestion format only accepts scalar attribute values (string, number,
boolean). Anything else is converted to its string form rather than dropped,
so no attribute supplied by instrumentation is ever lost in translation.
"""

from collections.abc import Iterator, Mapping
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

# Wire-level attribute names
SERVICE_NAME = "service.name"
NAME = "name"
PARENT_ID = "parent.id"
DURATION_MS = "duration.ms"
ERROR = "error"
ERROR_MESSAGE = "error.message"
SPAN_KIND = "span.kind"
INSTRUMENTATION_PROVIDER = "instrumentation.provider"
COLLECTOR_NAME = "collector.name"
UNIT = "unit"
DESCRIPTION = "description"

INSTRUMENTATION_PROVIDER_VALUE = "opentelemetry"
COLLECTOR_NAME_VALUE = "newrelic-opentelemetry-exporter"

Scalar = str | bool | int | float


def coerce_attribute_value(value: Any) -> Scalar:
    """Convert an attribute value to a type the ingestion format accepts.

    Scalars pass through unchanged. Enums become their value, datetimes become
    ISO 8601 strings, and everything else becomes ``str(value)``.
    """
    if isinstance(value, str | bool | int | float):
        return value
    if isinstance(value, Enum):
        return coerce_attribute_value(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, list | tuple):
        return str([coerce_attribute_value(v) for v in value])
    return str(value)


def coerce_attributes(attributes: Mapping[str, Any] | None) -> dict[str, Scalar]:
    """Coerce every value in a mapping. None values are skipped."""
    if not attributes:
        return {}
    return {str(key): coerce_attribute_value(value) for key, value in attributes.items() if value is not None}


def merge_attributes(common: Mapping[str, Any] | None, record: Mapping[str, Any] | None) -> dict[str, Scalar]:
    """Merge common and record attributes. Record values win on collision."""
    merged = coerce_attributes(common)
    merged.update(coerce_attributes(record))
    return merged


class CommonAttributes(Mapping[str, Scalar]):
    """Immutable attribute mapping shared by every entry from one exporter.

    Values are coerced once at construction. The mapping is read-only
    afterwards, so it may be shared between the span and metric pipelines
    without locking.

    Example:
        common = CommonAttributes({"service.name": "checkout"})
        common["service.name"]  # "checkout"
    """

    __slots__ = ("_data",)

    def __init__(self, attributes: Mapping[str, Any] | None = None) -> None:
        self._data: Mapping[str, Scalar] = MappingProxyType(coerce_attributes(attributes))

    def __getitem__(self, key: str) -> Scalar:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"CommonAttributes({dict(self._data)!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Mapping):
            return dict(self._data) == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]
