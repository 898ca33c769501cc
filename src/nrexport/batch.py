# src/nrexport/batch.py
"""Batch accumulation and payload serialization.

Payload layout ("newrelic" data format, version 1):

    [
      {
        "common": {"attributes": {"service.name": "checkout"}},
        "spans": [ {"id": ..., "trace.id": ..., "timestamp": ..., "attributes": {...}} ]
      }
    ]

Metric payloads use the "metrics" key instead of "spans". The "common" block
is omitted when the exporter has no common attributes.
"""

import gzip
import json
from collections.abc import Iterable, Mapping
from typing import Any

from nrexport.attributes import Scalar
from nrexport.model import Batch, EntryType, IngestionEntry


def accumulate(
    entries: Iterable[IngestionEntry],
    common_attributes: Mapping[str, Scalar],
    entry_type: EntryType,
) -> Batch:
    """Collect translated entries into a single batch.

    Consumes ``entries`` exactly once. An empty iterable yields an empty
    batch, which the delivery client treats as a no-op.

    Raises:
        ValueError: If an entry does not match ``entry_type``
    """
    return Batch(entry_type=entry_type, entries=tuple(entries), common_attributes=common_attributes)


def build_payload(batch: Batch) -> list[dict[str, Any]]:
    """JSON-ready payload for a batch."""
    block: dict[str, Any] = {}
    if batch.common_attributes:
        block["common"] = {"attributes": dict(batch.common_attributes)}
    block[batch.entry_type.value] = [entry.to_wire() for entry in batch.entries]
    return [block]


def serialize_batch(batch: Batch) -> bytes:
    """Serialize a batch to compact UTF-8 JSON."""
    return json.dumps(build_payload(batch), separators=(",", ":"), default=str).encode("utf-8")


def encode_body(payload: bytes, *, compress: bool) -> bytes:
    """gzip the payload when compression is enabled."""
    return gzip.compress(payload) if compress else payload
