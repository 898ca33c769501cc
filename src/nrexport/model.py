# src/nrexport/model.py
"""Wire-level entries, batches and delivery outcomes.

IngestionEntry is the translated form of a span or metric point. A Batch
groups entries of ONE type with the exporter's common attributes; span and
metric batches go to different endpoints and are never mixed.

Delivery results come in two layers:
- DeliveryOutcome (Success / PermanentFailure / RetryableFailure) classifies
  a single HTTP exchange.
- DeliveryReport aggregates every exchange made for one top-level deliver()
  call, including retries and split sub-deliveries, so callers can tell
  full success, partial success and full failure apart.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from nrexport.attributes import Scalar


class EntryType(StrEnum):
    """Entry discriminator. The value is the payload key on the wire."""

    SPAN = "spans"
    METRIC = "metrics"


@dataclass(frozen=True, slots=True)
class IngestionEntry:
    """One span or metric point in ingestion format.

    Attributes:
        entry_type: SPAN or METRIC
        timestamp_ms: Milliseconds since epoch
        attributes: Merged attributes (common + record, record wins)
        fields: Type-specific top-level wire fields
            (``id``/``trace.id`` for spans; ``name``/``type``/``value``/
            ``interval.ms`` for metrics)
    """

    entry_type: EntryType
    timestamp_ms: int
    attributes: Mapping[str, Scalar] = field(default_factory=dict)
    fields: Mapping[str, Any] = field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict for this entry."""
        wire: dict[str, Any] = dict(self.fields)
        wire["timestamp"] = self.timestamp_ms
        if self.attributes:
            wire["attributes"] = dict(self.attributes)
        return wire


@dataclass(frozen=True, slots=True)
class Batch:
    """Ordered entries of a single type plus the exporter's common attributes."""

    entry_type: EntryType
    entries: tuple[IngestionEntry, ...] = ()
    common_attributes: Mapping[str, Scalar] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for entry in self.entries:
            if entry.entry_type != self.entry_type:
                raise ValueError(f"{entry.entry_type.value} entry cannot be added to a {self.entry_type.value} batch")

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def split(self) -> tuple["Batch", "Batch"]:
        """Split by entry count. The first half gets ``len // 2`` entries."""
        mid = len(self.entries) // 2
        return (
            Batch(self.entry_type, self.entries[:mid], self.common_attributes),
            Batch(self.entry_type, self.entries[mid:], self.common_attributes),
        )


@dataclass(frozen=True, slots=True)
class Success:
    delivered: int


@dataclass(frozen=True, slots=True)
class PermanentFailure:
    reason: str
    failed: int
    status_code: int | None = None


@dataclass(frozen=True, slots=True)
class RetryableFailure:
    reason: str
    failed: int
    retry_after: float | None = None
    status_code: int | None = None


DeliveryOutcome = Success | PermanentFailure | RetryableFailure


@dataclass(frozen=True, slots=True)
class DeliveryReport:
    """Aggregate result of one top-level delivery.

    Attributes:
        total: Entries in the batch handed to deliver()
        delivered: Entries accepted by the ingestion service
        failed: Entries permanently rejected or abandoned after retries
        attempts: HTTP exchanges made, including retries and split halves
        splits: Number of times a batch was halved after a 413
        failures: Final PermanentFailure outcomes, one per failed sub-batch
    """

    total: int
    delivered: int = 0
    failed: int = 0
    attempts: int = 0
    splits: int = 0
    failures: tuple[PermanentFailure, ...] = ()

    @classmethod
    def empty(cls) -> "DeliveryReport":
        return cls(total=0)

    @classmethod
    def from_outcome(cls, outcome: Success | PermanentFailure, *, attempts: int) -> "DeliveryReport":
        if isinstance(outcome, Success):
            return cls(total=outcome.delivered, delivered=outcome.delivered, attempts=attempts)
        return cls(total=outcome.failed, failed=outcome.failed, attempts=attempts, failures=(outcome,))

    def combine(self, other: "DeliveryReport") -> "DeliveryReport":
        """Sum two reports for disjoint sets of entries."""
        return DeliveryReport(
            total=self.total + other.total,
            delivered=self.delivered + other.delivered,
            failed=self.failed + other.failed,
            attempts=self.attempts + other.attempts,
            splits=self.splits + other.splits,
            failures=self.failures + other.failures,
        )

    @property
    def succeeded(self) -> bool:
        """True only when every entry was delivered (vacuously true when empty)."""
        return not self.failures and self.failed == 0 and self.delivered == self.total

    @property
    def partially_succeeded(self) -> bool:
        return self.delivered > 0 and self.failed > 0

    @property
    def fully_failed(self) -> bool:
        return bool(self.failures) and self.delivered == 0

    @property
    def failure_reasons(self) -> list[str]:
        return [failure.reason for failure in self.failures]
