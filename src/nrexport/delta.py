# src/nrexport/delta.py
"""Cumulative-to-delta conversion for counters.

Metric readers usually report counters as running totals since process
start. The ingestion service's ``count`` type expects the increase over an
interval, so the metric exporter can pass COUNTER records through a
DeltaTracker before translation.

The tracker is the only stateful stage in the metric path. It is keyed by
(metric name, label set) and guarded by a lock, since a scheduler may call
export from a timer thread while shutdown runs on another.
"""

import threading
from dataclasses import replace

from nrexport.records import MetricKind, MetricPoint, MetricRecord

_SeriesKey = tuple[str, frozenset[tuple[str, str]]]


def _series_key(name: str, point: MetricPoint) -> _SeriesKey:
    return name, frozenset((str(k), str(v)) for k, v in point.labels.items())


class DeltaTracker:
    """Remembers the last cumulative value per counter series.

    For each counter point:
    - First observation: reported as-is over [start_time, timestamp]
    - Later observations: current - previous over [previous timestamp, timestamp]
    - A decrease means the counter was reset: the series restarts and the
      current value is reported as-is

    Non-counter records are returned unchanged.

    Cumulative readers repeat every live series on each collection, so a
    series missing for ``max_idle_intervals`` consecutive calls to
    end_interval() is dropped. If it comes back it starts over as a first
    observation.
    """

    def __init__(self, max_idle_intervals: int = 10) -> None:
        if max_idle_intervals < 1:
            raise ValueError("max_idle_intervals must be >= 1")
        self._max_idle = max_idle_intervals
        self._interval = 0
        # series -> (last value, last timestamp, interval last seen)
        self._last: dict[_SeriesKey, tuple[float, int, int]] = {}
        self._lock = threading.Lock()

    def to_delta(self, record: MetricRecord) -> MetricRecord:
        if record.kind != MetricKind.COUNTER:
            return record

        points = []
        with self._lock:
            for point in record.points:
                if not isinstance(point.value, int | float):
                    points.append(point)
                    continue
                key = _series_key(record.name, point)
                previous = self._last.get(key)
                self._last[key] = (point.value, point.timestamp_ns, self._interval)
                if previous is None or point.value < previous[0]:
                    points.append(point)
                else:
                    last_value, last_ts, _ = previous
                    points.append(replace(point, value=point.value - last_value, start_time_ns=last_ts))
        return replace(record, points=tuple(points))

    def end_interval(self) -> int:
        """Close the current collection interval and evict idle series.

        Returns:
            Number of series evicted
        """
        with self._lock:
            oldest_kept = self._interval - self._max_idle + 1
            stale = [key for key, (_, _, seen) in self._last.items() if seen < oldest_kept]
            for key in stale:
                del self._last[key]
            self._interval += 1
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._last)
