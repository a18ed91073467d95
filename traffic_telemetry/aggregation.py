"""Aggregation utilities for traffic metrics.

Turns raw counters and latency samples into display-ready values: rolling
averages, per-second rates, nearest-rank percentiles, equal-width histograms,
fixed latency buckets and window statistics over snapshot history.
"""

import math
from datetime import timedelta
from typing import List, Sequence, Tuple, Union

from .errors import ConfigurationError
from .models import ChartDataPoint, TrafficSnapshot, TrafficStats

Duration = Union[float, timedelta]

# Upper bounds (seconds, exclusive) of the latency categories; anything above goes to 'vslow'
QUICK_THRESHOLD = 0.010
MEDIUM_THRESHOLD = 0.100
SLOW_THRESHOLD = 1.0

BUCKET_QUICK = 'quick'
BUCKET_MEDIUM = 'medium'
BUCKET_SLOW = 'slow'
BUCKET_VERY_SLOW = 'vslow'

# Ordered (category, upper bound) pairs; the last bucket is unbounded
LATENCY_BUCKET_BOUNDS: Tuple[Tuple[str, float], ...] = (
    (BUCKET_QUICK, QUICK_THRESHOLD),
    (BUCKET_MEDIUM, MEDIUM_THRESHOLD),
    (BUCKET_SLOW, SLOW_THRESHOLD),
    (BUCKET_VERY_SLOW, math.inf),
)


def to_seconds(duration: Duration) -> float:
    """Normalize a float-seconds or timedelta duration to float seconds."""
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


class RollingAverage:
    """Moving average over the last ``size`` values."""

    def __init__(self, size: int):
        if size <= 0:
            raise ConfigurationError(f"rolling average size must be >= 1, got {size}")
        self.size = size
        self._values: List[float] = [0.0] * size
        self._position = 0
        self._count = 0
        self._sum = 0.0

    def add(self, value: float) -> None:
        """Record a value, evicting the oldest one once the window is full."""
        self._values[self._position] = value
        self._position = (self._position + 1) % self.size
        if self._count < self.size:
            self._count += 1
        # Exact sum of the live slots; a running total keeps cancellation error
        self._sum = math.fsum(self._values[:self._count])

    def average(self) -> float:
        # Divide by samples seen so far until the window has filled once
        if self._count == 0:
            return 0.0
        return self._sum / self._count

    def __len__(self) -> int:
        return self._count


class RateCalculator:
    """Per-second rate of a monotonically increasing counter.

    Feed it the cumulative counter value on each tick; a counter that goes
    backwards (reset on reconnect) yields a rate of zero rather than a
    negative one.
    """

    def __init__(self):
        self._last_value = 0
        self._last_time = None
        self._current_rate = 0.0

    def update(self, value: int, now: float) -> float:
        """Update with the counter's current value observed at ``now`` (seconds).

        The first observation, and any with a non-positive elapsed time, only
        record the baseline and keep the previous rate.
        """
        if self._last_time is not None:
            elapsed = now - self._last_time
            if elapsed > 0:
                delta = max(0, value - self._last_value)
                self._current_rate = delta / elapsed
        self._last_value = value
        self._last_time = now
        return self._current_rate

    def rate(self) -> float:
        return self._current_rate


def percentile(values: Sequence[float], p: float) -> float:
    """Return the nearest-rank ``p``-th percentile (0-100) of ``values``.

    The input is not modified. Empty input returns 0.0.
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    index = int(math.floor(p / 100.0 * (len(ordered) - 1)))
    index = max(0, min(len(ordered) - 1, index))
    return ordered[index]


def histogram(values: Sequence[float], bucket_count: int) -> Tuple[List[float], List[int]]:
    """Bucket ``values`` into ``bucket_count`` equal-width buckets.

    Returns:
        Tuple of (boundaries, counts): ``bucket_count + 1`` boundaries and
        ``bucket_count`` counts. The maximum value lands in the last bucket.
        When all values are equal every sample goes into bucket 0.
    """
    if bucket_count < 1:
        raise ConfigurationError(f"bucket_count must be >= 1, got {bucket_count}")
    if not values:
        return [], []

    low = min(values)
    high = max(values)
    counts = [0] * bucket_count

    width = (high - low) / bucket_count
    # Equal values, or a range too small to split
    if not width > 0:
        counts[0] = len(values)
        return [low] * (bucket_count + 1), counts

    boundaries = [low + i * width for i in range(bucket_count + 1)]
    for value in values:
        index = int(math.floor((value - low) / width))
        counts[min(index, bucket_count - 1)] += 1
    return boundaries, counts


def categorize_latency(duration: Duration) -> str:
    """Return the latency category name for ``duration``."""
    seconds = to_seconds(duration)
    for category, upper in LATENCY_BUCKET_BOUNDS:
        if seconds < upper:
            return category
    return BUCKET_VERY_SLOW


class LatencyBuckets:
    """Counts of query latencies per fixed category."""

    LABELS = ('Quick', 'Medium', 'Slow', 'V.Slow')

    def __init__(self):
        self.quick = 0
        self.medium = 0
        self.slow = 0
        self.very_slow = 0

    def add(self, duration: Duration) -> None:
        category = categorize_latency(duration)
        if category == BUCKET_QUICK:
            self.quick += 1
        elif category == BUCKET_MEDIUM:
            self.medium += 1
        elif category == BUCKET_SLOW:
            self.slow += 1
        else:
            self.very_slow += 1

    def to_list(self) -> List[int]:
        """Bucket counts in ``labels()`` order."""
        return [self.quick, self.medium, self.slow, self.very_slow]

    def labels(self) -> List[str]:
        return list(self.LABELS)

    def as_dict(self):
        return {category: count for (category, _), count in zip(LATENCY_BUCKET_BOUNDS, self.to_list())}

    def total(self) -> int:
        return sum(self.to_list())


def calculate_stats(snapshots: Sequence[TrafficSnapshot]) -> TrafficStats:
    """Compute aggregate statistics over a chronological window of snapshots.

    Query and error totals are the increase across the window; a single
    snapshot reports its own cumulative totals.
    """
    if not snapshots:
        return TrafficStats()

    first = snapshots[0]
    last = snapshots[-1]

    period = 0.0
    if first.timestamp is not None and last.timestamp is not None:
        period = max(0.0, (last.timestamp - first.timestamp).total_seconds())

    if len(snapshots) == 1:
        total_queries = last.total_queries
        total_errors = last.error_count
    else:
        total_queries = max(0, last.total_queries - first.total_queries)
        total_errors = max(0, last.error_count - first.error_count)

    qps = [s.queries_per_second for s in snapshots]
    latencies = [s.average_query_time for s in snapshots]
    connections = [s.active_connections for s in snapshots]

    return TrafficStats(
        period=period,
        total_queries=total_queries,
        average_qps=sum(qps) / len(qps),
        peak_qps=max(qps),
        average_latency=sum(latencies) / len(latencies),
        p95_latency=percentile(latencies, 95),
        p99_latency=percentile(latencies, 99),
        total_errors=total_errors,
        error_rate=(total_errors / total_queries * 100.0) if total_queries else 0.0,
        average_connections=sum(connections) / len(connections),
        peak_connections=max(connections),
    )


def chart_series(snapshots: Sequence[TrafficSnapshot], attribute: str) -> List[ChartDataPoint]:
    """Return ``attribute`` of each timestamped snapshot as chart points."""
    return [
        ChartDataPoint(x=s.timestamp.timestamp(), y=float(getattr(s, attribute)))
        for s in snapshots
        if s.timestamp is not None
    ]
