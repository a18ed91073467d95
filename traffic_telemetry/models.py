"""Data models for traffic telemetry."""

from dataclasses import dataclass, field, fields
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class TrafficSnapshot:
    """Point-in-time traffic counters for one sampling tick.

    Counters are cumulative since the collector started. Durations are in
    seconds. ``TrafficSnapshot()`` is the zero value handed out before the
    first tick.
    """
    timestamp: Optional[datetime] = None  # None only for the zero value

    # Connections
    active_connections: int = 0
    total_connections: int = 0

    # Queries
    queries_per_second: float = 0.0
    total_queries: int = 0
    average_query_time: float = 0.0

    # Statement breakdown
    select_count: int = 0
    insert_count: int = 0
    update_count: int = 0
    delete_count: int = 0

    # Performance
    slow_queries: int = 0
    slow_query_threshold: float = 0.0

    # Data transfer
    bytes_read: int = 0
    bytes_written: int = 0

    # Errors
    error_count: int = 0
    last_error: str = ''
    last_error_time: Optional[datetime] = None

    latency_buckets: Mapping[str, int] = field(default_factory=dict)  # category -> count

    def __post_init__(self):
        # Read-only view over a private copy; history readers share snapshot objects
        object.__setattr__(self, 'latency_buckets', MappingProxyType(dict(self.latency_buckets)))

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly dictionary (datetimes as ISO strings)."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['latency_buckets'] = dict(self.latency_buckets)
        for key in ('timestamp', 'last_error_time'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class QueryMetrics:
    """A single completed query as reported by a counter source."""
    query_type: str
    duration: float
    started_at: Optional[datetime] = None
    query: str = ''
    rows_affected: int = 0
    was_error: bool = False
    error_message: str = ''

    def is_slow(self, threshold: float) -> bool:
        return self.duration > threshold


@dataclass(frozen=True)
class SourceCounters:
    """Counters gathered by one probe of a data store.

    ``None`` means the backend does not report the counter.
    """
    active_connections: Optional[int] = None
    total_connections: Optional[int] = None
    bytes_read: Optional[int] = None
    bytes_written: Optional[int] = None


@dataclass(frozen=True)
class TrafficStats:
    """Aggregated statistics over a window of snapshots."""
    period: float = 0.0
    total_queries: int = 0
    average_qps: float = 0.0
    peak_qps: float = 0.0
    average_latency: float = 0.0
    p95_latency: float = 0.0
    p99_latency: float = 0.0
    total_errors: int = 0
    error_rate: float = 0.0  # percent of queries that failed
    average_connections: float = 0.0
    peak_connections: int = 0


@dataclass(frozen=True)
class ChartDataPoint:
    """An x/y pair for line charts; x is usually a unix timestamp."""
    x: float
    y: float
