"""Live traffic telemetry for database connections, with Prometheus export."""

from .models import ChartDataPoint, QueryMetrics, SourceCounters, TrafficSnapshot, TrafficStats
from .aggregation import (
    LatencyBuckets,
    RateCalculator,
    RollingAverage,
    calculate_stats,
    categorize_latency,
    chart_series,
    histogram,
    percentile,
)
from .history import TrafficHistory
from .config import CollectorConfig
from .errors import CollectorStateError, ConfigurationError, ProbeError, TelemetryError
from .collector import CollectionErrorEvent, Collector, CollectorState, SnapshotEvent
from .sources import CounterSource, PostgresCounterSource, SQLiteCounterSource, classify_statement
from .exporter import PrometheusMetricsExporter
from .remote_write import RemoteWriteClient

__all__ = [
    'ChartDataPoint',
    'QueryMetrics',
    'SourceCounters',
    'TrafficSnapshot',
    'TrafficStats',
    'LatencyBuckets',
    'RateCalculator',
    'RollingAverage',
    'calculate_stats',
    'categorize_latency',
    'chart_series',
    'histogram',
    'percentile',
    'TrafficHistory',
    'CollectorConfig',
    'CollectorStateError',
    'ConfigurationError',
    'ProbeError',
    'TelemetryError',
    'CollectionErrorEvent',
    'Collector',
    'CollectorState',
    'SnapshotEvent',
    'CounterSource',
    'PostgresCounterSource',
    'SQLiteCounterSource',
    'classify_statement',
    'PrometheusMetricsExporter',
    'RemoteWriteClient',
]
