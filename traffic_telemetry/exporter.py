"""Export traffic snapshots as Prometheus metrics."""

from typing import Optional

from prometheus_client import CollectorRegistry, Gauge

from .aggregation import LATENCY_BUCKET_BOUNDS
from .models import TrafficSnapshot
from .utils import format_bound_for_label

STATEMENT_TYPES = ('select', 'insert', 'update', 'delete')


def latency_bucket_label(upper: float) -> str:
    """Return the ``le`` label for a latency bucket upper bound."""
    if upper == float('inf'):
        return '+Inf'
    return format_bound_for_label(upper)


def cumulative_latency_buckets(snapshot: TrafficSnapshot):
    """Yield (le label, cumulative count) pairs in ascending bound order."""
    running = 0
    for category, upper in LATENCY_BUCKET_BOUNDS:
        running += snapshot.latency_buckets.get(category, 0)
        yield latency_bucket_label(upper), running


class PrometheusMetricsExporter:
    """Export traffic snapshots as Prometheus gauges."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up Prometheus metric definitions."""
        # Connection metrics
        self.active_connections = Gauge(
            'traffic_connections_active',
            'Current number of active connections',
            [],
            registry=self.registry
        )
        self.total_connections = Gauge(
            'traffic_connections_total',
            'Total connections reported by the data store',
            [],
            registry=self.registry
        )

        # Query metrics
        self.total_queries = Gauge(
            'traffic_queries_total',
            'Total number of queries completed since collection started',
            [],
            registry=self.registry
        )
        self.queries_per_second = Gauge(
            'traffic_queries_per_second',
            'Queries per second over the last sampling interval',
            [],
            registry=self.registry
        )
        self.statements = Gauge(
            'traffic_statements_total',
            'Number of completed queries by statement type',
            ['type'],
            registry=self.registry
        )
        self.slow_queries = Gauge(
            'traffic_slow_queries_total',
            'Number of queries slower than the slow-query threshold',
            [],
            registry=self.registry
        )
        self.slow_query_threshold = Gauge(
            'traffic_slow_query_threshold_seconds',
            'Slow-query threshold in seconds',
            [],
            registry=self.registry
        )

        # Data transfer
        self.bytes_read = Gauge(
            'traffic_bytes_read_total',
            'Bytes read from the data store',
            [],
            registry=self.registry
        )
        self.bytes_written = Gauge(
            'traffic_bytes_written_total',
            'Bytes written to the data store',
            [],
            registry=self.registry
        )

        # Errors
        self.errors = Gauge(
            'traffic_errors_total',
            'Number of failed queries and failed counter probes',
            [],
            registry=self.registry
        )

        # Latency metrics
        self.avg_latency = Gauge(
            'traffic_query_latency_seconds_avg',
            'Rolling average query latency in seconds',
            [],
            registry=self.registry
        )
        self.latency_bucket = Gauge(
            'traffic_query_latency_bucket',
            'Number of queries at or below the latency bound',
            ['le'],
            registry=self.registry
        )

    def export_snapshot(self, snapshot: TrafficSnapshot):
        """Set all gauges from a snapshot."""
        self.active_connections.set(snapshot.active_connections)
        self.total_connections.set(snapshot.total_connections)

        self.total_queries.set(snapshot.total_queries)
        self.queries_per_second.set(snapshot.queries_per_second)
        for statement_type in STATEMENT_TYPES:
            self.statements.labels(type=statement_type).set(getattr(snapshot, f'{statement_type}_count'))
        self.slow_queries.set(snapshot.slow_queries)
        self.slow_query_threshold.set(snapshot.slow_query_threshold)

        self.bytes_read.set(snapshot.bytes_read)
        self.bytes_written.set(snapshot.bytes_written)

        self.errors.set(snapshot.error_count)

        self.avg_latency.set(snapshot.average_query_time)
        # Cumulative buckets so histogram_quantile works on them
        for le, count in cumulative_latency_buckets(snapshot):
            self.latency_bucket.labels(le=le).set(count)
