"""Client for sending traffic snapshots via Prometheus remote write."""

import sys
from typing import Any, Dict, List, Optional
from datetime import datetime

import requests
import snappy
from google.protobuf.json_format import MessageToJson

from prometheus_remote_writer.proto import remote_pb2 as prompb_pb2
from prometheus_remote_writer.proto import types_pb2

from .exporter import STATEMENT_TYPES, cumulative_latency_buckets
from .models import TrafficSnapshot


class RemoteWriteClient:
    """Client for sending traffic snapshots via remote write."""

    def __init__(self, remote_write_url: str, headers: Optional[Dict[str, str]] = None,
                 instance_label: str = 'traffic', verbose: bool = False, timeout: float = 30):
        self.remote_write_url = remote_write_url
        self.headers = dict(headers or {})
        self.headers.setdefault('Content-Type', 'application/x-protobuf')
        self.headers.setdefault('Content-Encoding', 'snappy')
        self.headers.setdefault('X-Prometheus-Remote-Write-Version', '0.1.0')
        self.instance_label = instance_label  # Value for the instance label
        self.verbose = verbose
        self.timeout = timeout

    def send_snapshots(self, snapshots: List[TrafficSnapshot], source_type: Optional[str] = None,
                       dry_run: bool = False, debug_file: Optional[str] = None) -> bool:
        """Send snapshots to the remote write endpoint.

        Args:
            snapshots: Snapshots to send, oldest first; zero-value snapshots are skipped
            source_type: Data-store type added as a label on the traffic_info metric
            dry_run: If True, process metrics but skip sending to endpoint
            debug_file: Optional path to save uncompressed payload data before compression

        Returns:
            True if successful, False otherwise
        """
        try:
            write_request = self.build_write_request(snapshots, source_type=source_type)

            num_timeseries = len(write_request.timeseries)
            total_samples = sum(len(ts.samples) for ts in write_request.timeseries)
            print(f"Prepared {num_timeseries} time series with {total_samples} total samples", file=sys.stderr)

            data = write_request.SerializeToString()

            # Save uncompressed data to debug file if specified (as JSON)
            if debug_file:
                self._write_debug_file(write_request, debug_file)

            if dry_run:
                print("Dry-run mode: Skipping actual send to endpoint", file=sys.stderr)
                return True

            compressed_data = snappy.compress(data)
            print(f"Sending {len(compressed_data)} bytes (uncompressed: {len(data)} bytes)", file=sys.stderr)

            response = requests.post(
                self.remote_write_url,
                data=compressed_data,
                headers=self.headers,
                timeout=self.timeout
            )

            if response.status_code == 200 or response.status_code == 204:
                print(f"Successfully sent metrics (status {response.status_code})", file=sys.stderr)
                return True
            print(f"Error sending metrics: {response.status_code} - {response.text}", file=sys.stderr)
            return False
        except requests.exceptions.ConnectionError:
            print(f"Connection error: Could not connect to {self.remote_write_url}", file=sys.stderr)
            print("  Make sure Prometheus is running and the remote write receiver is enabled", file=sys.stderr)
            print("  Start Prometheus with: --web.enable-remote-write-receiver", file=sys.stderr)
            return False
        except requests.exceptions.RequestException as e:
            print(f"Error in remote write: {e}", file=sys.stderr)
            return False

    def build_write_request(self, snapshots: List[TrafficSnapshot], source_type: Optional[str] = None):
        """Convert snapshots to a remote write ``WriteRequest``."""
        write_request = prompb_pb2.WriteRequest()  # type: ignore
        time_series_map: Dict[tuple, Any] = {}

        timestamped = [s for s in snapshots if s.timestamp is not None]
        if not timestamped:
            return write_request

        # traffic_info is only sent with the first timestamp
        if source_type:
            first_timestamp_ms = int(timestamped[0].timestamp.timestamp() * 1000)
            self._add_sample_to_map(time_series_map, 'traffic_info', {'source': source_type}, 1.0, first_timestamp_ms)

        for snapshot in timestamped:
            timestamp_ms = int(snapshot.timestamp.timestamp() * 1000)
            self._process_snapshot(snapshot, time_series_map, timestamp_ms)

        self._finalize_time_series(time_series_map, write_request)
        return write_request

    def _process_snapshot(self, snapshot: TrafficSnapshot, time_series_map: Dict[tuple, Any], timestamp_ms: int):
        """Add one sample per series for a snapshot."""
        # Connections
        self._add_sample_to_map(time_series_map, 'traffic_connections_active', {}, snapshot.active_connections, timestamp_ms)
        self._add_sample_to_map(time_series_map, 'traffic_connections_total', {}, snapshot.total_connections, timestamp_ms)

        # Queries (already cumulative)
        self._add_sample_to_map(time_series_map, 'traffic_queries_total', {}, snapshot.total_queries, timestamp_ms)
        self._add_sample_to_map(time_series_map, 'traffic_queries_per_second', {}, snapshot.queries_per_second, timestamp_ms)
        for statement_type in STATEMENT_TYPES:
            count = getattr(snapshot, f'{statement_type}_count')
            self._add_sample_to_map(time_series_map, 'traffic_statements_total', {'type': statement_type}, count, timestamp_ms)
        self._add_sample_to_map(time_series_map, 'traffic_slow_queries_total', {}, snapshot.slow_queries, timestamp_ms)

        # Data transfer
        self._add_sample_to_map(time_series_map, 'traffic_bytes_read_total', {}, snapshot.bytes_read, timestamp_ms)
        self._add_sample_to_map(time_series_map, 'traffic_bytes_written_total', {}, snapshot.bytes_written, timestamp_ms)

        # Errors
        self._add_sample_to_map(time_series_map, 'traffic_errors_total', {}, snapshot.error_count, timestamp_ms)

        # Latency
        self._add_sample_to_map(time_series_map, 'traffic_query_latency_seconds_avg', {}, snapshot.average_query_time, timestamp_ms)
        for le, count in cumulative_latency_buckets(snapshot):
            self._add_sample_to_map(time_series_map, 'traffic_query_latency_bucket', {'le': le}, count, timestamp_ms)

    def _finalize_time_series(self, time_series_map: Dict[tuple, Any], write_request) -> None:
        """Add all time series to the write request."""
        for time_series in time_series_map.values():
            # Only add TimeSeries that have at least one sample
            if len(time_series.samples) > 0:
                new_ts = write_request.timeseries.add()
                new_ts.CopyFrom(time_series)

    def _write_debug_file(self, write_request, debug_file: str) -> None:
        try:
            json_data = MessageToJson(write_request, always_print_fields_with_no_presence=True)  # type: ignore[call-arg]
        except TypeError:
            # protobuf < 26 uses the old parameter name
            json_data = MessageToJson(write_request, including_default_value_fields=True)  # type: ignore[call-arg]
        try:
            with open(debug_file, 'w', encoding='utf-8') as f:
                f.write(json_data)
            print(f"Saved uncompressed payload as JSON ({len(json_data)} bytes) to {debug_file}", file=sys.stderr)
        except OSError as e:
            print(f"Warning: Failed to write debug file {debug_file}: {e}", file=sys.stderr)

    def _print_metric_sample(self, time_series, timestamp_ms: int, value: float) -> None:
        """Print a single metric sample in verbose mode."""
        metric_name = None
        labels = {}
        for label in time_series.labels:
            if label.name == '__name__':
                metric_name = label.value
            else:
                labels[label.name] = label.value

        if labels:
            label_str = ','.join(f'{k}="{v}"' for k, v in sorted(labels.items()))
            metric_str = f'{metric_name}{{{label_str}}}'
        else:
            metric_str = metric_name

        timestamp_dt = datetime.fromtimestamp(timestamp_ms / 1000.0)
        print(f"{timestamp_dt.isoformat()} {metric_str} {value}")

    def _add_sample_to_map(self, time_series_map: Dict[tuple, Any], metric_name: str, labels: Dict[str, str],
                           value: float, timestamp_ms: int):
        """Add a sample to the time series map, grouping by metric name and labels."""
        labels_with_instance = labels.copy()
        labels_with_instance['instance'] = self.instance_label

        # Create a unique key from metric name and sorted labels
        sorted_labels = tuple(sorted(labels_with_instance.items()))
        key = (metric_name, sorted_labels)

        if key not in time_series_map:
            time_series = types_pb2.TimeSeries()  # type: ignore

            label = time_series.labels.add()
            label.name = '__name__'
            label.value = metric_name

            for key_name, val in sorted(labels_with_instance.items()):
                label = time_series.labels.add()
                label.name = key_name
                label.value = str(val)

            time_series_map[key] = time_series

        # For _info metrics, only add the first sample (first timestamp)
        if metric_name.endswith('_info') and len(time_series_map[key].samples) > 0:
            return

        sample = time_series_map[key].samples.add()
        sample.value = value
        sample.timestamp = timestamp_ms

        if self.verbose:
            self._print_metric_sample(time_series_map[key], timestamp_ms, value)
