#!/usr/bin/env python3
"""
Sample live traffic on a SQLite database, expose it as Prometheus metrics,
then optionally send the collected history using Prometheus remote write.
"""

import sys
import os
import time
import logging
import argparse
import sqlite3

from prometheus_client import start_http_server

# Handle both relative imports (when used as module) and absolute imports (when run as script)
try:
    from .collector import Collector, CollectionErrorEvent, SnapshotEvent
    from .config import CollectorConfig
    from .errors import ConfigurationError
    from .exporter import PrometheusMetricsExporter
    from .sources import SQLiteCounterSource
    from .utils import format_bytes, format_duration, prepare_headers, send_metrics_remote_write
except ImportError:
    # If relative imports fail, we're running as a script - add parent directory to path
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from traffic_telemetry.collector import Collector, CollectionErrorEvent, SnapshotEvent
    from traffic_telemetry.config import CollectorConfig
    from traffic_telemetry.errors import ConfigurationError
    from traffic_telemetry.exporter import PrometheusMetricsExporter
    from traffic_telemetry.sources import SQLiteCounterSource
    from traffic_telemetry.utils import format_bytes, format_duration, prepare_headers, send_metrics_remote_write


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Sample database traffic and export it to Prometheus'
    )
    parser.add_argument(
        'database',
        help='Path to the SQLite database to sample'
    )
    parser.add_argument(
        '--interval',
        type=float,
        default=1.0,
        help='Seconds between samples (default: 1.0)'
    )
    parser.add_argument(
        '--duration',
        type=float,
        default=10.0,
        help='Seconds to sample before stopping (default: 10)'
    )
    parser.add_argument(
        '--history-size',
        type=int,
        default=60,
        help='Number of snapshots kept in history (default: 60)'
    )
    parser.add_argument(
        '--slow-query-ms',
        type=float,
        default=100.0,
        help='Queries slower than this many milliseconds count as slow (default: 100)'
    )
    parser.add_argument(
        '--query',
        action='append',
        help='SQL statement replayed once per interval to generate traffic (repeatable)'
    )
    parser.add_argument(
        '--listen-port',
        type=int,
        help='Serve /metrics on this port while sampling'
    )
    parser.add_argument(
        '--remote-write-url',
        help='Prometheus remote write endpoint URL; the history is sent when sampling ends'
    )
    parser.add_argument(
        '--remote-write-header',
        action='append',
        help='Additional header for remote write (format: Key=Value)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Build the remote write payload without sending it'
    )
    parser.add_argument(
        '--instance-label',
        default='traffic',
        help='Value for the instance label added to all metrics (default: traffic)'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Print every snapshot and every remote write sample, and enable debug logging'
    )
    parser.add_argument(
        '--debug-file',
        help='Save the uncompressed remote write payload (before snappy compression) as JSON to the specified file'
    )
    return parser


def replay_queries(source: SQLiteCounterSource, queries) -> None:
    for sql in queries or []:
        try:
            source.execute(sql)
        except sqlite3.Error as e:
            # Already counted by the collector as a failed query
            print(f"Warning: query failed: {e}", file=sys.stderr)


def print_summary(collector: Collector) -> None:
    snapshot = collector.get_metrics()
    stats = collector.stats()
    print(f"\nCollected {len(collector.get_history())} snapshot(s) over {format_duration(stats.period)}")
    print(f"  Queries: {snapshot.total_queries} total, {stats.average_qps:.2f} avg qps, {stats.peak_qps:.2f} peak qps")
    print(f"  Statements: select={snapshot.select_count} insert={snapshot.insert_count} "
          f"update={snapshot.update_count} delete={snapshot.delete_count}")
    print(f"  Latency: avg {format_duration(stats.average_latency)}, p95 {format_duration(stats.p95_latency)}, "
          f"p99 {format_duration(stats.p99_latency)}")
    print(f"  Slow queries (> {format_duration(snapshot.slow_query_threshold)}): {snapshot.slow_queries}")
    print(f"  Data: read {format_bytes(snapshot.bytes_read)}, written {format_bytes(snapshot.bytes_written)}")
    print(f"  Errors: {snapshot.error_count} ({stats.error_rate:.2f}%)")
    if snapshot.last_error:
        print(f"  Last error: {snapshot.last_error}")


def main():
    args = build_arg_parser().parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(asctime)s %(levelname)s %(name)s %(message)s')

    try:
        config = CollectorConfig(
            interval=args.interval,
            history_size=args.history_size,
            slow_query_threshold=args.slow_query_ms / 1000.0,
        ).validate()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        source = SQLiteCounterSource(args.database)
    except sqlite3.Error as e:
        print(f"Error: Could not open database '{args.database}': {e}", file=sys.stderr)
        sys.exit(1)

    exporter = PrometheusMetricsExporter()
    if args.listen_port:
        start_http_server(args.listen_port, registry=exporter.registry)
        print(f"Serving metrics on :{args.listen_port}/metrics")

    collector = Collector(source, config=config)
    print(f"Sampling {args.database} every {format_duration(config.interval)} for {format_duration(args.duration)}...")
    collector.start()
    deadline = time.monotonic() + args.duration
    try:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            replay_queries(source, args.query)
            event = collector.next_event(timeout=min(config.interval, remaining))
            while event is not None:
                if isinstance(event, SnapshotEvent):
                    exporter.export_snapshot(event.snapshot)
                    if args.verbose:
                        snap = event.snapshot
                        print(f"{snap.timestamp.isoformat()} qps={snap.queries_per_second:.2f} "
                              f"total={snap.total_queries} avg={format_duration(snap.average_query_time)}")
                elif isinstance(event, CollectionErrorEvent):
                    print(f"Warning: collection failed: {event.error}", file=sys.stderr)
                event = collector.next_event(timeout=0)
    except KeyboardInterrupt:
        print("\nInterrupted, stopping collector...", file=sys.stderr)
    finally:
        collector.stop()
        source.close()

    print_summary(collector)

    if args.remote_write_url:
        headers = prepare_headers(args.remote_write_header)
        ok = send_metrics_remote_write(
            args.remote_write_url, headers, collector.get_history(), args.instance_label,
            source.get_type(), args.verbose, args.dry_run, args.debug_file
        )
        if not ok:
            sys.exit(1)


if __name__ == '__main__':
    main()
