"""Utility functions for traffic telemetry output."""

import sys
from typing import Dict, List, Optional

from .models import TrafficSnapshot

_BYTE_UNITS = (
    ('GB', 1024 ** 3),
    ('MB', 1024 ** 2),
    ('KB', 1024),
)


def format_bound_for_label(value: float) -> str:
    """Format a float value as a string for a Prometheus ``le`` label.

    Always uses decimal notation (not scientific) and drops trailing zeros.
    """
    return f"{value:.9f}".rstrip('0').rstrip('.')


def _trim_zeros(text: str) -> str:
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text


def format_bytes(num_bytes: int) -> str:
    """Human-readable byte count, e.g. ``1.5 KB``."""
    for unit, size in _BYTE_UNITS:
        if num_bytes >= size:
            return f"{_trim_zeros(f'{num_bytes / size:.1f}')} {unit}"
    return f"{num_bytes} B"


def format_duration(seconds: float) -> str:
    """Human-readable duration, e.g. ``2.5ms`` or ``1.25s``."""
    if seconds >= 1:
        return f"{_trim_zeros(f'{seconds:.2f}')}s"
    if seconds >= 1e-3:
        return f"{_trim_zeros(f'{seconds * 1e3:.2f}')}ms"
    if seconds >= 1e-6:
        return f"{_trim_zeros(f'{seconds * 1e6:.2f}')}µs"
    return f"{seconds * 1e9:.0f}ns"


def prepare_headers(remote_write_headers: Optional[List[str]]) -> Dict[str, str]:
    """Prepare headers dictionary from command-line arguments."""
    headers = {}
    if remote_write_headers:
        for header in remote_write_headers:
            if '=' in header:
                key, value = header.split('=', 1)
                headers[key] = value
    return headers


def send_metrics_remote_write(remote_write_url: str, headers: Dict[str, str],
                              snapshots: List[TrafficSnapshot], instance_label: str,
                              source_type: str, verbose: bool = False, dry_run: bool = False,
                              debug_file: Optional[str] = None) -> bool:
    """Send snapshot history via remote write endpoint.

    Args:
        remote_write_url: URL of the Prometheus remote write endpoint
        headers: HTTP headers to include in the request
        snapshots: Snapshots to send, oldest first
        instance_label: Value for the instance label added to all metrics
        source_type: Data-store type reported in the traffic_info metric
        verbose: Print verbose output for each metric
        dry_run: If True, process metrics but skip sending to endpoint
        debug_file: Optional path to save uncompressed payload data before compression

    Returns:
        True if the metrics were processed (and sent unless dry_run)
    """
    # Import here to avoid circular dependency
    from .remote_write import RemoteWriteClient

    if dry_run:
        print(f"\nDry-run mode: Processing metrics (not sending to {remote_write_url})...")
    else:
        print(f"\nSending metrics to {remote_write_url}...")

    client = RemoteWriteClient(remote_write_url, headers, instance_label, verbose)

    if client.send_snapshots(snapshots, source_type=source_type, dry_run=dry_run, debug_file=debug_file):
        if dry_run:
            print(f"Dry-run completed: Processed metrics for {len(snapshots)} snapshot(s)")
        else:
            print(f"Successfully sent metrics for {len(snapshots)} snapshot(s)")
        return True
    print("Failed to process/send metrics", file=sys.stderr)
    return False
