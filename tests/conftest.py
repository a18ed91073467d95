import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from traffic_telemetry.collector import SnapshotEvent
from traffic_telemetry.errors import ProbeError
from traffic_telemetry.models import SourceCounters, TrafficSnapshot


class FakeSource:
    """In-memory counter source; probe results and failures are scripted."""

    def __init__(self, counters=None):
        self.counters = counters or SourceCounters(active_connections=2, total_connections=5,
                                                   bytes_read=1024, bytes_written=512)
        self.fail_next = 0
        self.probes = 0
        self.probe_delay = 0.0
        self._lock = threading.Lock()

    def get_type(self):
        return 'fake'

    def probe(self, timeout):
        with self._lock:
            self.probes += 1
            failing = self.fail_next > 0
            if failing:
                self.fail_next -= 1
        if self.probe_delay:
            time.sleep(min(self.probe_delay, timeout))
        if failing:
            raise ProbeError('counters unavailable', 'fake')
        return self.counters


@pytest.fixture
def fake_source():
    return FakeSource()


def wait_for_snapshot(collector, predicate, timeout=5.0):
    """Consume events until a snapshot matches ``predicate``; fail on timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        event = collector.next_event(timeout=0.05)
        if isinstance(event, SnapshotEvent) and predicate(event.snapshot):
            return event.snapshot
    pytest.fail('no matching snapshot before timeout')


def make_snapshot(index, **overrides):
    """Snapshot taken ``index`` seconds after a fixed start time."""
    start = datetime(2025, 1, 1, tzinfo=timezone.utc)
    fields = dict(timestamp=start + timedelta(seconds=index), total_queries=index * 10)
    fields.update(overrides)
    return TrafficSnapshot(**fields)
