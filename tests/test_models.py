from datetime import datetime, timezone

import pytest

from traffic_telemetry.models import QueryMetrics, TrafficSnapshot

from conftest import make_snapshot


def test_zero_value_snapshot():
    snap = TrafficSnapshot()
    assert snap.timestamp is None
    assert snap.total_queries == 0
    assert snap.latency_buckets == {}


def test_snapshot_to_dict_uses_iso_timestamps():
    failed_at = datetime(2025, 1, 1, 0, 0, 3, tzinfo=timezone.utc)
    data = make_snapshot(2, last_error='boom', last_error_time=failed_at).to_dict()
    assert data['timestamp'] == '2025-01-01T00:00:02+00:00'
    assert data['last_error_time'] == failed_at.isoformat()
    assert data['total_queries'] == 20
    assert TrafficSnapshot().to_dict()['timestamp'] is None


def test_query_is_slow_only_above_threshold():
    assert QueryMetrics('SELECT', 0.2).is_slow(0.1)
    assert not QueryMetrics('SELECT', 0.1).is_slow(0.1)


def test_snapshot_latency_buckets_are_read_only_copies():
    source = {'quick': 1}
    snap = make_snapshot(1, latency_buckets=source)
    source['quick'] = 50
    assert snap.latency_buckets == {'quick': 1}
    with pytest.raises(TypeError):
        snap.latency_buckets['slow'] = 2
    assert snap.to_dict()['latency_buckets'] == {'quick': 1}
