import threading
import time
from datetime import timedelta

import pytest

from traffic_telemetry.collector import CollectionErrorEvent, Collector, CollectorState, SnapshotEvent
from traffic_telemetry.config import CollectorConfig
from traffic_telemetry.errors import CollectorStateError, ConfigurationError
from traffic_telemetry.models import SourceCounters, TrafficSnapshot

from conftest import wait_for_snapshot

INTERVAL = 0.02


def _sampler_threads():
    return [t for t in threading.enumerate() if t.name.startswith('traffic-collector-')]


def test_accessors_before_first_tick(fake_source):
    collector = Collector(fake_source, INTERVAL)
    assert collector.state is CollectorState.IDLE
    assert collector.get_metrics() == TrafficSnapshot()
    assert collector.get_history(10) == []
    assert collector.stats().total_queries == 0


def test_lifecycle_is_single_use(fake_source):
    collector = Collector(fake_source, INTERVAL)
    collector.start()
    try:
        assert collector.state is CollectorState.RUNNING
        with pytest.raises(CollectorStateError):
            collector.start()
        assert len([t for t in _sampler_threads() if t.is_alive()]) == 1
    finally:
        collector.stop()
    assert collector.state is CollectorState.STOPPED
    with pytest.raises(CollectorStateError):
        collector.start()
    collector.stop()
    assert collector.state is CollectorState.STOPPED


def test_stop_before_start_is_a_no_op(fake_source):
    collector = Collector(fake_source, INTERVAL)
    collector.stop()
    collector.stop()
    assert collector.state is CollectorState.IDLE
    collector.start()
    try:
        wait_for_snapshot(collector, lambda s: True)
    finally:
        collector.stop()


@pytest.mark.parametrize('interval', [0, -1.0])
def test_invalid_interval_at_construction(fake_source, interval):
    with pytest.raises(ConfigurationError):
        Collector(fake_source, interval)


def test_invalid_interval_at_start_leaves_collector_idle(fake_source):
    collector = Collector(fake_source, INTERVAL)
    with pytest.raises(ConfigurationError):
        collector.start(interval=0)
    assert collector.state is CollectorState.IDLE
    assert not collector.get_history()


def test_invalid_config_fails_fast(fake_source):
    with pytest.raises(ConfigurationError):
        Collector(fake_source, INTERVAL, config=CollectorConfig(history_size=0))
    with pytest.raises(ConfigurationError):
        Collector(fake_source, INTERVAL, config=CollectorConfig(event_buffer=0))


def test_snapshot_combines_queries_and_source_counters(fake_source):
    collector = Collector(fake_source, INTERVAL, config=CollectorConfig(slow_query_threshold=0.1))
    collector.record_query('SELECT', 0.005)
    collector.record_query('select', timedelta(milliseconds=50))
    collector.record_query('Insert', 0.5)
    collector.record_query('UPDATE', 2.0)
    collector.record_query('DELETE', 0.001, RuntimeError('constraint failed'))
    collector.record_query('CREATE', 0.002)

    with collector:
        snap = wait_for_snapshot(collector, lambda s: s.total_queries == 6)

    assert snap.select_count == 2
    assert snap.insert_count == 1
    assert snap.update_count == 1
    assert snap.delete_count == 1
    assert snap.slow_queries == 2
    assert snap.slow_query_threshold == 0.1
    assert snap.error_count == 1
    assert snap.last_error == 'constraint failed'
    assert snap.last_error_time is not None
    assert snap.latency_buckets == {'quick': 3, 'medium': 1, 'slow': 1, 'vslow': 1}
    assert snap.average_query_time == pytest.approx((0.005 + 0.05 + 0.5 + 2.0 + 0.001 + 0.002) / 6)
    assert snap.active_connections == 2
    assert snap.total_connections == 5
    assert snap.bytes_read == 1024
    assert snap.bytes_written == 512
    assert snap.timestamp is not None
    assert collector.get_metrics().total_queries == 6


def test_concurrent_record_query_loses_no_updates(fake_source):
    writers = 8
    calls_per_writer = 250
    collector = Collector(fake_source, INTERVAL)
    start_barrier = threading.Barrier(writers)

    def writer():
        start_barrier.wait()
        for i in range(calls_per_writer):
            collector.record_query('SELECT' if i % 2 else 'INSERT', 0.001)

    with collector:
        threads = [threading.Thread(target=writer) for _ in range(writers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        snap = wait_for_snapshot(collector, lambda s: s.total_queries == writers * calls_per_writer)

    assert snap.select_count + snap.insert_count == writers * calls_per_writer
    assert sum(snap.latency_buckets.values()) == writers * calls_per_writer


def test_probe_failure_is_recorded_and_sampling_continues(fake_source):
    fake_source.fail_next = 1
    collector = Collector(fake_source, INTERVAL)
    seen_error = False
    with collector:
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and not seen_error:
            seen_error = isinstance(collector.next_event(timeout=0.05), CollectionErrorEvent)
        probes_after_error = fake_source.probes
        wait_for_snapshot(collector, lambda s: fake_source.probes > probes_after_error)

    assert seen_error
    snap = collector.get_metrics()
    assert snap.error_count == 1
    assert 'counters unavailable' in snap.last_error
    # Counters from later successful probes still arrive
    assert snap.active_connections == 2


def test_unknown_source_counters_keep_previous_values(fake_source):
    collector = Collector(fake_source, INTERVAL)
    with collector:
        wait_for_snapshot(collector, lambda s: s.bytes_read == 1024)
        fake_source.counters = SourceCounters(active_connections=7)
        snap = wait_for_snapshot(collector, lambda s: s.active_connections == 7)
    assert snap.bytes_read == 1024
    assert snap.total_connections == 5


def test_no_snapshots_after_stop(fake_source):
    collector = Collector(fake_source, INTERVAL)
    collector.start()
    wait_for_snapshot(collector, lambda s: True)
    collector.stop()

    produced = len(collector.get_history())
    time.sleep(INTERVAL * 5)
    assert len(collector.get_history()) == produced
    assert not [t for t in _sampler_threads() if t.is_alive()]


def test_event_queue_keeps_newest_under_backpressure(fake_source):
    collector = Collector(fake_source, INTERVAL, config=CollectorConfig(event_buffer=2))
    collector.start()
    # Nobody consumes events while several ticks happen
    deadline = time.monotonic() + 5
    while len(collector.get_history()) < 6 and time.monotonic() < deadline:
        time.sleep(INTERVAL)
    collector.stop()

    events = []
    while True:
        event = collector.next_event(timeout=0)
        if event is None:
            break
        events.append(event)
    assert len(events) == 2
    assert all(isinstance(e, SnapshotEvent) for e in events)
    assert [e.snapshot for e in events] == collector.get_history(2)


def test_history_is_bounded_by_config(fake_source):
    collector = Collector(fake_source, INTERVAL, config=CollectorConfig(history_size=3))
    with collector:
        deadline = time.monotonic() + 5
        while len(collector.get_history()) < 3 and time.monotonic() < deadline:
            time.sleep(INTERVAL)
        wait_for_snapshot(collector, lambda s: True)
        wait_for_snapshot(collector, lambda s: True)
    history = collector.get_history()
    assert len(history) == 3
    assert [s.timestamp for s in history] == sorted(s.timestamp for s in history)


def test_queries_per_second_reflects_recorded_traffic(fake_source):
    collector = Collector(fake_source, 0.1)
    with collector:
        for _ in range(50):
            collector.record_query('SELECT', 0.001)
        snap = wait_for_snapshot(collector, lambda s: s.total_queries == 50)
    assert snap.queries_per_second > 0


def test_snapshots_handed_out_cannot_change_history(fake_source):
    collector = Collector(fake_source, INTERVAL)
    collector.record_query('SELECT', 0.001)
    with collector:
        snap = wait_for_snapshot(collector, lambda s: s.total_queries == 1)

    with pytest.raises(TypeError):
        collector.get_metrics().latency_buckets['quick'] = 999
    with pytest.raises(TypeError):
        snap.latency_buckets['quick'] = 999
    assert collector.get_history()[-1].latency_buckets['quick'] == 1
