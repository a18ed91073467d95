"""Background traffic collector.

A ``Collector`` owns one sampling thread. On every tick it probes its counter
source, folds the probe result together with the query counters recorded via
``record_query`` into a ``TrafficSnapshot``, appends it to the history and
publishes it to the event queue.

Lifecycle is single use::

    IDLE --start()--> RUNNING --stop()--> STOPPED

All mutable state is guarded by one lock, so ``record_query`` can be called
from any number of threads and the sampler always sees a consistent view.
The probe itself runs outside the lock.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union

from .aggregation import Duration, LatencyBuckets, RateCalculator, RollingAverage, calculate_stats, to_seconds
from .config import CollectorConfig, validate_interval
from .errors import CollectorStateError
from .history import TrafficHistory
from .models import QueryMetrics, SourceCounters, TrafficSnapshot, TrafficStats
from .sources import CounterSource

logger = logging.getLogger(__name__)


class CollectorState(str, Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    STOPPED = 'stopped'


@dataclass(frozen=True)
class SnapshotEvent:
    """A new snapshot is available."""
    snapshot: TrafficSnapshot


@dataclass(frozen=True)
class CollectionErrorEvent:
    """Gathering counters failed on one tick; sampling continues."""
    error: Exception
    timestamp: datetime


CollectorEvent = Union[SnapshotEvent, CollectionErrorEvent]


class Collector:
    """Periodically samples a counter source into a bounded snapshot history."""

    def __init__(self, source: CounterSource, interval: Optional[float] = None,
                 config: Optional[CollectorConfig] = None):
        """Create an idle collector.

        Args:
            source: Counter source to probe on every tick
            interval: Seconds between ticks; overrides ``config.interval`` when given
            config: Remaining settings (defaults to ``CollectorConfig()``)

        Raises:
            ConfigurationError: If any setting is invalid.
        """
        config = config or CollectorConfig()
        if interval is not None:
            config = config.with_interval(interval)
        self.config = config.validate()
        self.source = source

        self._lock = threading.Lock()
        self._state = CollectorState.IDLE
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._events: 'queue.Queue[CollectorEvent]' = queue.Queue(maxsize=self.config.event_buffer)

        # Guarded by _lock
        self._history = TrafficHistory(self.config.history_size)
        self._latency_average = RollingAverage(self.config.rolling_window)
        self._latency_buckets = LatencyBuckets()
        self._rate = RateCalculator()
        self._current = TrafficSnapshot()
        self._total_queries = 0
        self._statement_counts = {'SELECT': 0, 'INSERT': 0, 'UPDATE': 0, 'DELETE': 0}
        self._slow_queries = 0
        self._error_count = 0
        self._last_error = ''
        self._last_error_time: Optional[datetime] = None
        self._source_counters = SourceCounters(
            active_connections=0, total_connections=0, bytes_read=0, bytes_written=0,
        )

        # Sources that can report completed queries feed them straight in
        set_callback = getattr(source, 'set_query_callback', None)
        if callable(set_callback):
            set_callback(self.record_metrics)

    @property
    def state(self) -> CollectorState:
        return self._state

    @property
    def events(self) -> 'queue.Queue[CollectorEvent]':
        """Bounded queue of ``SnapshotEvent`` / ``CollectionErrorEvent``."""
        return self._events

    # ------------------------------------------------------------------ lifecycle

    def start(self, interval: Optional[float] = None) -> None:
        """Start the sampling thread.

        Raises:
            ConfigurationError: If ``interval`` is not positive.
            CollectorStateError: If the collector is already running or stopped.
        """
        if interval is not None:
            validate_interval(interval)
        with self._lock:
            if self._state is not CollectorState.IDLE:
                raise CollectorStateError(f"cannot start a {self._state.value} collector", self._state.value)
            if interval is not None:
                self.config = self.config.with_interval(interval)
            # Baseline so the first tick reports the rate since start
            self._rate.update(self._total_queries, time.monotonic())
            self._thread = threading.Thread(
                target=self._run,
                name=f"traffic-collector-{self.source.get_type()}",
                daemon=True,
            )
            try:
                self._thread.start()
            except RuntimeError:
                self._thread = None
                raise
            self._state = CollectorState.RUNNING
        logger.info("traffic collector started for %s (interval %.3fs)",
                    self.source.get_type(), self.config.interval)

    def stop(self) -> None:
        """Stop sampling and wait for the sampling thread to exit.

        Safe to call repeatedly; before ``start`` it does nothing.
        """
        with self._lock:
            if self._state is not CollectorState.RUNNING:
                return
            self._state = CollectorState.STOPPED
            thread = self._thread
        self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        logger.info("traffic collector stopped for %s", self.source.get_type())

    def __enter__(self) -> 'Collector':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ------------------------------------------------------------------ recording

    def record_query(self, statement_type: str, duration: Duration, err: Optional[Exception] = None) -> None:
        """Fold one completed query into the counters.

        Args:
            statement_type: SELECT/INSERT/UPDATE/DELETE (any case); other types
                only count toward the total
            duration: Query duration in seconds (or a timedelta)
            err: The error the query failed with, if any
        """
        self._record(statement_type, to_seconds(duration), str(err) if err is not None else None)

    def record_metrics(self, metrics: QueryMetrics) -> None:
        """Query-completion callback form of ``record_query``."""
        error = (metrics.error_message or 'query failed') if metrics.was_error else None
        self._record(metrics.query_type, metrics.duration, error)

    def _record(self, statement_type: str, seconds: float, error: Optional[str]) -> None:
        key = (statement_type or '').strip().upper()
        with self._lock:
            self._total_queries += 1
            if key in self._statement_counts:
                self._statement_counts[key] += 1
            self._latency_average.add(seconds)
            self._latency_buckets.add(seconds)
            if seconds > self.config.slow_query_threshold:
                self._slow_queries += 1
            if error is not None:
                self._error_count += 1
                self._last_error = error
                self._last_error_time = datetime.now(timezone.utc)

    # ------------------------------------------------------------------ accessors

    def get_metrics(self) -> TrafficSnapshot:
        """Most recent snapshot, or the zero value before the first tick."""
        with self._lock:
            return self._current

    def get_history(self, n: Optional[int] = None) -> List[TrafficSnapshot]:
        """Copy of the newest ``n`` snapshots (all of them when ``n`` is None)."""
        with self._lock:
            return self._history.last(self._history.max_size if n is None else n)

    def stats(self, n: Optional[int] = None) -> TrafficStats:
        return calculate_stats(self.get_history(n))

    def next_event(self, timeout: Optional[float] = None) -> Optional[CollectorEvent]:
        """Wait up to ``timeout`` seconds for the next event; None if none arrived."""
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    # ------------------------------------------------------------------ sampling

    def _run(self) -> None:
        interval = self.config.interval
        next_tick = time.monotonic() + interval
        while not self._stop_event.wait(max(0.0, next_tick - time.monotonic())):
            self._sample()
            next_tick += interval
            now = time.monotonic()
            if next_tick < now:
                # Fell behind (slow probe); skip the missed ticks
                missed = int((now - next_tick) // interval) + 1
                logger.debug("sampler behind schedule, skipping %d tick(s)", missed)
                next_tick += missed * interval

    def _sample(self) -> TrafficSnapshot:
        probe_error: Optional[Exception] = None
        counters: Optional[SourceCounters] = None
        try:
            counters = self.source.probe(self.config.probe_timeout)
        except Exception as e:
            probe_error = e
            logger.warning("counter probe failed for %s: %s", self.source.get_type(), e)

        now = datetime.now(timezone.utc)
        with self._lock:
            if counters is not None:
                self._merge_counters(counters)
            if probe_error is not None:
                self._error_count += 1
                self._last_error = str(probe_error)
                self._last_error_time = now
            snapshot = self._build_snapshot(now)
            self._history.add(snapshot)
            self._current = snapshot

        if probe_error is not None:
            self._publish(CollectionErrorEvent(error=probe_error, timestamp=now))
        self._publish(SnapshotEvent(snapshot=snapshot))
        return snapshot

    def _merge_counters(self, counters: SourceCounters) -> None:
        previous = self._source_counters
        self._source_counters = SourceCounters(
            active_connections=_first_known(counters.active_connections, previous.active_connections),
            total_connections=_first_known(counters.total_connections, previous.total_connections),
            bytes_read=_first_known(counters.bytes_read, previous.bytes_read),
            bytes_written=_first_known(counters.bytes_written, previous.bytes_written),
        )

    def _build_snapshot(self, now: datetime) -> TrafficSnapshot:
        counters = self._source_counters
        return TrafficSnapshot(
            timestamp=now,
            active_connections=counters.active_connections or 0,
            total_connections=counters.total_connections or 0,
            queries_per_second=self._rate.update(self._total_queries, time.monotonic()),
            total_queries=self._total_queries,
            average_query_time=self._latency_average.average(),
            select_count=self._statement_counts['SELECT'],
            insert_count=self._statement_counts['INSERT'],
            update_count=self._statement_counts['UPDATE'],
            delete_count=self._statement_counts['DELETE'],
            slow_queries=self._slow_queries,
            slow_query_threshold=self.config.slow_query_threshold,
            bytes_read=counters.bytes_read or 0,
            bytes_written=counters.bytes_written or 0,
            error_count=self._error_count,
            last_error=self._last_error,
            last_error_time=self._last_error_time,
            latency_buckets=self._latency_buckets.as_dict(),
        )

    def _publish(self, event: CollectorEvent) -> None:
        # Latest wins: drop the oldest undelivered event rather than block the sampler
        while True:
            try:
                self._events.put_nowait(event)
                return
            except queue.Full:
                try:
                    dropped = self._events.get_nowait()
                    logger.debug("event queue full, dropped %s", type(dropped).__name__)
                except queue.Empty:
                    pass


def _first_known(value: Optional[int], fallback: Optional[int]) -> Optional[int]:
    return fallback if value is None else value
