"""Collector configuration."""

from dataclasses import dataclass, replace

from .errors import ConfigurationError

# Defaults
DEFAULT_INTERVAL = 1.0  # seconds between samples
DEFAULT_HISTORY_SIZE = 60  # one minute of history at the default interval
DEFAULT_ROLLING_WINDOW = 100  # latency samples in the smoothed average
DEFAULT_SLOW_QUERY_THRESHOLD = 0.1  # seconds, start of the "slow" latency bucket
DEFAULT_EVENT_BUFFER = 10  # undelivered events kept for a slow subscriber
DEFAULT_PROBE_TIMEOUT = 2.0  # seconds a counter probe may take


@dataclass(frozen=True)
class CollectorConfig:
    """Settings for a ``Collector``.

    Attributes:
        interval: Seconds between sampling ticks.
        history_size: Number of snapshots kept in the history buffer.
        rolling_window: Number of latency samples averaged for ``average_query_time``.
        slow_query_threshold: Queries strictly longer than this (seconds) count as slow.
        event_buffer: Capacity of the subscriber event queue.
        probe_timeout: Upper bound (seconds) handed to the counter source probe.
    """
    interval: float = DEFAULT_INTERVAL
    history_size: int = DEFAULT_HISTORY_SIZE
    rolling_window: int = DEFAULT_ROLLING_WINDOW
    slow_query_threshold: float = DEFAULT_SLOW_QUERY_THRESHOLD
    event_buffer: int = DEFAULT_EVENT_BUFFER
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT

    def validate(self) -> 'CollectorConfig':
        """Raise ``ConfigurationError`` for the first invalid field, else return self."""
        validate_interval(self.interval)
        if self.history_size < 1:
            raise ConfigurationError(f"history_size must be >= 1, got {self.history_size}")
        if self.rolling_window < 1:
            raise ConfigurationError(f"rolling_window must be >= 1, got {self.rolling_window}")
        if self.slow_query_threshold < 0:
            raise ConfigurationError(f"slow_query_threshold must be >= 0, got {self.slow_query_threshold}")
        if self.event_buffer < 1:
            raise ConfigurationError(f"event_buffer must be >= 1, got {self.event_buffer}")
        if self.probe_timeout <= 0:
            raise ConfigurationError(f"probe_timeout must be > 0, got {self.probe_timeout}")
        return self

    def with_interval(self, interval: float) -> 'CollectorConfig':
        return replace(self, interval=interval)


def validate_interval(interval: float) -> float:
    """Return ``interval`` if it is a usable sampling interval."""
    if interval is None or interval <= 0:
        raise ConfigurationError(f"interval must be > 0 seconds, got {interval}")
    return interval
