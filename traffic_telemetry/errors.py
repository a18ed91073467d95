"""Exceptions raised by the telemetry engine.

Sampling failures never show up here as raised exceptions for callers of
``Collector.record_query`` or ``Collector.start``; they are recorded into the
snapshot error fields instead. What is raised synchronously:

    - ConfigurationError: invalid interval, capacity or bucket count
    - CollectorStateError: lifecycle misuse (starting twice, restarting)
    - ProbeError: a counter source failed to gather its counters
"""


class TelemetryError(Exception):
    """Base class for all telemetry errors."""


class ConfigurationError(TelemetryError, ValueError):
    """Raised when a component is constructed with invalid parameters."""


class CollectorStateError(TelemetryError, RuntimeError):
    """Raised when a collector is used in a state that does not allow it."""

    def __init__(self, message: str, state: str):
        super().__init__(message)
        self.state = state


class ProbeError(TelemetryError):
    """Raised by counter sources when a metrics probe fails."""

    def __init__(self, message: str, source_type: str):
        super().__init__(f"{source_type}: {message}")
        self.source_type = source_type
