"""Bounded history of traffic snapshots."""

from collections import deque
from typing import Deque, List

from .errors import ConfigurationError
from .models import TrafficSnapshot


class TrafficHistory:
    """Fixed-capacity, insertion-ordered buffer of snapshots.

    Once ``max_size`` snapshots are held, each ``add`` evicts the oldest one.
    Not thread-safe on its own; the collector guards it with its lock.
    """

    def __init__(self, max_size: int):
        if max_size < 1:
            raise ConfigurationError(f"history max_size must be >= 1, got {max_size}")
        self.max_size = max_size
        self._snapshots: Deque[TrafficSnapshot] = deque(maxlen=max_size)

    def add(self, snapshot: TrafficSnapshot) -> None:
        self._snapshots.append(snapshot)

    def last(self, n: int) -> List[TrafficSnapshot]:
        """Return the newest ``n`` snapshots, oldest first, as a new list."""
        if n <= 0:
            return []
        count = min(n, len(self._snapshots))
        return list(self._snapshots)[len(self._snapshots) - count:]

    def __len__(self) -> int:
        return len(self._snapshots)
