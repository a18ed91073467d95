"""Counter sources: the data-store side of traffic collection.

A counter source identifies its backend, answers a bounded metrics probe and
can report every query it executes to a completion callback. The collector
only depends on the ``CounterSource`` protocol; the SQLite and PostgreSQL
sources here are the two backends the inspection tool connects to.
"""

import logging
import re
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Protocol, Sequence

from .errors import ProbeError
from .models import QueryMetrics, SourceCounters

logger = logging.getLogger(__name__)

QueryCallback = Callable[[QueryMetrics], None]

# Leading whitespace and SQL comments before the first keyword
_LEADING_NOISE_PATTERN = re.compile(r'^(?:\s+|--[^\n]*(?:\n|$)|/\*.*?\*/)+', re.DOTALL)
_FIRST_KEYWORD_PATTERN = re.compile(r'[A-Za-z]+')


def classify_statement(sql: str) -> str:
    """Return the upper-cased leading keyword of ``sql`` (``UNKNOWN`` if none)."""
    text = _LEADING_NOISE_PATTERN.sub('', sql or '')
    match = _FIRST_KEYWORD_PATTERN.match(text)
    if not match:
        return 'UNKNOWN'
    return match.group(0).upper()


class CounterSource(Protocol):
    """What the collector needs from a data-store adaptor."""

    def get_type(self) -> str:
        ...

    def probe(self, timeout: float) -> SourceCounters:
        """Gather backend counters, taking at most about ``timeout`` seconds."""
        ...


class BaseCounterSource(ABC):
    """Shared query-callback plumbing for the concrete sources."""

    source_type = 'unknown'

    def __init__(self):
        self._on_query: Optional[QueryCallback] = None

    def get_type(self) -> str:
        return self.source_type

    def set_query_callback(self, callback: Optional[QueryCallback]) -> None:
        """Register the function called with a ``QueryMetrics`` after every query."""
        self._on_query = callback

    def _report_query(self, metrics: QueryMetrics) -> None:
        if self._on_query is not None:
            self._on_query(metrics)

    @abstractmethod
    def probe(self, timeout: float) -> SourceCounters:
        """Gather backend counters, taking at most about ``timeout`` seconds."""


class SQLiteCounterSource(BaseCounterSource):
    """Counter source backed by a SQLite database file.

    SQLite has a single in-process connection and no statistics views, so the
    probe is a liveness check (``PRAGMA page_count`` and ``page_size``) and
    traffic counters come from queries run through ``execute``.
    """

    source_type = 'sqlite'

    def __init__(self, path: str, busy_timeout: float = 5.0):
        """Open the database.

        Args:
            path: Database file path (``:memory:`` for an in-memory database)
            busy_timeout: Seconds SQLite waits on a locked database before failing
        """
        super().__init__()
        self.path = path
        # The sampler thread probes while other threads run queries
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
            path, timeout=busy_timeout, check_same_thread=False
        )
        self._connections_opened = 1

    def execute(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        """Run a statement and report it to the query callback.

        Returns fetched rows for statements that produce them, otherwise an
        empty list. Database errors are reported to the callback and re-raised.
        """
        query_type = classify_statement(sql)
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        rows: List[tuple] = []
        rows_affected = 0
        error: Optional[Exception] = None
        try:
            with self._lock:
                conn = self._connection()
                cursor = conn.execute(sql, params)
                if cursor.description is not None:
                    rows = cursor.fetchall()
                    rows_affected = len(rows)
                else:
                    rows_affected = max(cursor.rowcount, 0)
                    conn.commit()
            return rows
        except sqlite3.Error as e:
            error = e
            raise
        finally:
            self._report_query(QueryMetrics(
                query_type=query_type,
                duration=time.perf_counter() - start,
                started_at=started_at,
                query=sql,
                rows_affected=rows_affected,
                was_error=error is not None,
                error_message=str(error) if error is not None else '',
            ))

    def probe(self, timeout: float) -> SourceCounters:
        if not self._lock.acquire(timeout=timeout):
            raise ProbeError(f"connection busy for more than {timeout}s", self.source_type)
        try:
            conn = self._connection()
            conn.execute('PRAGMA page_count').fetchone()
            conn.execute('PRAGMA page_size').fetchone()
        except sqlite3.Error as e:
            raise ProbeError(str(e), self.source_type) from e
        finally:
            self._lock.release()
        return SourceCounters(
            active_connections=1,
            total_connections=self._connections_opened,
        )

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError('Cannot operate on a closed database.')
        return self._conn


class PostgresCounterSource(BaseCounterSource):
    """Counter source reading PostgreSQL statistics views.

    Takes any DB-API 2.0 connection. Use a connection dedicated to probing:
    each probe runs in its own transaction and rolls it back afterwards.
    """

    source_type = 'postgres'

    PROBE_SQL = """
        SELECT
            (SELECT count(*) FROM pg_stat_activity
              WHERE datname = current_database() AND state = 'active'),
            d.numbackends,
            d.blks_read * current_setting('block_size')::bigint
        FROM pg_stat_database d
        WHERE d.datname = current_database()
    """

    def __init__(self, connection: Any):
        super().__init__()
        self._connection = connection

    def probe(self, timeout: float) -> SourceCounters:
        timeout_ms = max(1, int(timeout * 1000))
        cursor = None
        try:
            cursor = self._connection.cursor()
            cursor.execute(f"SET LOCAL statement_timeout = {timeout_ms}")
            cursor.execute(self.PROBE_SQL)
            row = cursor.fetchone()
        except Exception as e:
            raise ProbeError(str(e), self.source_type) from e
        finally:
            if cursor is not None:
                cursor.close()
            try:
                self._connection.rollback()
            except Exception as e:
                logger.debug("rollback after probe failed: %s", e)

        if row is None:
            raise ProbeError('current database missing from pg_stat_database', self.source_type)
        active, backends, bytes_read = row
        return SourceCounters(
            active_connections=int(active),
            total_connections=int(backends),
            bytes_read=int(bytes_read or 0),
        )
