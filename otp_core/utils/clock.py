"""
Clock abstraction used for every TTL computation.

The store reads time only through a Clock so expiry can be simulated in tests
without sleeping. In production the clock is the database server's own, so
engine instances on hosts with skewed clocks still agree on expiry.
"""

import threading
import time
from typing import Callable, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

from ..exceptions import ErrorCode, RepositoryError

# Epoch milliseconds as computed by the database server
STORE_NOW_SQL = {
    "postgresql": "SELECT CAST(EXTRACT(EPOCH FROM clock_timestamp()) * 1000 AS BIGINT)",
    "sqlite": "SELECT CAST((julianday('now') - 2440587.5) * 86400000.0 AS INTEGER)",
}


class Clock(Protocol):
    """Source of the current time in epoch milliseconds."""

    def now_ms(self) -> int: ...


class SystemClock:
    """Wall clock of the local host."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000


class StoreClock:
    """
    Time as reported by the database holding the tokens.

    Repositories pass their open session so the reading happens inside the
    same transaction as the statement that uses it. Without a session a short
    one is opened from the factory.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self.session_factory = session_factory

    def now_ms(self, session: Optional[Session] = None) -> int:
        if session is not None:
            return self._read(session)
        if self.session_factory is None:
            raise RepositoryError(
                "StoreClock needs a session or a session factory",
                error_code=ErrorCode.CONFIGURATION_ERROR,
            )
        with self.session_factory() as own_session:
            return self._read(own_session)

    @staticmethod
    def _read(session: Session) -> int:
        dialect = session.get_bind().dialect.name
        statement = STORE_NOW_SQL.get(dialect)
        if statement is None:
            raise RepositoryError(
                f"No store clock query for dialect {dialect}",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                dialect=dialect,
            )
        return int(session.execute(text(statement)).scalar_one())


class FrozenClock:
    """
    Manually driven clock.

    Time stands still until advance() or set() is called. Safe to share
    between threads.
    """

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self._now_ms = start_ms
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            return self._now_ms

    def advance(self, seconds: float = 0, ms: int = 0) -> int:
        """Move the clock forward and return the new time."""
        with self._lock:
            self._now_ms += int(seconds * 1000) + ms
            return self._now_ms

    def set(self, now_ms: int) -> None:
        with self._lock:
            self._now_ms = now_ms
