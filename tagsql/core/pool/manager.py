"""
Connection pool for one tag.

A ConnectionPool is the handle the registry stores per tag: it opens pymysql
connections lazily, keeps at most max_idle_conns of them idle, bounds the
number open at once by max_open_conns (when > 0), and evicts connections older
than the fixed max lifetime. Checkout pings connections that sat idle too long.
"""

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, NamedTuple

import pymysql

from ..config import DbConfig, settings
from ..errors import PoolClosedError
from .connect import Dialer, bind_args, connect, execute
from .dsn import build_dsn, connect_kwargs
from .health import health_check

_log = logging.getLogger(__name__)

# Errors after which a connection is not trusted back into the pool.
_BROKEN_CONN_ERRORS = (pymysql.err.OperationalError, pymysql.err.InterfaceError)


class _PoolEntry(NamedTuple):
    conn: Any
    created_at: float  # time.monotonic() when the connection was opened
    last_used: float   # time.monotonic() when last returned to pool


class ExecResult(NamedTuple):
    """Outcome of a statement run through exec()."""

    rows_affected: int
    last_insert_id: int


class ConnectionPool:
    """Pooled connections for a single DbConfig."""

    def __init__(
        self,
        config: DbConfig,
        *,
        dialer: Dialer | None = None,
        max_lifetime: float | None = None,
    ) -> None:
        self.config = config
        self.tag = config.tag
        self.dsn = build_dsn(config)
        self._kwargs = connect_kwargs(config)
        self._dialer = dialer
        self._max_lifetime = (
            max_lifetime if max_lifetime is not None else settings.SQLDB_CONN_MAX_LIFETIME_SEC
        )
        self._max_idle = max(config.max_idle_conns, 0)
        self._max_open = config.max_open_conns if config.max_open_conns > 0 else 0
        self._slots = (
            threading.BoundedSemaphore(self._max_open) if self._max_open else None
        )
        self._idle: list[_PoolEntry] = []
        # id(conn) -> created_at for connections handed out
        self._in_use: dict[int, float] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def get_connection(self) -> Any:
        """Check out a healthy connection (idle or freshly opened)."""
        if self._closed:
            raise PoolClosedError(self.tag)
        if self._slots is not None:
            self._slots.acquire()
        try:
            conn, created_at = self._checkout()
        except BaseException:
            if self._slots is not None:
                self._slots.release()
            raise
        with self._lock:
            self._in_use[id(conn)] = created_at
        return conn

    def release(self, conn: Any, *, discard: bool = False) -> None:
        """Return a checked-out connection; it is closed instead of kept when
        discarded, expired, the pool is closed, or max_idle_conns is reached."""
        with self._lock:
            created_at = self._in_use.pop(id(conn), None)
        try:
            if created_at is None:
                self._close_quiet(conn)
                return
            keep = not discard and not self._expired(created_at)
            if keep:
                try:
                    conn.rollback()
                except Exception:
                    keep = False
            if keep:
                with self._lock:
                    if not self._closed and len(self._idle) < self._max_idle:
                        self._idle.append(
                            _PoolEntry(conn=conn, created_at=created_at, last_used=time.monotonic())
                        )
                        return
            self._close_quiet(conn)
        finally:
            if created_at is not None and self._slots is not None:
                self._slots.release()

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Check out a connection for the duration of the block."""
        conn = self.get_connection()
        discard = False
        try:
            yield conn
        except _BROKEN_CONN_ERRORS:
            discard = True
            raise
        finally:
            self.release(conn, discard=discard)

    def execute(self, sql: str, *args: Any) -> ExecResult:
        """Run a statement without decoding rows."""
        with self.connection() as conn:
            cur = execute(conn, sql, bind_args(args))
            try:
                return ExecResult(
                    rows_affected=cur.rowcount if cur.rowcount is not None else 0,
                    last_insert_id=cur.lastrowid or 0,
                )
            finally:
                cur.close()

    def ping(self) -> bool:
        """Check out a connection and run SELECT 1 on it."""
        try:
            conn = self.get_connection()
        except (PoolClosedError, pymysql.err.MySQLError, OSError):
            return False
        ok = health_check(conn)
        self.release(conn, discard=not ok)
        return ok

    def close(self) -> None:
        """Close idle connections and refuse further checkouts. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            entries, self._idle = self._idle, []
        for e in entries:
            self._close_quiet(e.conn)

    def stats(self) -> dict[str, Any]:
        """Return pool statistics for monitoring."""
        with self._lock:
            idle = len(self._idle)
            in_use = len(self._in_use)
            return {
                "tag": self.tag,
                "open": idle + in_use,
                "idle": idle,
                "in_use": in_use,
                "max_open": self._max_open,
                "max_idle": self._max_idle,
                "closed": self._closed,
            }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _checkout(self) -> tuple[Any, float]:
        while True:
            entry = self._pop()
            if entry is None:
                break
            if self._expired(entry.created_at):
                _log.debug("sqldb tag:%s dropping expired connection", self.tag)
                self._close_quiet(entry.conn)
                continue
            idle_sec = time.monotonic() - entry.last_used
            if idle_sec > settings.SQLDB_PING_IDLE_THRESHOLD_SEC and not health_check(entry.conn):
                _log.debug("sqldb tag:%s dropping dead connection", self.tag)
                self._close_quiet(entry.conn)
                continue
            return entry.conn, entry.created_at

        conn = connect(self._kwargs, dialer=self._dialer)
        return conn, time.monotonic()

    def _pop(self) -> _PoolEntry | None:
        with self._lock:
            if self._closed:
                raise PoolClosedError(self.tag)
            if self._idle:
                return self._idle.pop()
        return None

    def _expired(self, created_at: float) -> bool:
        return (time.monotonic() - created_at) > self._max_lifetime

    @staticmethod
    def _close_quiet(conn: Any) -> None:
        try:
            conn.close()
        except Exception:
            pass
