"""
Tag -> connection pool registry.

Lookups read an immutable snapshot of the tag map without locking; registration
builds a new snapshot under a writer lock and swaps it in, so readers never
block on writers and unrelated tags never serialise each other.
"""

import logging
import os
import threading
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any, TypeVar

from pydantic import BaseModel

from .core.config import DbConfig, config_items, load_db_configs, parse_db_config, settings
from .core.errors import NotFoundError
from .core.pool import ConnectionPool, Dialer, ExecResult, mask_dsn
from .decode import fetch, many, one

_log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class Registry:
    """Named connection pools addressed by tag."""

    def __init__(self) -> None:
        self._handles: Mapping[str, ConnectionPool] = MappingProxyType({})
        self._write_lock = threading.Lock()

    def __enter__(self) -> "Registry":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.teardown()

    def init(
        self,
        configs: Iterable[DbConfig] | Any,
        *,
        dialer: Dialer | None = None,
        atomic: bool = False,
    ) -> None:
        """
        Open a pool per config and register it under config.tag.

        - configs: DbConfig objects, or anything load_db_configs() accepts.
        - dialer: transport override used by every pool opened by this call.
        - atomic: on failure, close and unregister the pools this call opened.
          By default they stay registered and usable.
        Entries are validated one at a time, so init stops at the first config
        that fails (ConfigError for bad configs) with the earlier ones registered.
        """
        if isinstance(configs, (str, os.PathLike, Mapping)):
            items = config_items(configs)
        else:
            items = list(configs)

        opened: list[ConnectionPool] = []
        try:
            for item in items:
                cfg = parse_db_config(item)
                pool = ConnectionPool(cfg, dialer=dialer)
                _log.info("sqldb.Init tag:%s dsn: %s", cfg.tag, mask_dsn(pool.dsn))
                self._register(pool)
                opened.append(pool)
        except Exception:
            if atomic and opened:
                _log.warning(
                    "sqldb.Init failed; rolling back tags %s",
                    [p.tag for p in opened],
                )
                self._unregister(opened)
            raise

    def query(self, tag: str, destination: Any, sql: str, *args: Any) -> Any:
        """
        Run *sql* on the pool for *tag* and decode into *destination*
        (built with decode.one / decode.many). Returns the destination.
        """
        pool = self._lookup(tag)
        with pool.connection() as conn:
            return fetch(conn, destination, sql, *args)

    def exec(self, tag: str, sql: str, *args: Any) -> ExecResult:
        """Run a statement on the pool for *tag* without decoding rows."""
        return self._lookup(tag).execute(sql, *args)

    def fetch_one(self, tag: str, model: type[M], sql: str, *args: Any) -> M | None:
        """First row as a *model*, or None when the query returns no rows."""
        destination = one(model.model_construct())
        destination.fresh = True
        self.query(tag, destination, sql, *args)
        return destination.record if destination.count else None

    def fetch_all(self, tag: str, model: type[M], sql: str, *args: Any) -> list[M]:
        """All rows as *model* records, in cursor order."""
        return list(self.query(tag, many(model), sql, *args).rows)

    def handle(self, tag: str) -> ConnectionPool | None:
        """Raw pool for *tag*, or None when the tag is unknown."""
        return self._handles.get(tag)

    def ping(self, tag: str) -> bool:
        return self._lookup(tag).ping()

    def tags(self) -> tuple[str, ...]:
        return tuple(self._handles)

    def stats(self) -> dict[str, dict[str, Any]]:
        """Per-tag pool statistics for monitoring."""
        return {tag: pool.stats() for tag, pool in self._handles.items()}

    def teardown(self) -> None:
        """Close every registered pool (best effort) and empty the registry."""
        with self._write_lock:
            handles = self._handles
            self._handles = MappingProxyType({})
        for tag, pool in handles.items():
            try:
                pool.close()
            except Exception:
                _log.warning("sqldb.Destroy tag:%s close failed", tag, exc_info=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lookup(self, tag: str) -> ConnectionPool:
        pool = self._handles.get(tag)
        if pool is None:
            raise NotFoundError(tag)
        return pool

    def _register(self, pool: ConnectionPool) -> None:
        with self._write_lock:
            handles = dict(self._handles)
            previous = handles.get(pool.tag)
            handles[pool.tag] = pool
            self._handles = MappingProxyType(handles)
        if previous is not None and previous is not pool:
            _log.warning("sqldb.Init tag:%s registered twice; closing previous pool", pool.tag)
            previous.close()

    def _unregister(self, pools: list[ConnectionPool]) -> None:
        with self._write_lock:
            handles = dict(self._handles)
            for pool in pools:
                if handles.get(pool.tag) is pool:
                    del handles[pool.tag]
            self._handles = MappingProxyType(handles)
        for pool in pools:
            pool.close()


_registry: Registry | None = None
_registry_lock = threading.Lock()


def get_registry() -> Registry:
    """
    Return the process-wide Registry (thread-safe double-checked locking).

    When SQLDB_CONFIG_FILE is set, the registry is initialised from it on
    first use.
    """
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                registry = Registry()
                if settings.SQLDB_CONFIG_FILE:
                    registry.init(load_db_configs(settings.SQLDB_CONFIG_FILE))
                _registry = registry
    return _registry
