"""
DB connection helpers for tag pools.

Uses pymysql. A dialer, when given, supplies the already-connected socket for
every new connection (e.g. to tunnel through a proxy); it is scoped to the pool
that carries it, not registered globally.
"""

import socket
from collections.abc import Callable
from typing import Any

import pymysql

Dialer = Callable[[str], socket.socket]


def connect(kwargs: dict[str, Any], *, dialer: Dialer | None = None) -> Any:
    """
    Open a pymysql connection from connect_kwargs().

    - dialer: called with "host:port"; the returned socket is handed to the
      driver instead of letting it dial TCP itself.
    """
    if dialer is None:
        return pymysql.connect(**kwargs)

    conn = pymysql.connect(defer_connect=True, **kwargs)
    sock = dialer(f"{kwargs.get('host')}:{kwargs.get('port')}")
    try:
        conn.connect(sock=sock)
    except Exception:
        try:
            sock.close()
        except OSError:
            pass
        raise
    return conn


def bind_args(args: tuple) -> tuple | dict | None:
    """Turn *args of a query call into driver parameters: a lone dict binds
    %(name)s placeholders, anything else binds positionally."""
    if not args:
        return None
    if len(args) == 1 and isinstance(args[0], dict):
        return args[0]
    return tuple(args)


def execute(conn: Any, sql: str, args: tuple | list | dict | None = None) -> Any:
    """
    Execute SQL and return the open cursor. Caller closes it.

    Placeholders are the driver's (%s / %(name)s). The cursor is closed here
    only if execute itself fails.
    """
    cur = conn.cursor()
    try:
        if args:
            cur.execute(sql, args)
        else:
            cur.execute(sql)
    except Exception:
        try:
            cur.close()
        except Exception:
            pass
        raise
    return cur


def cursor_columns(cursor: Any) -> list[str]:
    """Result column names in cursor order; empty for statements without rows."""
    desc = cursor.description
    if not desc:
        return []
    return [d[0] for d in desc]
