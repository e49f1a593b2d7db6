"""
Connection pools for tagged MySQL backends.

pymysql does the wire work; DbConfig (type, ip, port, ...) is enough to open a pool.
"""

from .connect import Dialer, bind_args, connect, cursor_columns, execute
from .dsn import build_dsn, connect_kwargs, mask_dsn
from .health import health_check
from .manager import ConnectionPool, ExecResult

__all__ = [
    "Dialer",
    "bind_args",
    "connect",
    "cursor_columns",
    "execute",
    "build_dsn",
    "connect_kwargs",
    "mask_dsn",
    "health_check",
    "ConnectionPool",
    "ExecResult",
]
