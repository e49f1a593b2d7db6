"""
tagsql: tag-addressed MySQL connection pools with a generic row decoder.
"""

from .core.config import (
    DbConfig,
    Settings,
    config_items,
    load_db_configs,
    parse_db_config,
    settings,
)
from .core.errors import (
    ConfigError,
    DecodeError,
    DestinationTypeError,
    ErrorTypeMismatch,
    NotFoundError,
    PoolClosedError,
    SqlDbError,
)
from .core.mysql_errors import error_code, error_info, error_message
from .core.pool import ConnectionPool, ExecResult, build_dsn
from .decode import Destination, Shape, column, fetch, many, materialize, one, resolve
from .registry import Registry, get_registry

__all__ = [
    "DbConfig",
    "Settings",
    "config_items",
    "load_db_configs",
    "parse_db_config",
    "settings",
    "ConfigError",
    "DecodeError",
    "DestinationTypeError",
    "ErrorTypeMismatch",
    "NotFoundError",
    "PoolClosedError",
    "SqlDbError",
    "error_code",
    "error_info",
    "error_message",
    "ConnectionPool",
    "ExecResult",
    "build_dsn",
    "Destination",
    "Shape",
    "column",
    "fetch",
    "many",
    "materialize",
    "one",
    "resolve",
    "Registry",
    "get_registry",
]
