"""
Connection-string assembly for a DbConfig.

build_dsn() renders the go-sql-driver style DSN that identifies a tag in logs;
connect_kwargs() renders the equivalent PyMySQL keyword arguments that are
actually used to open connections.
"""

import re
from datetime import datetime
from functools import partial
from typing import Any
from urllib.parse import quote_plus
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pymysql import converters
from pymysql.constants import FIELD_TYPE

from ..config import DbConfig, settings
from ..errors import ConfigError

SUPPORTED_DB_TYPE = "mysql"

_DSN_FORMAT = "{user}:{password}@({host}:{port})/{db}?{params}"
_PASSWORD_RE = re.compile(r"^([^:@]*):[^@]*@")


def _check_type(cfg: DbConfig) -> None:
    if cfg.db_type != SUPPORTED_DB_TYPE:
        raise ConfigError(f"expect db type [{SUPPORTED_DB_TYPE}], got [{cfg.db_type}]")


def _charset(cfg: DbConfig) -> str:
    return cfg.charset or settings.SQLDB_DEFAULT_CHARSET


def build_dsn(cfg: DbConfig) -> str:
    """Return the DSN for *cfg*; raises ConfigError for an unsupported db type."""
    _check_type(cfg)
    params = [f"charset={_charset(cfg)}"]
    if cfg.timeout < 0:
        params.append(f"timeout={settings.SQLDB_DEFAULT_TIMEOUT_SEC}s")
    else:
        params.append(f"timeout={cfg.timeout}ms")
    params.append(f"loc={quote_plus(settings.SQLDB_TIMEZONE)}")
    params.append("parseTime=true")
    params.append("interpolateParams=true")
    return _DSN_FORMAT.format(
        user=cfg.username,
        password=cfg.password,
        host=cfg.host,
        port=cfg.port,
        db=cfg.db_name,
        params="&".join(params),
    )


def mask_dsn(dsn: str) -> str:
    """Hide the password part of a DSN for logging."""
    return _PASSWORD_RE.sub(r"\1:***@", dsn, count=1)


def _localize(tz: ZoneInfo, decode: Any, value: Any) -> Any:
    parsed = decode(value)
    # Zero dates come back as the raw string.
    if isinstance(parsed, datetime) and parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed


def _conversions(tz_name: str) -> dict[Any, Any]:
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown timezone {tz_name!r}: {e}") from e
    conv = dict(converters.conversions)
    conv[FIELD_TYPE.DATETIME] = partial(_localize, tz, converters.convert_datetime)
    conv[FIELD_TYPE.TIMESTAMP] = partial(_localize, tz, converters.convert_datetime)
    return conv


def connect_kwargs(cfg: DbConfig) -> dict[str, Any]:
    """
    PyMySQL connect() kwargs equivalent to build_dsn(cfg).

    - timeout < 0: default timeout; 0: no dial timeout; otherwise milliseconds.
    - DATETIME/TIMESTAMP values are returned aware, in SQLDB_TIMEZONE.
    - autocommit is on: each statement commits, as with a plain pooled handle.
    """
    _check_type(cfg)
    if cfg.timeout < 0:
        connect_timeout: float | None = float(settings.SQLDB_DEFAULT_TIMEOUT_SEC)
    elif cfg.timeout == 0:
        connect_timeout = None
    else:
        connect_timeout = cfg.timeout / 1000
    return {
        "host": cfg.host,
        "port": cfg.port,
        "user": cfg.username,
        "password": cfg.password,
        "database": cfg.db_name or None,
        "charset": _charset(cfg),
        "connect_timeout": connect_timeout,
        "autocommit": True,
        "conv": _conversions(settings.SQLDB_TIMEZONE),
    }
