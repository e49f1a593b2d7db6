"""
Runtime settings and per-tag connection configs.

Settings are read from the environment (and an optional .env file) via
pydantic-settings. Connection configs are supplied by the embedding
application, usually as the JSON document:

    {
        "sqldb": [
            {
                "type": "mysql",
                "tag": "t1",
                "dbname": "db0",
                "ip": "1.1.1.1",
                "port": 1234,
                "username": "yy",
                "password": "123456",
                "timeout": 2000,
                "max_open_conns": 10,
                "max_idle_conns": 5
            }
        ]
    }
"""

import json
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # Fixed max lifetime of a pooled connection, regardless of per-tag config.
    SQLDB_CONN_MAX_LIFETIME_SEC: float = 300.0
    SQLDB_DEFAULT_CHARSET: str = "utf8mb4"
    # Used when a config's timeout is negative.
    SQLDB_DEFAULT_TIMEOUT_SEC: int = 5
    SQLDB_TIMEZONE: str = "Asia/Shanghai"
    # Idle connections older than this are pinged before reuse.
    SQLDB_PING_IDLE_THRESHOLD_SEC: float = 30.0
    # When set, get_registry() initialises the default registry from this file.
    SQLDB_CONFIG_FILE: str | None = None


settings = Settings()


class DbConfig(BaseModel):
    """One tag's connection config. JSON keys follow the wrapper document format."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    db_type: str = Field(alias="type")
    tag: str = Field(min_length=1)
    db_name: str = Field(default="", alias="dbname")
    host: str = Field(default="", alias="ip")
    port: int = Field(default=3306, ge=0, le=65535)
    username: str = ""
    password: str = ""
    charset: str = ""
    timeout: int = Field(
        default=0,
        description="Dial timeout in milliseconds; negative selects the default.",
    )
    max_open_conns: int = Field(default=0, description="Applied only when > 0.")
    max_idle_conns: int = Field(default=0, description="Always applied, even when 0.")


def _document(source: Any) -> Any:
    if not isinstance(source, (str, os.PathLike)):
        return source
    text = os.fspath(source)
    if not text.lstrip().startswith(("{", "[")):
        try:
            text = Path(source).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read sqldb config file {source}: {e}") from e
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid sqldb config JSON: {e}") from e


def config_items(source: Any) -> list[Any]:
    """
    Split a config source into its per-tag entries, without validating them.

    - Path or str naming a file: read as JSON.
    - str starting with '{' or '[': parsed as JSON.
    - Mapping: either the {"sqldb": [...]} wrapper or a single config.
    - Sequence of mappings/DbConfig: one entry per item.
    Raises ConfigError on unreadable input or an unsupported shape.
    """
    source = _document(source)
    if isinstance(source, (DbConfig, Mapping)):
        if isinstance(source, Mapping) and "sqldb" in source:
            source = source["sqldb"] or []
        else:
            return [source]
    if isinstance(source, Sequence) and not isinstance(source, (str, bytes, bytearray)):
        return list(source)
    raise ConfigError(f"Unsupported sqldb config source: {type(source).__name__}")


def parse_db_config(item: Any) -> DbConfig:
    """Validate one config entry. Raises ConfigError when it is malformed."""
    if isinstance(item, DbConfig):
        return item
    try:
        return DbConfig.model_validate(item)
    except ValidationError as e:
        raise ConfigError(f"Invalid sqldb config: {e}") from e


def load_db_configs(source: Any) -> list[DbConfig]:
    """Parse every connection config in *source* (see config_items)."""
    return [parse_db_config(item) for item in config_items(source)]
