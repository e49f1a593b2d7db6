"""
Error taxonomy for tag-addressed SQL access.

Driver errors (pymysql.err.*) are never wrapped: they propagate as raised by
the connection layer. Everything raised by tagsql itself derives from SqlDbError.
"""


class SqlDbError(Exception):
    """Base class for errors raised by tagsql."""


class ConfigError(SqlDbError, ValueError):
    """Raised for an unsupported backend type or a malformed connection config."""


class NotFoundError(SqlDbError, LookupError):
    """Raised when no connection is registered under the requested tag."""

    def __init__(self, tag: str) -> None:
        super().__init__(f"Cannot find db with tag[{tag}]")
        self.tag = tag


class DestinationTypeError(SqlDbError, TypeError):
    """Raised when a query destination is neither a record nor a sequence."""


class ErrorTypeMismatch(SqlDbError, TypeError):
    """Raised when an error value is not the backend-specific error type."""


class DecodeError(SqlDbError, ValueError):
    """Raised when a result row cannot be decoded into the destination record."""

    def __init__(self, message: str, *, column: str | None = None) -> None:
        super().__init__(message)
        self.column = column


class PoolClosedError(SqlDbError, RuntimeError):
    """Raised when a connection is requested from a pool that has been closed."""

    def __init__(self, tag: str) -> None:
        super().__init__(f"sqldb: pool for tag[{tag}] is closed")
        self.tag = tag
