"""
Unwrap MySQL server errors raised by pymysql.

pymysql raises subclasses of pymysql.err.MySQLError whose args are
(errno, message). These helpers pull the number and text out of such a value;
None stands for "no error" and yields (0, "ok").
"""

from typing import Any

from pymysql.err import MySQLError

from .errors import ErrorTypeMismatch


def _unwrap(err: Any) -> tuple[int, str]:
    if err is None:
        return 0, "ok"
    if not isinstance(err, MySQLError):
        raise ErrorTypeMismatch(f"expected pymysql MySQLError, got {type(err).__name__}")
    args = err.args
    if not args or not isinstance(args[0], int):
        raise ErrorTypeMismatch(
            f"expected pymysql MySQLError with an error number, got {type(err).__name__}{args!r}"
        )
    message = args[1] if len(args) > 1 else ""
    return args[0], str(message)


def error_code(err: Any) -> int:
    """MySQL error number of *err* (0 for None)."""
    return _unwrap(err)[0]


def error_message(err: Any) -> str:
    """MySQL error message of *err* ("ok" for None)."""
    return _unwrap(err)[1]


def error_info(err: Any) -> tuple[int, str]:
    """(error number, message) of *err*; (0, "ok") for None."""
    return _unwrap(err)
