"""
Run a query on a connection and decode its rows into records.

The caller picks the destination shape explicitly:

- one(record): the first row, if any, is decoded into *record*. No row is not
  an error; the record is left as it was.
- many(Model, rows=None): every row is decoded into a fresh Model and appended
  to rows, in cursor order.
"""

from collections.abc import MutableSequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from ..core.errors import DecodeError, DestinationTypeError
from ..core.pool.connect import bind_args, cursor_columns, execute
from .descriptor import resolve, unfilled_required
from .materialize import materialize


class Shape(str, Enum):
    """Destination shape: a single record or a growable sequence of records."""

    ONE = "one"
    MANY = "many"


@dataclass(slots=True)
class Destination:
    shape: Shape
    model: type[BaseModel]
    record: BaseModel | None = None
    rows: MutableSequence[Any] = field(default_factory=list)
    # Rows decoded by the last fetch into this destination.
    count: int = 0
    # Records start from model_construct(), so every required field needs a column.
    fresh: bool = False


def _is_model_class(obj: Any) -> bool:
    return isinstance(obj, type) and issubclass(obj, BaseModel)


def one(record: BaseModel) -> Destination:
    """Destination decoding the first row into *record*."""
    if not isinstance(record, BaseModel):
        raise DestinationTypeError(
            f"expected record or sequence, got {type(record).__name__}"
        )
    return Destination(shape=Shape.ONE, model=type(record), record=record)


def many(model: type[BaseModel], rows: MutableSequence[Any] | None = None) -> Destination:
    """Destination appending one *model* per row to *rows* (a new list by default)."""
    if not _is_model_class(model):
        raise DestinationTypeError(f"expected record or sequence, got {model!r}")
    if rows is None:
        rows = []
    elif not isinstance(rows, MutableSequence):
        raise DestinationTypeError(
            f"expected record or sequence, got {type(rows).__name__}"
        )
    return Destination(shape=Shape.MANY, model=model, rows=rows, fresh=True)


def fetch(conn: Any, destination: Any, sql: str, *args: Any) -> Destination:
    """
    Execute *sql* on *conn* and decode the result into *destination*.

    The cursor is closed on every path. Driver errors propagate unchanged;
    decoding failures raise DecodeError, including a fresh-record destination
    whose required fields are not all covered by the result columns.
    """
    if not isinstance(destination, Destination):
        raise DestinationTypeError(
            f"expected record or sequence, got {type(destination).__name__}"
        )

    destination.count = 0
    cur = execute(conn, sql, bind_args(args))
    try:
        descriptor = resolve(destination.model, cursor_columns(cur))
        if destination.fresh:
            missing = unfilled_required(descriptor)
            if missing:
                raise DecodeError(
                    f"sqldb: no column for required field(s) {', '.join(missing)} "
                    f"of {destination.model.__name__}"
                )
        if destination.shape is Shape.ONE:
            row = cur.fetchone()
            if row is not None:
                materialize(row, descriptor, destination.record)
                destination.count = 1
        else:
            for row in iter(cur.fetchone, None):
                record = destination.model.model_construct()
                materialize(row, descriptor, record)
                destination.rows.append(record)
                destination.count += 1
    finally:
        cur.close()
    return destination
