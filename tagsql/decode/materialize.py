"""
Copy one result row into a record according to a RecordDescriptor.

Each mapped value is first validated into a scratch slot through the target
field's TypeAdapter. The validated values are then assigned to a copy of the
record, and nested records are copied before they change, so a row that fails
to decode, at either step, leaves the destination untouched.
"""

from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ValidationError

from ..core.errors import DecodeError
from .descriptor import FieldLocator, RecordDescriptor


def _scan(locator: FieldLocator, column_name: str, value: Any) -> Any:
    spec = locator.field
    try:
        # A hinted sub-record is usually stored as a JSON column.
        if spec.model is not None and isinstance(value, (str, bytes, bytearray)):
            return spec.holder.validate_json(value)
        return spec.holder.validate_python(value)
    except ValidationError as e:
        raise DecodeError(
            f"sqldb: cannot scan column {column_name!r} into field {locator.dotted!r}: {e}",
            column=column_name,
        ) from e


def _assign(
    work: BaseModel, locator: FieldLocator, value: Any, containers: dict[str, BaseModel]
) -> None:
    if locator.container is None:
        setattr(work, locator.field.name, value)
        return
    container = locator.container
    inner = containers.get(container.name)
    if inner is None:
        current = getattr(work, container.name, None)
        if current is None:
            inner = container.model.model_construct()
        else:
            inner = current.model_copy()
        containers[container.name] = inner
    setattr(inner, locator.field.name, value)


def materialize(row: Sequence[Any], descriptor: RecordDescriptor, destination: Any) -> Any:
    """
    Decode *row* into *destination* (an instance of descriptor.model).

    Raises DecodeError when the destination is not such a record, when the row
    does not carry exactly one value per column, or when a value does not fit
    its field (type mismatch, NULL into a non-optional field, ...).
    """
    if not isinstance(destination, descriptor.model):
        raise DecodeError(
            f"sqldb: destination must be a {descriptor.model.__name__} record, "
            f"got {type(destination).__name__}"
        )
    columns = descriptor.columns
    if len(row) != len(columns):
        raise DecodeError(
            f"sqldb: expected {len(columns)} destination arguments in scan, got {len(row)}"
        )

    scratch: list[Any] = [None] * len(columns)
    for n, locator in enumerate(descriptor.locators):
        if locator is not None:
            scratch[n] = _scan(locator, columns[n], row[n])

    # Assignment-time validation (validate_assignment, frozen) runs on copies;
    # the destination only sees the result once every field went through.
    work = destination.model_copy()
    containers: dict[str, BaseModel] = {}
    column_of: dict[str, str] = {}
    for n, locator in enumerate(descriptor.locators):
        if locator is None:
            continue
        try:
            _assign(work, locator, scratch[n], containers)
        except ValidationError as e:
            raise DecodeError(
                f"sqldb: cannot assign field {locator.dotted!r}: {e}", column=columns[n]
            ) from e
        if locator.container is not None:
            column_of[locator.container.name] = columns[n]
    for name, inner in containers.items():
        try:
            setattr(work, name, inner)
        except ValidationError as e:
            raise DecodeError(
                f"sqldb: cannot assign field {name!r}: {e}", column=column_of[name]
            ) from e

    destination.__dict__.update(work.__dict__)
    object.__setattr__(destination, "__pydantic_fields_set__", set(work.__pydantic_fields_set__))
    return destination
