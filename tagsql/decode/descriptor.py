"""
Column-to-field resolution for record models.

A record is a pydantic model. Its fields are matched against result columns by
an optional column hint (declared with column("name")) or, failing that, by the
field name. Matching is case-sensitive and follows field declaration order; the
first matching field wins and unmatched columns are skipped.

A field whose type is itself a record model is descended into (one level only)
unless it declares a hint of its own, in which case it is matched as a single
value, e.g. a JSON column decoded into a sub-model.

The per-model field table is built once, from the model's declared fields, and
resolutions are memoised per (model, column names).
"""

import types
from dataclasses import dataclass
from functools import cache, lru_cache
from typing import Annotated, Any, Union, get_args, get_origin

from pydantic import BaseModel, Field, TypeAdapter
from pydantic.fields import FieldInfo

SQL_HINT_KEY = "sql"

_DESCRIPTOR_CACHE_SIZE = 1024


def column(name: str, default: Any = ..., **kwargs: Any) -> Any:
    """
    pydantic Field carrying a column hint.

    Only the text before the first comma is the column name, so "id,pk" maps
    column "id".

    Decoded values are validated against the field's annotation and its
    constraints only. The model's own field_validator hooks and model-level
    config such as strict mode are not applied, unless the model sets
    validate_assignment=True, in which case assigning the value runs them.
    """
    extra = dict(kwargs.pop("json_schema_extra", None) or {})
    extra[SQL_HINT_KEY] = name
    if "default_factory" in kwargs:
        return Field(json_schema_extra=extra, **kwargs)
    return Field(default, json_schema_extra=extra, **kwargs)


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """One entry of a model's field table."""

    index: int
    name: str
    hint: str | None
    holder: TypeAdapter
    # Record type of the field when it is a sub-model.
    model: type[BaseModel] | None = None
    # Inner field table when the sub-model is descended into.
    inner: tuple["FieldSpec", ...] | None = None
    required: bool = False
    # The field starts out None or unset, so a nested assignment builds it.
    lazy: bool = False

    def matches(self, column_name: str) -> bool:
        return column_name == self.name or (self.hint is not None and column_name == self.hint)


@dataclass(frozen=True, slots=True)
class FieldLocator:
    """Where a column lands: a top-level field, or a field one level down."""

    field: FieldSpec
    container: FieldSpec | None = None

    @property
    def path(self) -> tuple[int, int]:
        """(container index, inner index); inner index is -1 for top-level fields."""
        if self.container is None:
            return self.field.index, -1
        return self.container.index, self.field.index

    @property
    def dotted(self) -> str:
        if self.container is None:
            return self.field.name
        return f"{self.container.name}.{self.field.name}"


@dataclass(frozen=True, slots=True)
class RecordDescriptor:
    """Resolved mapping from result columns to fields of *model*."""

    model: type[BaseModel]
    columns: tuple[str, ...]
    locators: tuple[FieldLocator | None, ...]

    @property
    def mapping(self) -> dict[int, tuple[int, int]]:
        """column index -> field path, for matched columns only."""
        return {n: loc.path for n, loc in enumerate(self.locators) if loc is not None}


def _hint_of(info: FieldInfo) -> str | None:
    extra = info.json_schema_extra
    if not isinstance(extra, dict) or SQL_HINT_KEY not in extra:
        return None
    return str(extra[SQL_HINT_KEY]).split(",")[0]


def _record_type(annotation: Any) -> type[BaseModel] | None:
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    if get_origin(annotation) in (Union, types.UnionType):
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return _record_type(args[0])
    return None


def _holder(info: FieldInfo) -> TypeAdapter:
    if info.metadata:
        return TypeAdapter(Annotated[(info.annotation, *info.metadata)])
    return TypeAdapter(info.annotation)


def _specs(model: type[BaseModel], *, descend: bool) -> tuple[FieldSpec, ...]:
    specs = []
    for index, (name, info) in enumerate(model.model_fields.items()):
        hint = _hint_of(info)
        sub = _record_type(info.annotation)
        inner = None
        if descend and sub is not None and hint is None:
            inner = _specs(sub, descend=False)
        specs.append(
            FieldSpec(
                index=index,
                name=name,
                hint=hint,
                holder=_holder(info),
                model=sub,
                inner=inner,
                required=info.is_required(),
                lazy=info.is_required()
                or (info.default_factory is None and info.default is None),
            )
        )
    return tuple(specs)


@cache
def field_table(model: type[BaseModel]) -> tuple[FieldSpec, ...]:
    """Field table of *model* in declaration order (built once per model)."""
    if not (isinstance(model, type) and issubclass(model, BaseModel)):
        raise TypeError(f"expected a pydantic model class, got {model!r}")
    return _specs(model, descend=True)


def _locate(table: tuple[FieldSpec, ...], column_name: str) -> FieldLocator | None:
    for spec in table:
        if spec.inner is not None:
            for inner in spec.inner:
                if inner.matches(column_name):
                    return FieldLocator(field=inner, container=spec)
        elif spec.matches(column_name):
            return FieldLocator(field=spec)
    return None


@lru_cache(maxsize=_DESCRIPTOR_CACHE_SIZE)
def _resolve(model: type[BaseModel], columns: tuple[str, ...]) -> RecordDescriptor:
    table = field_table(model)
    return RecordDescriptor(
        model=model,
        columns=columns,
        locators=tuple(_locate(table, c) for c in columns),
    )


def resolve(model: type[BaseModel], columns: Any) -> RecordDescriptor:
    """Resolve result *columns* (names in cursor order) against *model*."""
    return _resolve(model, tuple(columns))


def descriptor_cache_info() -> Any:
    return _resolve.cache_info()


def clear_descriptor_cache() -> None:
    _resolve.cache_clear()


def unfilled_required(descriptor: RecordDescriptor) -> tuple[str, ...]:
    """
    Dotted names of required fields that no column of *descriptor* fills.

    A record built with model_construct() has no value at all for these, so
    decoding into fresh records is refused when any are left.
    """
    hits: dict[int, set[int]] = {}
    for loc in descriptor.locators:
        if loc is not None:
            outer, inner = loc.path
            hits.setdefault(outer, set()).add(inner)
    missing: list[str] = []
    for spec in field_table(descriptor.model):
        hit = hits.get(spec.index)
        if hit is None:
            if spec.required:
                missing.append(spec.name)
        elif spec.inner is not None and spec.lazy:
            missing.extend(
                f"{spec.name}.{f.name}" for f in spec.inner if f.required and f.index not in hit
            )
    return tuple(missing)
