"""
Generic row decoding: result columns -> pydantic record fields.
"""

from .descriptor import (
    FieldLocator,
    FieldSpec,
    RecordDescriptor,
    clear_descriptor_cache,
    column,
    descriptor_cache_info,
    field_table,
    resolve,
    unfilled_required,
)
from .fetch import Destination, Shape, fetch, many, one
from .materialize import materialize

__all__ = [
    "FieldLocator",
    "FieldSpec",
    "RecordDescriptor",
    "clear_descriptor_cache",
    "column",
    "descriptor_cache_info",
    "field_table",
    "resolve",
    "unfilled_required",
    "Destination",
    "Shape",
    "fetch",
    "many",
    "one",
    "materialize",
]
