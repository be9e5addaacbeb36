"""Field type registry with storage, coercion and filter defaults."""

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Integer, Numeric, String, Text
from sqlalchemy.types import TypeEngine

# Filter types understood by the query engine
FILTER_TYPES = (
    "equals",
    "not_equals",
    "like",
    "starts_with",
    "ends_with",
    "in",
    "between",
    "greater_than",
    "less_than",
)

_TEXT_FILTERS = ["equals", "not_equals", "like", "starts_with", "ends_with", "in"]
_RANGE_FILTERS = ["equals", "not_equals", "in", "between", "greater_than", "less_than"]


def to_str(value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise ValueError(f"expected a scalar, got {type(value).__name__}")
    return str(value)


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value!r} is not an integer")
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    return int(value)


def to_float(value: Any) -> float:
    if isinstance(value, str):
        return float(value.strip())
    return float(value)


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
    raise ValueError(f"{value!r} is not a boolean")


def to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise ValueError(f"{value!r} is not a date")


def to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip())
    raise ValueError(f"{value!r} is not a datetime")


def to_json(value: Any) -> Any:
    # The JSON column type encodes and decodes; strings are JSON values too
    if isinstance(value, (bytes, bytearray)):
        return json.loads(value)
    return value


@dataclass
class FieldType:
    name: str
    storage_type: Callable[[], TypeEngine]
    cast: Callable[[Any], Any]
    default_filter_type: str = "equals"
    filter_types: list[str] = field(default_factory=list)


# Built-in field types. The set is closed: schema validation rejects anything else.
FIELD_TYPES: dict[str, FieldType] = {
    "string": FieldType(
        name="string",
        storage_type=lambda: String(255),
        cast=to_str,
        default_filter_type="like",
        filter_types=_TEXT_FILTERS,
    ),
    "text": FieldType(
        name="text",
        storage_type=Text,
        cast=to_str,
        default_filter_type="like",
        filter_types=_TEXT_FILTERS,
    ),
    "integer": FieldType(
        name="integer",
        storage_type=Integer,
        cast=to_int,
        filter_types=_RANGE_FILTERS,
    ),
    "float": FieldType(
        name="float",
        storage_type=Float,
        cast=to_float,
        filter_types=_RANGE_FILTERS,
    ),
    "decimal": FieldType(
        name="decimal",
        storage_type=lambda: Numeric(18, 4, asdecimal=False),
        cast=to_float,
        filter_types=_RANGE_FILTERS,
    ),
    "boolean": FieldType(
        name="boolean",
        storage_type=Boolean,
        cast=to_bool,
        filter_types=["equals", "not_equals"],
    ),
    "date": FieldType(
        name="date",
        storage_type=Date,
        cast=to_date,
        filter_types=_RANGE_FILTERS,
    ),
    "datetime": FieldType(
        name="datetime",
        storage_type=DateTime,
        cast=to_datetime,
        filter_types=_RANGE_FILTERS,
    ),
    "json": FieldType(
        name="json",
        storage_type=JSON,
        cast=to_json,
        filter_types=[],
    ),
}


def get_field_type(type_name: str) -> FieldType:
    """Get a field type definition.

    Raises:
        KeyError: If the type is not one of the built-in types
    """
    return FIELD_TYPES[type_name]


def get_storage_type(type_name: str) -> TypeEngine:
    """Get a fresh SQLAlchemy column type for a field type."""
    return get_field_type(type_name).storage_type()
