"""Translate filter specs into SQLAlchemy predicates.

A filter value is either a raw value, filtered with the field's effective
filter type, or an explicit ``{"type": <filter_type>, "value": ...}``.
Values are coerced with the field type's cast before they are bound, so a
value that does not fit the field is rejected up front instead of reaching
the database.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import String, cast, or_
from sqlalchemy.sql.elements import ColumnElement

from entityforge.core.types import FILTER_TYPES, get_field_type
from entityforge.errors import FilterValueError
from entityforge.schema.loader import FieldDefinition

_TEXT_TYPES = ("string", "text")


def parse_filter(field: FieldDefinition, raw: Any) -> tuple[str, Any]:
    """Split a raw filter into (filter_type, value)."""
    if isinstance(raw, Mapping) and "value" in raw:
        return raw.get("type") or field.effective_filter_type, raw["value"]
    return field.effective_filter_type, raw


def _split(value: Any) -> list[Any]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip() != ""]
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _cast(field: FieldDefinition, value: Any) -> Any:
    try:
        return get_field_type(field.type).cast(value)
    except (TypeError, ValueError):
        raise FilterValueError(
            f"Value {value!r} is not valid for field '{field.name}' of type {field.type}",
            field=field.name,
        ) from None


def build_predicate(column, field: FieldDefinition, raw: Any) -> ColumnElement:
    """Build the predicate for one field filter.

    Raises:
        FilterValueError: If the filter type is unknown or not applicable to
            the field type, or the value cannot be coerced to the field type
    """
    filter_type, value = parse_filter(field, raw)
    allowed = get_field_type(field.type).filter_types
    if filter_type not in FILTER_TYPES or filter_type not in allowed:
        raise FilterValueError(
            f"Filter type '{filter_type}' is not supported for field '{field.name}'",
            field=field.name,
            filter_type=filter_type,
        )
    if value is None:
        raise FilterValueError(f"Filter on '{field.name}' has no value", field=field.name)

    if filter_type == "like":
        return column.icontains(_cast(field, value), autoescape=True)
    if filter_type == "starts_with":
        return column.istartswith(_cast(field, value), autoescape=True)
    if filter_type == "ends_with":
        return column.iendswith(_cast(field, value), autoescape=True)
    if filter_type == "in":
        values = [_cast(field, v) for v in _split(value)]
        if not values:
            raise FilterValueError(f"Filter 'in' on '{field.name}' needs at least one value", field=field.name)
        return column.in_(values)
    if filter_type == "between":
        bounds = _split(value)
        if len(bounds) != 2:
            raise FilterValueError(
                f"Filter 'between' on '{field.name}' needs exactly two values", field=field.name
            )
        return column.between(_cast(field, bounds[0]), _cast(field, bounds[1]))

    bound = _cast(field, value)
    if filter_type == "not_equals":
        return column != bound
    if filter_type == "greater_than":
        return column > bound
    if filter_type == "less_than":
        return column < bound
    return column == bound


def build_search(columns: list[tuple[Any, FieldDefinition]], term: str) -> ColumnElement | None:
    """OR a case-insensitive substring match across the given searchable columns."""
    clauses = []
    for column, field in columns:
        target = column if field.type in _TEXT_TYPES else cast(column, String)
        clauses.append(target.icontains(term, autoescape=True))
    if not clauses:
        return None
    return or_(*clauses)
