"""Listing request and result types."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from entityforge.errors import FilterValueError


class QueryRequest(BaseModel):
    """Parameters of one listing call.

    ``page`` is 0-based. ``sorts`` maps field name to ``asc``/``desc``.
    ``filters`` maps field name to either a raw value (filtered with the
    field's default filter type) or ``{"type": ..., "value": ...}``.
    """

    page: int = Field(default=0, ge=0)
    size: int | None = Field(default=None, ge=1)
    sorts: dict[str, str] = Field(default_factory=dict)
    filters: dict[str, Any] = Field(default_factory=dict)
    search: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any] | None) -> QueryRequest:
        """Build a request from loosely typed parameters, e.g. a query string.

        ``sorts`` and ``filters`` may be given as JSON-encoded strings.
        ``sort`` is accepted as an alias of ``sorts`` and ``filter`` of ``filters``.

        Raises:
            FilterValueError: If the parameters cannot form a valid request
        """
        params = dict(params or {})
        data: dict[str, Any] = {}
        for key in ("page", "size", "search"):
            if params.get(key) not in (None, ""):
                data[key] = params[key]
        for key, alias in (("sorts", "sort"), ("filters", "filter")):
            value = params.get(key, params.get(alias))
            if isinstance(value, str):
                try:
                    value = json.loads(value)
                except json.JSONDecodeError:
                    raise FilterValueError(f"'{key}' must be a JSON object") from None
            if value:
                data[key] = value
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise FilterValueError(
                "Invalid query parameters",
                errors=[
                    {"loc": ".".join(str(p) for p in e["loc"]), "msg": e["msg"]}
                    for e in exc.errors()
                ],
            ) from exc


@dataclass
class QueryResult:
    count: int
    count_filtered: int
    rows: list[dict[str, Any]]
    listable: list[str] = field(default_factory=list)
    sortable: list[str] = field(default_factory=list)
    filterable: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "count_filtered": self.count_filtered,
            "rows": self.rows,
            "listable": self.listable,
            "sortable": self.sortable,
            "filterable": self.filterable,
        }
