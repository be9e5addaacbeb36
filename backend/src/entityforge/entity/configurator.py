"""Runtime entity configuration and the process-wide table registry.

A RuntimeEntityConfig is everything the query engine and writers need to
know about a table: which fields may be written, how stored values are
coerced, whether rows are soft-deleted, and the SQLAlchemy Table whose
column objects every generated statement is built from.

Configurations are published to an EntityConfigRegistry keyed by table
name. Rows produced by any query path are hydrated through the registry,
so they resolve the same casts no matter which code materialized them.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Table

from entityforge.core.types import get_field_type
from entityforge.entity.tables import SOFT_DELETE_COLUMN, build_table
from entityforge.errors import NotFoundError
from entityforge.schema.loader import FieldDefinition, SchemaDefinition

logger = logging.getLogger(__name__)


@dataclass
class RuntimeEntityConfig:
    schema: SchemaDefinition
    table: Table
    writable_fields: list[str]
    casts: dict[str, Callable[[Any], Any]]
    soft_delete_column: str | None = None
    timestamps: bool = True
    sortable: list[str] = field(default_factory=list)
    filterable: list[str] = field(default_factory=list)
    searchable: list[str] = field(default_factory=list)
    listable: list[str] = field(default_factory=list)

    @property
    def model(self) -> str:
        return self.schema.model

    @property
    def table_name(self) -> str:
        return self.schema.table

    @property
    def connection(self) -> str | None:
        return self.schema.connection

    @property
    def primary_key(self) -> str:
        return self.schema.primary_key

    @property
    def fields(self) -> dict[str, FieldDefinition]:
        return self.schema.fields

    def column(self, name: str):
        """The owned (table-qualified) column object for a field."""
        return self.table.c[name]

    def cast_id(self, value: Any) -> Any:
        """Coerce a record id to the primary key's type.

        Raises:
            NotFoundError: If the value can never identify a record
        """
        try:
            return self.casts[self.primary_key](value)
        except (TypeError, ValueError):
            raise NotFoundError(
                f"{self.model} record '{value}' not found", model=self.model, id=value
            ) from None


class EntityConfigRegistry:
    """Table-keyed store of runtime configurations.

    Populated by :func:`configure`; looked up explicitly by every entity
    operation and by row hydration.
    """

    def __init__(self) -> None:
        self._configs: dict[str, RuntimeEntityConfig] = {}
        self._lock = threading.Lock()

    def publish(self, config: RuntimeEntityConfig) -> None:
        with self._lock:
            self._configs[config.table_name] = config

    def get(self, table_name: str) -> RuntimeEntityConfig:
        """Get the configuration published for a table.

        Raises:
            ValueError: If the table was never configured
        """
        with self._lock:
            config = self._configs.get(table_name)
        if config is None:
            raise ValueError(
                f"Table '{table_name}' is not configured. "
                "Call configure() with its schema first."
            )
        return config

    def is_configured(self, table_name: str) -> bool:
        with self._lock:
            return table_name in self._configs

    def clear(self, table_name: str | None = None) -> None:
        """Drop one table's configuration, or all of them. Primarily for testing."""
        with self._lock:
            if table_name is None:
                self._configs.clear()
            else:
                self._configs.pop(table_name, None)

    def forget_model(self, model: str) -> list[str]:
        """Drop every configuration built from a model; returns the affected tables."""
        with self._lock:
            tables = [t for t, c in self._configs.items() if c.model == model]
            for table_name in tables:
                del self._configs[table_name]
        return tables

    def hydrate(self, table_name: str, row: Mapping[str, Any]) -> dict[str, Any]:
        """Apply the table's cast map to a materialized row."""
        casts = self.get(table_name).casts
        result: dict[str, Any] = {}
        for key, value in row.items():
            cast = casts.get(key)
            if value is None or cast is None:
                result[key] = value
                continue
            try:
                result[key] = cast(value)
            except (TypeError, ValueError):
                logger.warning(
                    "Stored value for %s.%s could not be cast, returning it unchanged",
                    table_name,
                    key,
                )
                result[key] = value
        return result


# Shared by every service in the process unless one is passed explicitly
default_registry = EntityConfigRegistry()


def configure(
    schema: SchemaDefinition, registry: EntityConfigRegistry | None = None
) -> RuntimeEntityConfig:
    """Derive the runtime configuration for a schema and publish it."""
    fields = list(schema.fields.values())
    config = RuntimeEntityConfig(
        schema=schema,
        table=build_table(schema),
        writable_fields=[f.name for f in fields if f.writable],
        casts={f.name: get_field_type(f.type).cast for f in fields},
        soft_delete_column=SOFT_DELETE_COLUMN if schema.soft_delete else None,
        timestamps=schema.timestamps,
        sortable=[f.name for f in fields if f.sortable],
        filterable=[f.name for f in fields if f.filterable],
        searchable=[f.name for f in fields if f.searchable],
        listable=[f.name for f in fields if f.listable],
    )
    (registry or default_registry).publish(config)
    logger.debug(
        "Configured table '%s' (soft_delete=%s, timestamps=%s, writable=%s)",
        schema.table,
        config.soft_delete_column is not None,
        config.timestamps,
        config.writable_fields,
    )
    return config
