"""Executable relationship specs.

A declared relationship is turned into exactly one of three variants:

- OneToMany:         related.foreign_key = parent_id
- ManyToMany:        related ⋈ pivot, pivot.foreign_key = parent_id
- ManyToManyThrough: related ⋈ second pivot ⋈ through model ⋈ first pivot,
                     first_pivot.first_foreign_key = parent_id

Specs are built once per (table, relation name) by RelationshipResolver and
reused for every request. Each variant knows how to scope a SELECT over
the related table; all columns come from Table/TableClause objects, so the
rendered SQL is always table-qualified.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Union

from sqlalchemy import DateTime, Select, column, table
from sqlalchemy.sql.expression import TableClause

from entityforge.entity.configurator import RuntimeEntityConfig
from entityforge.entity.tables import CREATED_AT, UPDATED_AT
from entityforge.errors import MissingPivotConfig, UnknownRelationship, UnsupportedRelationshipType
from entityforge.schema.loader import RelationshipDefinition

logger = logging.getLogger(__name__)

# (model name, connection) -> configured entity
ConfigProvider = Callable[[str, Union[str, None]], RuntimeEntityConfig]


def _not_deleted(config: RuntimeEntityConfig):
    if config.soft_delete_column is None:
        return None
    return config.column(config.soft_delete_column).is_(None)


@dataclass(frozen=True)
class OneToMany:
    name: str
    related_model: str
    foreign_key: str

    def apply(
        self,
        stmt: Select,
        related: RuntimeEntityConfig,
        parent_id: Any,
        through: RuntimeEntityConfig | None = None,
    ) -> Select:
        return stmt.where(related.column(self.foreign_key) == parent_id)


@dataclass(frozen=True)
class ManyToMany:
    name: str
    related_model: str
    pivot_table: str
    foreign_key: str
    related_key: str
    pivot_timestamps: bool = False

    def pivot(self, extra: tuple[str, ...] = ()) -> TableClause:
        """Lightweight clause for the pivot table; ``extra`` adds pivot data columns."""
        columns = [column(self.foreign_key), column(self.related_key)]
        columns.extend(column(name) for name in extra)
        if self.pivot_timestamps:
            columns.extend([column(CREATED_AT, DateTime), column(UPDATED_AT, DateTime)])
        return table(self.pivot_table, *columns)

    def apply(
        self,
        stmt: Select,
        related: RuntimeEntityConfig,
        parent_id: Any,
        through: RuntimeEntityConfig | None = None,
    ) -> Select:
        pivot = self.pivot()
        related_pk = related.column(related.primary_key)
        return stmt.join(pivot, related_pk == pivot.c[self.related_key]).where(
            pivot.c[self.foreign_key] == parent_id
        )


@dataclass(frozen=True)
class ManyToManyThrough:
    name: str
    related_model: str
    through_model: str
    first_pivot_table: str
    first_foreign_key: str
    first_related_key: str
    second_pivot_table: str
    second_foreign_key: str
    second_related_key: str

    def apply(
        self,
        stmt: Select,
        related: RuntimeEntityConfig,
        parent_id: Any,
        through: RuntimeEntityConfig | None = None,
    ) -> Select:
        if through is None:
            raise MissingPivotConfig(
                f"Relationship '{self.name}' requires the configured through model "
                f"'{self.through_model}'"
            )
        first = table(
            self.first_pivot_table,
            column(self.first_foreign_key),
            column(self.first_related_key),
        )
        second = table(
            self.second_pivot_table,
            column(self.second_foreign_key),
            column(self.second_related_key),
        )
        related_pk = related.column(related.primary_key)
        through_pk = through.column(through.primary_key)

        stmt = (
            stmt.join(second, related_pk == second.c[self.second_related_key])
            .join(through.table, through_pk == second.c[self.second_foreign_key])
            .join(first, first.c[self.first_related_key] == through_pk)
            .where(first.c[self.first_foreign_key] == parent_id)
        )
        through_alive = _not_deleted(through)
        if through_alive is not None:
            stmt = stmt.where(through_alive)
        # Several intermediate rows may lead to the same related row
        return stmt.distinct()


RelationshipSpec = Union[OneToMany, ManyToMany, ManyToManyThrough]


def _require(definition: RelationshipDefinition, *attrs: str) -> None:
    missing = [a for a in attrs if not getattr(definition, a)]
    if missing:
        raise MissingPivotConfig(
            f"Relationship '{definition.name}' is missing required configuration: "
            f"{', '.join(missing)}",
            relationship=definition.name,
            missing=missing,
        )


def build_spec(definition: RelationshipDefinition) -> RelationshipSpec:
    """Turn a declared relationship into its executable variant.

    Raises:
        UnsupportedRelationshipType: If the type is not one of the three shapes
        MissingPivotConfig: If keys or pivot tables the shape needs are absent
    """
    if definition.type == "one_to_many":
        if not definition.foreign_key:
            raise MissingPivotConfig(
                f"Relationship '{definition.name}' is missing required configuration: foreign_key",
                relationship=definition.name,
                missing=["foreign_key"],
            )
        return OneToMany(
            name=definition.name,
            related_model=definition.model,
            foreign_key=definition.foreign_key,
        )

    if definition.type == "many_to_many":
        _require(definition, "pivot_table", "foreign_key", "related_key")
        return ManyToMany(
            name=definition.name,
            related_model=definition.model,
            pivot_table=definition.pivot_table,
            foreign_key=definition.foreign_key,
            related_key=definition.related_key,
            pivot_timestamps=definition.pivot_timestamps,
        )

    if definition.type == "many_to_many_through":
        _require(
            definition,
            "through",
            "first_pivot_table",
            "first_foreign_key",
            "first_related_key",
            "second_pivot_table",
            "second_foreign_key",
            "second_related_key",
        )
        return ManyToManyThrough(
            name=definition.name,
            related_model=definition.model,
            through_model=definition.through,
            first_pivot_table=definition.first_pivot_table,
            first_foreign_key=definition.first_foreign_key,
            first_related_key=definition.first_related_key,
            second_pivot_table=definition.second_pivot_table,
            second_foreign_key=definition.second_foreign_key,
            second_related_key=definition.second_related_key,
        )

    raise UnsupportedRelationshipType(
        f"Relationship '{definition.name}' has unsupported type '{definition.type}'",
        relationship=definition.name,
        type=definition.type,
    )


class RelationshipResolver:
    """Resolves relationship names to specs and memoizes them per (table, name)."""

    def __init__(self, config_provider: ConfigProvider):
        self._config_provider = config_provider
        self._specs: dict[tuple[str, str], RelationshipSpec] = {}
        self._lock = threading.Lock()

    def resolve(self, parent: RuntimeEntityConfig, name: str) -> RelationshipSpec:
        """Get the spec for a relation declared on the parent's schema.

        Raises:
            UnknownRelationship: If the schema declares no such relation
            UnsupportedRelationshipType: If its type is not supported
            MissingPivotConfig: If its configuration is incomplete
        """
        key = (parent.table_name, name)
        with self._lock:
            spec = self._specs.get(key)
        if spec is not None:
            return spec

        definition = parent.schema.get_relationship(name)
        if definition is None:
            raise UnknownRelationship(
                f"Relationship '{name}' is not declared on model '{parent.model}'",
                model=parent.model,
                relationship=name,
            )
        spec = build_spec(definition)
        logger.debug("Resolved relationship %s.%s as %s", parent.table_name, name, type(spec).__name__)
        with self._lock:
            return self._specs.setdefault(key, spec)

    def related_config(
        self, parent: RuntimeEntityConfig, spec: RelationshipSpec
    ) -> RuntimeEntityConfig:
        return self._config_provider(spec.related_model, parent.connection)

    def through_config(
        self, parent: RuntimeEntityConfig, spec: RelationshipSpec
    ) -> RuntimeEntityConfig | None:
        if isinstance(spec, ManyToManyThrough):
            return self._config_provider(spec.through_model, parent.connection)
        return None

    def scope(
        self,
        stmt: Select,
        parent: RuntimeEntityConfig,
        spec: RelationshipSpec,
        parent_id: Any,
    ) -> Select:
        """Add the relation's joins and parent predicate to a related-table SELECT."""
        related = self.related_config(parent, spec)
        return spec.apply(stmt, related, parent_id, self.through_config(parent, spec))

    def forget(self, table_name: str | None = None) -> None:
        """Drop memoized specs for a table, or all of them."""
        with self._lock:
            if table_name is None:
                self._specs.clear()
            else:
                for key in [k for k in self._specs if k[0] == table_name]:
                    del self._specs[key]
