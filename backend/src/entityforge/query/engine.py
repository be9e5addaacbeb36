"""Listing queries over configured tables.

Every statement is assembled from the column objects of the tables it
touches, so the rendered SQL always names ``table.column``. That keeps
sort, filter and search clauses unambiguous once relationship joins bring
in other tables that share column names such as ``id`` or ``name``.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.engine import Connection

from entityforge.entity.configurator import EntityConfigRegistry, RuntimeEntityConfig
from entityforge.errors import FilterValueError, SortFieldError
from entityforge.query.filters import build_predicate, build_search
from entityforge.query.request import QueryRequest, QueryResult
from entityforge.relationships.specs import RelationshipResolver, RelationshipSpec
from entityforge.settings import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

logger = logging.getLogger(__name__)

SORT_DIRECTIONS = ("asc", "desc")


class QueryEngine:
    """Builds and runs paginated listings for one configured table at a time."""

    def __init__(
        self,
        registry: EntityConfigRegistry,
        resolver: RelationshipResolver,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        self.registry = registry
        self.resolver = resolver
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    # ------------------------------------------------------------------
    # Statement building
    # ------------------------------------------------------------------

    def base_select(self, config: RuntimeEntityConfig) -> Select:
        """SELECT over the table with soft-deleted rows excluded."""
        stmt = select(config.table)
        if config.soft_delete_column:
            stmt = stmt.where(config.column(config.soft_delete_column).is_(None))
        return stmt

    def order_by(self, config: RuntimeEntityConfig, sorts: dict[str, str]) -> list[Any]:
        """Resolve sort clauses; the primary key always ends the list as a tiebreaker.

        Raises:
            SortFieldError: If a field is unknown or not sortable, or a direction is invalid
        """
        requested = bool(sorts)
        if not requested:
            sorts = config.schema.default_sort

        clauses = []
        seen: set[str] = set()
        for name, direction in sorts.items():
            field = config.fields.get(name)
            if field is None:
                raise SortFieldError(f"Unknown sort field '{name}'", field=name)
            if requested and not field.sortable:
                raise SortFieldError(f"Field '{name}' is not sortable", field=name)
            direction = (direction or "asc").lower()
            if direction not in SORT_DIRECTIONS:
                raise SortFieldError(
                    f"Invalid sort direction '{direction}' for field '{name}'", field=name
                )
            column = config.column(name)
            clauses.append(column.desc() if direction == "desc" else column.asc())
            seen.add(name)

        if config.primary_key not in seen:
            clauses.append(config.column(config.primary_key).asc())
        return clauses

    def apply_filters(
        self, stmt: Select, config: RuntimeEntityConfig, filters: dict[str, Any]
    ) -> Select:
        """
        Raises:
            FilterValueError: If a field is unknown or not filterable, or a value is invalid
        """
        for name, raw in filters.items():
            field = config.fields.get(name)
            if field is None:
                raise FilterValueError(f"Unknown filter field '{name}'", field=name)
            if not field.filterable:
                raise FilterValueError(f"Field '{name}' is not filterable", field=name)
            stmt = stmt.where(build_predicate(config.column(name), field, raw))
        return stmt

    def apply_search(self, stmt: Select, config: RuntimeEntityConfig, term: str | None) -> Select:
        if not term:
            return stmt
        columns = [(config.column(name), config.fields[name]) for name in config.searchable]
        clause = build_search(columns, term)
        if clause is None:
            logger.debug("No searchable fields on '%s', ignoring search term", config.model)
            return stmt
        return stmt.where(clause)

    def page_size(self, request: QueryRequest) -> int:
        size = request.size or self.default_page_size
        return min(size, self.max_page_size)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def listed_fields(config: RuntimeEntityConfig, row: dict[str, Any]) -> dict[str, Any]:
        """Keep only the listable fields of a row; every column when none are listable."""
        if not config.listable:
            return row
        return {name: row[name] for name in config.listable if name in row}

    @staticmethod
    def _count(conn: Connection, stmt: Select) -> int:
        return conn.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    def list(
        self,
        conn: Connection,
        config: RuntimeEntityConfig,
        request: QueryRequest | None = None,
        parent: RuntimeEntityConfig | None = None,
        spec: RelationshipSpec | None = None,
        parent_id: Any = None,
    ) -> QueryResult:
        """Run one listing.

        Args:
            conn: Open connection
            config: Configuration of the table being listed
            request: Paging, sorting, filtering and search parameters
            parent: Parent configuration, for relationship-scoped listings
            spec: Relationship from ``parent`` to ``config``
            parent_id: Id of the parent record the listing is scoped to

        Returns:
            QueryResult with the total count (scope only), filtered count and one page of rows
        """
        request = request or QueryRequest()
        # Sort and filter errors surface before any SQL runs
        order = self.order_by(config, request.sorts)

        scoped = self.base_select(config)
        if spec is not None and parent is not None:
            scoped = self.resolver.scope(scoped, parent, spec, parent_id)

        filtered = self.apply_filters(scoped, config, request.filters)
        filtered = self.apply_search(filtered, config, request.search)

        size = self.page_size(request)
        page_stmt = filtered.order_by(*order).limit(size).offset(request.page * size)

        total = self._count(conn, scoped)
        count_filtered = self._count(conn, filtered)
        rows = [
            self.listed_fields(config, self.registry.hydrate(config.table_name, dict(row)))
            for row in conn.execute(page_stmt).mappings()
        ]
        logger.debug(
            "Listed %s: page=%d size=%d total=%d filtered=%d",
            config.model,
            request.page,
            size,
            total,
            count_filtered,
        )
        return QueryResult(
            count=total,
            count_filtered=count_filtered,
            rows=rows,
            listable=list(config.listable),
            sortable=list(config.sortable),
            filterable=list(config.filterable),
        )

    def get(self, conn: Connection, config: RuntimeEntityConfig, id: Any) -> dict[str, Any] | None:
        """Fetch one live record by primary key, hydrated; None if absent."""
        stmt = self.base_select(config).where(config.column(config.primary_key) == config.cast_id(id))
        row = conn.execute(stmt).mappings().first()
        if row is None:
            return None
        return self.registry.hydrate(config.table_name, dict(row))
