"""EntityService - the operations EntityForge exposes to a transport layer.

The service wires the schema store, the per-connection engines, the runtime
configuration registry, the relationship resolver, the query engine and the
view cache together. Callers resolve a schema, configure it, then pass the
returned RuntimeEntityConfig to the record operations::

    service = EntityService.from_env()
    config = service.entity("products")
    result = service.list_entities(config, params={"sorts": {"name": "asc"}})

Authorization is decided by the caller before any of these methods run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from sqlalchemy.engine import Engine

from entityforge.entity.configurator import (
    EntityConfigRegistry,
    RuntimeEntityConfig,
    configure,
    default_registry,
)
from entityforge.entity.writer import EntityWriter
from entityforge.errors import NotFoundError, RelationshipIntegrityError, UnknownRelationship
from entityforge.persistence import ConnectionRegistry, read_scope, transaction
from entityforge.query.engine import QueryEngine
from entityforge.query.request import QueryRequest, QueryResult
from entityforge.relationships import pivot
from entityforge.relationships.specs import RelationshipResolver
from entityforge.schema.loader import SchemaDefinition, SchemaStore
from entityforge.settings import EngineSettings
from entityforge.views.cache import SchemaViewCache
from entityforge.views.filter import filter_for_context

logger = logging.getLogger(__name__)


class EntityService:
    def __init__(
        self,
        store: SchemaStore,
        connections: ConnectionRegistry,
        registry: EntityConfigRegistry | None = None,
        settings: EngineSettings | None = None,
    ):
        self.store = store
        self.connections = connections
        self.registry = registry or default_registry
        self.settings = settings or EngineSettings(schema_path=store.schema_path)
        self.resolver = RelationshipResolver(self.entity)
        self.engine = QueryEngine(
            self.registry,
            self.resolver,
            default_page_size=self.settings.default_page_size,
            max_page_size=self.settings.max_page_size,
        )
        self.writer = EntityWriter(self.engine, self.resolver)
        self.views = SchemaViewCache(self._load_view)

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> EntityService:
        """Build a service from ENTITYFORGE_* and DATABASE_URL* environment variables."""
        settings = EngineSettings.from_env(base_path)
        return cls(
            store=SchemaStore(settings.schema_path),
            connections=ConnectionRegistry(base_path),
            settings=settings,
        )

    # ------------------------------------------------------------------
    # Schemas and views
    # ------------------------------------------------------------------

    def resolve_schema(self, model: str, connection: str | None = None) -> SchemaDefinition:
        return self.store.resolve(model, connection)

    def filter_schema(self, schema: SchemaDefinition, context: str | None = None) -> dict[str, Any]:
        return filter_for_context(schema, context)

    async def _load_view(self, model: str, context: str) -> dict[str, Any]:
        # Schema files are read off the event loop
        return await asyncio.to_thread(
            lambda: filter_for_context(self.store.resolve(model), context)
        )

    async def get_schema_view(self, model: str, context: str | None = None) -> dict[str, Any]:
        """Cached view of a model's schema; concurrent cold requests share one load."""
        return await self.views.get(model, context)

    def invalidate(self, model: str) -> None:
        """Forget everything derived from a model's schema document."""
        self.store.invalidate(model)
        self.views.invalidate(model)
        for table_name in self.registry.forget_model(model):
            self.resolver.forget(table_name)
        logger.info("Invalidated model '%s'", model)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure_entity(self, schema: SchemaDefinition) -> RuntimeEntityConfig:
        config = configure(schema, self.registry)
        self.resolver.forget(config.table_name)
        return config

    def entity(self, model: str, connection: str | None = None) -> RuntimeEntityConfig:
        """Resolve and configure a model, reusing the published configuration when current."""
        schema = self.store.resolve(model, connection)
        if self.registry.is_configured(schema.table):
            config = self.registry.get(schema.table)
            if config.schema is schema:
                return config
        return self.configure_entity(schema)

    def engine_for(self, config: RuntimeEntityConfig) -> Engine:
        return self.connections.get_engine(config.connection)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_entities(
        self,
        config: RuntimeEntityConfig,
        relation: str | None = None,
        parent_id: Any = None,
        params: QueryRequest | Mapping[str, Any] | None = None,
    ) -> QueryResult:
        """List records of a model, or the records related to one of its records.

        An undeclared ``relation`` falls back to the unscoped listing of
        ``config`` itself.

        Raises:
            NotFoundError: If ``parent_id`` names no live record
            SortFieldError, FilterValueError: For invalid listing parameters
            UnsupportedRelationshipType, MissingPivotConfig: For unusable relations
        """
        request = params if isinstance(params, QueryRequest) else QueryRequest.from_params(params)

        with read_scope(self.engine_for(config)) as conn:
            if relation is None:
                return self.engine.list(conn, config, request)

            if parent_id is None or self.engine.get(conn, config, parent_id) is None:
                raise NotFoundError(
                    f"{config.model} record '{parent_id}' not found",
                    model=config.model,
                    id=parent_id,
                )
            try:
                spec = self.resolver.resolve(config, relation)
            except UnknownRelationship:
                logger.warning(
                    "Relation '%s' is not declared on '%s', listing %s unscoped",
                    relation,
                    config.model,
                    config.model,
                )
                return self.engine.list(conn, config, request)

            related = self.resolver.related_config(config, spec)
            return self.engine.list(
                conn,
                related,
                request,
                parent=config,
                spec=spec,
                parent_id=config.cast_id(parent_id),
            )

    def get_entity(self, config: RuntimeEntityConfig, id: Any) -> dict[str, Any]:
        """
        Raises:
            NotFoundError: If no live record has the id
        """
        with read_scope(self.engine_for(config)) as conn:
            record = self.engine.get(conn, config, id)
        if record is None:
            raise NotFoundError(f"{config.model} record '{id}' not found", model=config.model, id=id)
        return record

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_entity(self, config: RuntimeEntityConfig, payload: Mapping[str, Any]) -> dict[str, Any]:
        with transaction(self.engine_for(config)) as conn:
            return self.writer.create(conn, config, payload)

    def update_entity(
        self, config: RuntimeEntityConfig, id: Any, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        with transaction(self.engine_for(config)) as conn:
            return self.writer.update(conn, config, id, payload)

    def update_field(
        self, config: RuntimeEntityConfig, id: Any, field: str, value: Any
    ) -> dict[str, Any]:
        with transaction(self.engine_for(config)) as conn:
            return self.writer.update_field(conn, config, id, field, value)

    def delete_entity(self, config: RuntimeEntityConfig, id: Any) -> None:
        with transaction(self.engine_for(config)) as conn:
            self.writer.delete(conn, config, id)

    # ------------------------------------------------------------------
    # Relationship mutations
    # ------------------------------------------------------------------

    def _pivot_target(self, config: RuntimeEntityConfig, relation: str):
        spec = pivot.require_many_to_many(self.resolver.resolve(config, relation))
        return spec, self.resolver.related_config(config, spec)

    def attach_related(
        self, config: RuntimeEntityConfig, id: Any, relation: str, ids: Iterable[Any]
    ) -> list[Any]:
        """Link related records; existing links are left alone.

        Returns:
            The ids that were newly linked
        """
        spec, related = self._pivot_target(config, relation)
        with transaction(self.engine_for(config), integrity_error=RelationshipIntegrityError) as conn:
            parent_id = self.writer.require_live(conn, config, id)
            return pivot.attach(conn, spec, related, parent_id, list(ids))

    def detach_related(
        self, config: RuntimeEntityConfig, id: Any, relation: str, ids: Iterable[Any] | None = None
    ) -> int:
        """Unlink the given related records, or all of them when ``ids`` is None."""
        spec, related = self._pivot_target(config, relation)
        with transaction(self.engine_for(config), integrity_error=RelationshipIntegrityError) as conn:
            parent_id = self.writer.require_live(conn, config, id)
            return pivot.detach(conn, spec, related, parent_id, None if ids is None else list(ids))

    def sync_related(
        self, config: RuntimeEntityConfig, id: Any, relation: str, ids: Iterable[Any]
    ) -> dict[str, list[Any]]:
        """Replace the full set of linked records."""
        spec, related = self._pivot_target(config, relation)
        with transaction(self.engine_for(config), integrity_error=RelationshipIntegrityError) as conn:
            parent_id = self.writer.require_live(conn, config, id)
            return pivot.sync(conn, spec, related, parent_id, list(ids))
