"""Create, update and delete records of configured tables.

Writes run on a connection the caller holds inside a transaction. Payload
values are checked against the runtime configuration before any SQL runs:
readonly and auto-increment fields cannot be written, required fields
cannot be empty, and every value is coerced with its field type's cast.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import delete, insert, update
from sqlalchemy.engine import Connection

from entityforge.entity.configurator import RuntimeEntityConfig
from entityforge.entity.tables import CREATED_AT, UPDATED_AT, utcnow
from entityforge.errors import FieldValueError, NotFoundError, ReadonlyFieldError
from entityforge.query.engine import QueryEngine
from entityforge.relationships.actions import run_actions
from entityforge.relationships.specs import RelationshipResolver
from entityforge.schema.loader import FieldDefinition

logger = logging.getLogger(__name__)


def _cast_value(config: RuntimeEntityConfig, field: FieldDefinition, value: Any) -> Any:
    if value is None or (isinstance(value, str) and value == ""):
        if field.required:
            raise FieldValueError(f"Field '{field.name}' is required", field=field.name)
        # Empty strings stay empty strings on text fields only
        return value if field.type in ("string", "text") else None
    try:
        return config.casts[field.name](value)
    except (TypeError, ValueError):
        raise FieldValueError(
            f"Value {value!r} is not valid for field '{field.name}' of type {field.type}",
            field=field.name,
        ) from None


class EntityWriter:
    """Record writes for any configured table."""

    def __init__(self, engine: QueryEngine, resolver: RelationshipResolver):
        self.engine = engine
        self.resolver = resolver

    def require_live(self, conn: Connection, config: RuntimeEntityConfig, id: Any) -> Any:
        record_id = config.cast_id(id)
        if self.engine.get(conn, config, record_id) is None:
            raise NotFoundError(
                f"{config.model} record '{id}' not found", model=config.model, id=id
            )
        return record_id

    def create(
        self, conn: Connection, config: RuntimeEntityConfig, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Insert a record and run its on_create relationship actions.

        Returns:
            The stored record, hydrated

        Raises:
            ReadonlyFieldError: If the payload sets a readonly or auto-increment field
            FieldValueError: If a required field is missing or a value does not fit its type
        """
        pk = config.primary_key
        pk_field = config.fields[pk]
        values: dict[str, Any] = {}

        for name, value in payload.items():
            field = config.fields.get(name)
            if field is None:
                logger.debug("Ignoring unknown field '%s' for %s", name, config.model)
                continue
            # A primary key that is not generated must be supplied by the caller
            if name == pk and not pk_field.auto_increment:
                values[name] = config.cast_id(value) if value is not None else None
                continue
            if not field.writable:
                raise ReadonlyFieldError(f"Field '{name}' is readonly", field=name)
            values[name] = _cast_value(config, field, value)

        for name, field in config.fields.items():
            if name in values or name == pk:
                continue
            if field.default is not None and field.writable:
                values[name] = _cast_value(config, field, field.default)
            elif field.required and field.writable:
                raise FieldValueError(f"Field '{name}' is required", field=name)

        if not pk_field.auto_increment and values.get(pk) is None:
            raise FieldValueError(f"Field '{pk}' is required", field=pk)

        if config.timestamps:
            now = utcnow()
            values.setdefault(CREATED_AT, now)
            values.setdefault(UPDATED_AT, now)

        result = conn.execute(insert(config.table).values(values))
        record_id = values.get(pk)
        if record_id is None:
            record_id = result.inserted_primary_key[0]
        logger.info("Created %s record %s", config.model, record_id)

        run_actions(conn, self.resolver, config, "on_create", record_id, payload)
        return self.engine.get(conn, config, record_id)

    def update(
        self,
        conn: Connection,
        config: RuntimeEntityConfig,
        id: Any,
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Update a live record and run its on_update relationship actions.

        Unknown payload keys are ignored. The primary key may appear only
        with the record's own id.

        Raises:
            NotFoundError: If no live record has the id
            ReadonlyFieldError: If the payload changes a readonly or auto-increment field
            FieldValueError: If a value does not fit its type or empties a required field
        """
        record_id = self.require_live(conn, config, id)
        pk = config.primary_key
        values: dict[str, Any] = {}

        for name, value in payload.items():
            field = config.fields.get(name)
            if field is None:
                logger.debug("Ignoring unknown field '%s' for %s", name, config.model)
                continue
            if name == pk:
                try:
                    same = config.casts[pk](value) == record_id
                except (TypeError, ValueError):
                    same = False
                if same:
                    continue
            if not field.writable:
                raise ReadonlyFieldError(f"Field '{name}' is readonly", field=name)
            values[name] = _cast_value(config, field, value)

        if values:
            if config.timestamps:
                values.setdefault(UPDATED_AT, utcnow())
            conn.execute(
                update(config.table)
                .where(config.column(pk) == record_id)
                .values(values)
            )
            logger.info("Updated %s record %s: %s", config.model, record_id, sorted(values))

        run_actions(conn, self.resolver, config, "on_update", record_id, payload)
        return self.engine.get(conn, config, record_id)

    def update_field(
        self,
        conn: Connection,
        config: RuntimeEntityConfig,
        id: Any,
        field: str,
        value: Any,
    ) -> dict[str, Any]:
        """Update a single field.

        Raises:
            FieldValueError: If the field is not declared on the schema
        """
        if field not in config.fields:
            raise FieldValueError(
                f"Field '{field}' does not exist on {config.model}", field=field
            )
        return self.update(conn, config, id, {field: value})

    def delete(self, conn: Connection, config: RuntimeEntityConfig, id: Any) -> None:
        """Delete a live record, softly when the table uses soft delete.

        on_delete relationship actions run first so pivot rows never outlive
        a hard-deleted parent.

        Raises:
            NotFoundError: If no live record has the id
        """
        record_id = self.require_live(conn, config, id)
        run_actions(conn, self.resolver, config, "on_delete", record_id)

        where = config.column(config.primary_key) == record_id
        if config.soft_delete_column:
            now = utcnow()
            values = {config.soft_delete_column: now}
            if config.timestamps:
                values[UPDATED_AT] = now
            conn.execute(update(config.table).where(where).values(values))
            logger.info("Soft-deleted %s record %s", config.model, record_id)
        else:
            conn.execute(delete(config.table).where(where))
            logger.info("Deleted %s record %s", config.model, record_id)
