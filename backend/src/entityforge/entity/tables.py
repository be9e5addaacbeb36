"""Render SQLAlchemy tables from schema definitions.

Each configured table gets its own ``MetaData`` so that two connections may
declare tables of the same name with different shapes.
"""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, MetaData, Table

from entityforge.core.types import get_storage_type
from entityforge.schema.loader import SchemaDefinition

CREATED_AT = "created_at"
UPDATED_AT = "updated_at"
SOFT_DELETE_COLUMN = "deleted_at"


def build_table(schema: SchemaDefinition) -> Table:
    """Build a Table whose columns mirror the schema's fields.

    Timestamp and soft-delete columns are added when the schema enables
    them and does not declare them as fields itself.
    """
    metadata = MetaData()
    columns = []
    for field in schema.fields.values():
        is_pk = field.name == schema.primary_key
        columns.append(
            Column(
                field.name,
                get_storage_type(field.type),
                primary_key=is_pk,
                autoincrement=field.auto_increment if is_pk else False,
                nullable=not (is_pk or field.required),
            )
        )

    extra: list[str] = []
    if schema.timestamps:
        extra.extend([CREATED_AT, UPDATED_AT])
    if schema.soft_delete:
        extra.append(SOFT_DELETE_COLUMN)
    for name in extra:
        if name not in schema.fields:
            columns.append(Column(name, DateTime, nullable=True))

    return Table(schema.table, metadata, *columns)


def utcnow() -> datetime:
    """Timestamp written to created_at/updated_at/deleted_at columns."""
    return datetime.now(UTC).replace(tzinfo=None)
