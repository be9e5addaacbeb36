"""Shared fixtures: a schema directory and a service over in-memory SQLite."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from sqlalchemy import Column, Integer, MetaData, Table, UniqueConstraint

from entityforge.entity.configurator import EntityConfigRegistry
from entityforge.persistence import ConnectionRegistry, DatabaseConfig, create_db_engine
from entityforge.schema.loader import SchemaStore
from entityforge.service import EntityService
from entityforge.settings import EngineSettings

PRODUCTS = {
    "model": "products",
    "table": "products",
    "title": "Products",
    "soft_delete": True,
    "default_sort": {"name": "asc"},
    "permissions": {"read": "uri_products"},
    "fields": {
        "id": {"type": "integer", "auto_increment": True, "sortable": True, "filterable": True},
        "name": {
            "type": "string",
            "required": True,
            "sortable": True,
            "filterable": True,
            "searchable": True,
        },
        "price": {"type": "decimal", "sortable": True, "filterable": True},
        "secret_cost": {"type": "decimal", "listable": False},
        "category_id": {"type": "integer", "filterable": True},
        "active": {"type": "boolean", "filterable": True, "default": True},
        "released_on": {"type": "date", "filterable": True, "sortable": True},
        "attributes": {"type": "json"},
    },
}

CATEGORIES = {
    "model": "categories",
    "table": "categories",
    "fields": {
        "id": {"type": "integer", "auto_increment": True},
        "name": {"type": "string", "required": True, "sortable": True},
    },
    "details": [{"model": "products", "foreign_key": "category_id", "title": "Products"}],
}

USERS = {
    "model": "users",
    "table": "users",
    "fields": {
        "id": {"type": "integer", "auto_increment": True, "sortable": True},
        "user_name": {"type": "string", "required": True, "sortable": True, "searchable": True},
        "email": {"type": "string", "filterable": True},
    },
    "relationships": [
        {
            "name": "roles",
            "type": "many_to_many",
            "pivot_table": "role_users",
            "foreign_key": "user_id",
            "related_key": "role_id",
            "actions": {
                "on_update": {"sync": True},
                "on_delete": {"detach": "all"},
            },
        },
        {
            "name": "permissions",
            "type": "many_to_many_through",
            "through": "roles",
            "first_pivot_table": "role_users",
            "first_foreign_key": "user_id",
            "first_related_key": "role_id",
            "second_pivot_table": "permission_roles",
            "second_foreign_key": "role_id",
            "second_related_key": "permission_id",
        },
    ],
}

ROLES = {
    "model": "roles",
    "table": "roles",
    "fields": {
        "id": {"type": "integer", "auto_increment": True, "sortable": True},
        "slug": {"type": "string", "required": True, "sortable": True, "filterable": True},
        "name": {"type": "string", "sortable": True, "searchable": True},
    },
    "relationships": [
        {
            "name": "permissions",
            "type": "many_to_many",
            "pivot_table": "permission_roles",
            "foreign_key": "role_id",
            "related_key": "permission_id",
        },
    ],
}

PERMISSIONS = {
    "model": "permissions",
    "table": "permissions",
    "fields": {
        "id": {"type": "integer", "auto_increment": True, "sortable": True},
        "slug": {"type": "string", "required": True, "sortable": True, "filterable": True},
    },
}

DOCUMENTS = {
    "products": PRODUCTS,
    "categories": CATEGORIES,
    "users": USERS,
    "roles": ROLES,
    "permissions": PERMISSIONS,
}


def write_schema(directory: Path, doc: dict, name: str | None = None) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name or doc['model']}.json"
    path.write_text(json.dumps(doc))
    return path


def create_pivots(engine) -> None:
    metadata = MetaData()
    Table(
        "role_users",
        metadata,
        Column("user_id", Integer, nullable=False),
        Column("role_id", Integer, nullable=False),
        UniqueConstraint("user_id", "role_id"),
    )
    Table(
        "permission_roles",
        metadata,
        Column("role_id", Integer, nullable=False),
        Column("permission_id", Integer, nullable=False),
        UniqueConstraint("role_id", "permission_id"),
    )
    metadata.create_all(engine)


@pytest.fixture
def schema_dir(tmp_path):
    directory = tmp_path / "schema"
    for doc in DOCUMENTS.values():
        write_schema(directory, doc)
    return directory


@pytest.fixture
def db_engine():
    engine = create_db_engine(DatabaseConfig(url="sqlite:///:memory:"))
    yield engine
    engine.dispose()


@pytest.fixture
def service(schema_dir, db_engine):
    """Service over the test schemas with every table created."""
    connections = ConnectionRegistry()
    connections.register_engine("default", db_engine)
    svc = EntityService(
        store=SchemaStore(schema_dir),
        connections=connections,
        registry=EntityConfigRegistry(),
        settings=EngineSettings(schema_path=schema_dir, default_page_size=25, max_page_size=100),
    )
    for model in DOCUMENTS:
        config = svc.entity(model)
        config.table.metadata.create_all(db_engine)
    create_pivots(db_engine)
    return svc
