"""Load, validate and cache schema documents."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from entityforge.core.types import get_field_type
from entityforge.errors import SchemaNotFound
from entityforge.schema.validator import DOCUMENT_SUFFIXES, read_document, validate

logger = logging.getLogger(__name__)

RELATIONSHIP_TYPES = ("one_to_many", "many_to_many", "many_to_many_through")


@dataclass
class FieldDefinition:
    name: str
    type: str
    label: str
    required: bool = False
    sortable: bool = False
    filterable: bool = False
    searchable: bool = False
    listable: bool = True
    viewable: bool = True
    readonly: bool = False
    auto_increment: bool = False
    default: Any = None
    validation: dict[str, Any] = field(default_factory=dict)
    filter_type: str | None = None
    description: str | None = None
    placeholder: str | None = None
    width: str | int | None = None
    show_in: list[str] | None = None

    @property
    def writable(self) -> bool:
        return not self.auto_increment and not self.readonly

    @property
    def effective_filter_type(self) -> str:
        """Declared filter type, or the field type's default."""
        return self.filter_type or get_field_type(self.type).default_filter_type


@dataclass
class RelationshipDefinition:
    """A declared relationship to another model.

    ``model`` is the related model name and defaults to the relationship
    name. The ``first_*``/``second_*`` keys are only used by
    many_to_many_through relationships.
    """

    name: str
    type: str
    model: str
    title: str | None = None
    foreign_key: str | None = None
    related_key: str | None = None
    pivot_table: str | None = None
    pivot_timestamps: bool = False
    through: str | None = None
    first_pivot_table: str | None = None
    first_foreign_key: str | None = None
    first_related_key: str | None = None
    second_pivot_table: str | None = None
    second_foreign_key: str | None = None
    second_related_key: str | None = None
    actions: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass
class DetailConfig:
    """A one-to-many child listing shown on a record's detail page."""

    model: str
    foreign_key: str
    list_fields: list[str] | None = None
    title: str | None = None

    def as_relationship(self) -> RelationshipDefinition:
        return RelationshipDefinition(
            name=self.model,
            type="one_to_many",
            model=self.model,
            title=self.title,
            foreign_key=self.foreign_key,
        )


@dataclass
class SchemaDefinition:
    model: str
    table: str
    fields: dict[str, FieldDefinition]
    primary_key: str = "id"
    connection: str | None = None
    timestamps: bool = True
    soft_delete: bool = False
    relationships: list[RelationshipDefinition] = field(default_factory=list)
    details: list[DetailConfig] = field(default_factory=list)
    permissions: dict[str, str] = field(default_factory=dict)
    actions: list[dict[str, Any]] = field(default_factory=list)
    default_sort: dict[str, str] = field(default_factory=dict)
    title: str | None = None
    singular_title: str | None = None
    title_field: str | None = None
    description: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    def get_relationship(self, name: str) -> RelationshipDefinition | None:
        """Find a relationship by name, falling back to detail configs."""
        for rel in self.relationships:
            if rel.name == name:
                return rel
        for detail in self.details:
            if detail.model == name:
                return detail.as_relationship()
        return None

    def to_dict(self) -> dict[str, Any]:
        """The normalized document, with the effective connection applied."""
        result = dict(self.raw)
        result["connection"] = self.connection
        return result


# ---------------------------------------------------------------------------
# Document → dataclasses
# ---------------------------------------------------------------------------


def _to_label(name: str) -> str:
    """Convert snake_case to Title Case."""
    return name.replace("_", " ").title()


def _resolve_field(name: str, data: dict[str, Any]) -> FieldDefinition:
    return FieldDefinition(
        name=name,
        type=data.get("type", "string"),
        label=data.get("label", _to_label(name)),
        required=data.get("required", False),
        sortable=data.get("sortable", False),
        filterable=data.get("filterable", False),
        searchable=data.get("searchable", False),
        listable=data.get("listable", True),
        viewable=data.get("viewable", True),
        readonly=data.get("readonly", False),
        auto_increment=data.get("auto_increment", False),
        default=data.get("default"),
        validation=data.get("validation", {}),
        filter_type=data.get("filter_type"),
        description=data.get("description"),
        placeholder=data.get("placeholder"),
        width=data.get("width"),
        show_in=data.get("show_in"),
    )


def _resolve_relationship(data: dict[str, Any]) -> RelationshipDefinition:
    return RelationshipDefinition(
        name=data["name"],
        type=data["type"],
        model=data.get("model", data["name"]),
        title=data.get("title"),
        foreign_key=data.get("foreign_key"),
        related_key=data.get("related_key"),
        pivot_table=data.get("pivot_table"),
        pivot_timestamps=data.get("pivot_timestamps", False),
        through=data.get("through"),
        first_pivot_table=data.get("first_pivot_table"),
        first_foreign_key=data.get("first_foreign_key"),
        first_related_key=data.get("first_related_key"),
        second_pivot_table=data.get("second_pivot_table"),
        second_foreign_key=data.get("second_foreign_key"),
        second_related_key=data.get("second_related_key"),
        actions=data.get("actions", {}),
    )


def build_schema(doc: dict[str, Any]) -> SchemaDefinition:
    """Build a SchemaDefinition from a validated, normalized document."""
    fields = {name: _resolve_field(name, data) for name, data in doc["fields"].items()}
    details = [
        DetailConfig(
            model=d["model"],
            foreign_key=d["foreign_key"],
            list_fields=d.get("list_fields"),
            title=d.get("title"),
        )
        for d in doc.get("details", [])
    ]
    return SchemaDefinition(
        model=doc["model"],
        table=doc["table"],
        fields=fields,
        primary_key=doc.get("primary_key", "id"),
        connection=doc.get("connection"),
        timestamps=doc.get("timestamps", True),
        soft_delete=doc.get("soft_delete", False),
        relationships=[_resolve_relationship(r) for r in doc.get("relationships", [])],
        details=details,
        permissions=doc.get("permissions", {}),
        actions=doc.get("actions", []),
        default_sort=doc.get("default_sort", {}),
        title=doc.get("title"),
        singular_title=doc.get("singular_title"),
        title_field=doc.get("title_field"),
        description=doc.get("description"),
        raw=doc,
    )


def parse_schema(raw: dict[str, Any], model: str | None = None) -> SchemaDefinition:
    """Validate a raw document and build its SchemaDefinition in one step."""
    return build_schema(validate(raw, model=model))


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SchemaStore:
    """Loads schema documents from a directory and memoizes them.

    Layout::

        <schema_path>/<model>.json              default document
        <schema_path>/<connection>/<model>.json connection-scoped document

    YAML (.yaml/.yml) documents are accepted alongside JSON.
    """

    def __init__(self, schema_path: Path):
        self.schema_path = schema_path
        self._cache: dict[tuple[str, str | None], SchemaDefinition] = {}
        self._lock = threading.Lock()
        self.load_count = 0

    def _find_document(self, model: str, connection: str | None) -> Path | None:
        directories = []
        if connection is not None:
            directories.append(self.schema_path / connection)
        directories.append(self.schema_path)

        for directory in directories:
            for suffix in DOCUMENT_SUFFIXES:
                candidate = directory / f"{model}{suffix}"
                if candidate.is_file():
                    return candidate
        return None

    def _load(self, model: str, connection: str | None) -> SchemaDefinition:
        path = self._find_document(model, connection)
        if path is None:
            raise SchemaNotFound(
                f"Schema file not found for model: {model}",
                model=model,
                connection=connection,
            )

        logger.debug("Loading schema for '%s' (connection=%s) from %s", model, connection, path)
        self.load_count += 1
        doc = validate(read_document(path), model=model)
        schema = build_schema(doc)
        if connection is not None:
            schema.connection = connection
        return schema

    def resolve(self, model: str, connection: str | None = None) -> SchemaDefinition:
        """Resolve the schema for a model, optionally under a connection override.

        Raises:
            SchemaNotFound: If no document exists for the model
            SchemaValidationError: If the document is invalid
        """
        key = (model, connection)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        schema = self._load(model, connection)
        with self._lock:
            # Another thread may have loaded the same key meanwhile; keep the first
            return self._cache.setdefault(key, schema)

    def invalidate(self, model: str) -> None:
        """Drop every cached entry for a model, across connections."""
        with self._lock:
            for key in [k for k in self._cache if k[0] == model]:
                del self._cache[key]
        logger.debug("Invalidated cached schema for '%s'", model)

    def invalidate_all(self) -> None:
        with self._lock:
            self._cache.clear()

    def list_models(self) -> list[str]:
        """Model names with a default document."""
        if not self.schema_path.is_dir():
            return []
        return sorted(
            {p.stem for p in self.schema_path.iterdir() if p.suffix in DOCUMENT_SUFFIXES}
        )
