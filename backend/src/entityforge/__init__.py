"""EntityForge - a schema-driven entity and query engine."""

from entityforge.errors import EntityForgeError
from entityforge.query.request import QueryRequest, QueryResult
from entityforge.schema.loader import SchemaDefinition, SchemaStore
from entityforge.service import EntityService
from entityforge.settings import EngineSettings

__all__ = [
    "EngineSettings",
    "EntityForgeError",
    "EntityService",
    "QueryRequest",
    "QueryResult",
    "SchemaDefinition",
    "SchemaStore",
]
