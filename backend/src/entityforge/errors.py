"""Error taxonomy for EntityForge.

Every error raised by the engine derives from EntityForgeError and carries a
machine-readable ``code`` so the transport layer can map it to a response
without inspecting messages. Storage-layer exceptions never leak: they are
translated into one of these classes in ``persistence.transaction``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from entityforge.schema.validator import ValidationIssue


class EntityForgeError(Exception):
    """Base class for all engine errors."""

    code = "ENTITYFORGE_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.details:
            result["details"] = self.details
        return result


# ---------------------------------------------------------------------------
# Schema errors
# ---------------------------------------------------------------------------


class SchemaNotFound(EntityForgeError):
    code = "SCHEMA_NOT_FOUND"


class SchemaValidationError(EntityForgeError):
    """Raised when a schema document fails structural or semantic checks."""

    code = "SCHEMA_INVALID"

    def __init__(self, message: str, issues: list[ValidationIssue] | None = None):
        super().__init__(message)
        self.issues = issues or []

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["issues"] = [
            {"path": i.path, "message": i.message} for i in self.issues
        ]
        return result


# ---------------------------------------------------------------------------
# Relationship errors
# ---------------------------------------------------------------------------


class UnknownRelationship(EntityForgeError):
    code = "UNKNOWN_RELATIONSHIP"


class UnsupportedRelationshipType(EntityForgeError):
    code = "UNSUPPORTED_RELATIONSHIP_TYPE"


class MissingPivotConfig(EntityForgeError):
    code = "MISSING_PIVOT_CONFIG"


class RelationshipIntegrityError(EntityForgeError):
    code = "RELATIONSHIP_INTEGRITY"


# ---------------------------------------------------------------------------
# Query errors
# ---------------------------------------------------------------------------


class SortFieldError(EntityForgeError):
    code = "INVALID_SORT_FIELD"


class FilterValueError(EntityForgeError):
    code = "INVALID_FILTER"


# ---------------------------------------------------------------------------
# Record errors
# ---------------------------------------------------------------------------


class NotFoundError(EntityForgeError):
    code = "NOT_FOUND"


class ConflictError(EntityForgeError):
    code = "CONFLICT"


class ReadonlyFieldError(EntityForgeError):
    code = "READONLY_FIELD"


class FieldValueError(EntityForgeError):
    """A write payload value does not match its field, or a required field is missing."""

    code = "INVALID_FIELD_VALUE"


class StorageError(EntityForgeError):
    """Storage failure that has no more specific translation."""

    code = "STORAGE_ERROR"
