"""
Validation of EntityForge schema documents.

Structural rules (required keys, the closed field-type set, many-to-many
pivot configuration) live in JSON Schema files under ``schemas/``.
Rules that span several parts of a document are checked here in Python:

- the primary key must be a declared field
- relationship names must be unique
- the document's ``model`` must match the model it was requested as

Usage:
    from entityforge.schema.validator import validate, validate_schema_dir

    doc = validate(raw, model="products")      # raises SchemaValidationError
    issues = validate_schema_dir(Path("schema"))  # collects, never raises
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from entityforge.errors import SchemaValidationError
from entityforge.schema.normalizer import normalize_document

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"
_SCHEMA_FILES = ("_defs.schema.json", "entity.schema.json")

DOCUMENT_SUFFIXES = (".json", ".yaml", ".yml")


@dataclass
class ValidationIssue:
    """A single validation finding for a schema document."""

    message: str
    path: str = ""          # Slash-separated path within the document, e.g. "fields/price/type"
    file: Path | None = None

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        src = f"{self.file}" if self.file else "<schema>"
        return f"{src}{loc}: {self.message}"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load_schema(name: str) -> dict[str, Any]:
    with (_SCHEMAS_DIR / name).open() as fh:
        return json.load(fh)


@lru_cache(maxsize=1)
def _document_validator() -> Draft202012Validator:
    """Build the document validator once; the schema files never change at runtime."""
    resources = []
    for name in _SCHEMA_FILES:
        schema = _load_schema(name)
        resources.append(
            (schema["$id"], Resource(contents=schema, specification=DRAFT202012))
        )
    registry = Registry().with_resources(resources)
    return Draft202012Validator(_load_schema("entity.schema.json"), registry=registry)


def _json_path(error: ValidationError) -> str:
    """Convert a jsonschema ValidationError path to a readable string."""
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


def _semantic_issues(doc: dict[str, Any], model: str | None) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    if model is not None and doc["model"] != model:
        issues.append(
            ValidationIssue(
                message=f"Schema model name '{doc['model']}' does not match requested model '{model}'",
                path="model",
            )
        )

    primary_key = doc.get("primary_key", "id")
    if primary_key not in doc["fields"]:
        issues.append(
            ValidationIssue(
                message=f"Primary key '{primary_key}' is not a declared field",
                path="primary_key",
            )
        )

    seen: set[str] = set()
    for i, rel in enumerate(doc.get("relationships", [])):
        name = rel["name"]
        if name in seen:
            issues.append(
                ValidationIssue(
                    message=f"Duplicate relationship name '{name}'",
                    path=f"relationships[{i}]/name",
                )
            )
        seen.add(name)

    for name in doc.get("default_sort") or {}:
        if name not in doc["fields"]:
            issues.append(
                ValidationIssue(
                    message=f"Default sort field '{name}' is not a declared field",
                    path=f"default_sort/{name}",
                )
            )

    return issues


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def collect_issues(raw: Any, model: str | None = None) -> list[ValidationIssue]:
    """Validate a raw document and return every issue found (empty when valid)."""
    if not isinstance(raw, dict):
        return [ValidationIssue(message="Schema document must be an object")]

    doc = normalize_document(raw)
    validator = _document_validator()
    issues = [
        ValidationIssue(message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(doc), key=_json_path)
    ]
    if issues:
        return issues
    return _semantic_issues(doc, model)


def validate(raw: Any, model: str | None = None) -> dict[str, Any]:
    """Validate a raw schema document.

    Args:
        raw:   The parsed JSON/YAML document.
        model: The model name the document was requested as, if any.

    Returns:
        The normalized document.

    Raises:
        SchemaValidationError: If any structural or semantic rule fails.
    """
    issues = collect_issues(raw, model)
    if issues:
        label = model or (raw.get("model") if isinstance(raw, dict) else None) or "<unknown>"
        raise SchemaValidationError(
            f"Schema for model '{label}' is invalid: {issues[0].message}",
            issues=issues,
        )
    return normalize_document(raw)


def read_document(path: Path) -> Any:
    """Parse a schema document from a .json, .yaml or .yml file.

    Raises:
        SchemaValidationError: If the file cannot be parsed.
    """
    try:
        with path.open() as fh:
            if path.suffix == ".json":
                return json.load(fh)
            return yaml.safe_load(fh)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise SchemaValidationError(
            f"Schema file {path} could not be parsed: {exc}",
            issues=[ValidationIssue(message=f"Parse error: {exc}", file=path)],
        ) from exc


def validate_schema_dir(schema_dir: Path) -> list[ValidationIssue]:
    """
    Validate every schema document under *schema_dir*.

    Walks the directory and one level of connection subdirectories. The
    model name is taken from the file stem.

    Returns:
        A flat list of :class:`ValidationIssue` objects across all files.
        Empty list means all documents are valid.
    """
    if not schema_dir.is_dir():
        return [
            ValidationIssue(
                message=f"Schema directory does not exist: {schema_dir}",
                file=schema_dir,
            )
        ]

    files = [p for p in sorted(schema_dir.iterdir()) if p.suffix in DOCUMENT_SUFFIXES]
    for sub in sorted(p for p in schema_dir.iterdir() if p.is_dir()):
        files.extend(p for p in sorted(sub.iterdir()) if p.suffix in DOCUMENT_SUFFIXES)

    all_issues: list[ValidationIssue] = []
    for path in files:
        try:
            raw = read_document(path)
        except SchemaValidationError as exc:
            all_issues.extend(exc.issues)
            continue
        for issue in collect_issues(raw, model=path.stem):
            issue.file = path
            all_issues.append(issue)

    if all_issues:
        logger.warning("Schema validation found %d issue(s) in %s", len(all_issues), schema_dir)
    return all_issues
