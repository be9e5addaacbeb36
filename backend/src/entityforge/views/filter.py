"""Context-specific views of a schema.

A client rarely needs the whole schema document. A list page needs the
listable columns and the default sort, a form needs the writable fields
and their validation hints, and a permission check needs only the model's
identity. ``filter_for_context`` cuts the document down to what one
context needs:

    full (or None)  the whole normalized document
    meta            identity, titles and permissions only
    list            listable fields, default sort, actions
    detail          viewable fields, details, relationships, actions
    create / edit   writable fields shown in that form
    form            union of the create and edit fields

A comma-separated context such as ``"list,form"`` returns the shared
identity keys plus a ``contexts`` mapping with one entry per known context.
An unknown single context returns the full document.
"""

from __future__ import annotations

import copy
from typing import Any

from entityforge.schema.loader import FieldDefinition, SchemaDefinition

CONTEXTS = ("meta", "list", "detail", "create", "edit", "form")
FULL = "full"


def _shown_in(field: FieldDefinition, context: str, fallback: bool) -> bool:
    if field.show_in is not None:
        return context in field.show_in
    return fallback


def _base(schema: SchemaDefinition) -> dict[str, Any]:
    title = schema.title or schema.model.capitalize()
    base: dict[str, Any] = {
        "model": schema.model,
        "title": title,
        "singular_title": schema.singular_title or title,
        "primary_key": schema.primary_key,
    }
    if schema.title_field:
        base["title_field"] = schema.title_field
    if schema.description:
        base["description"] = schema.description
    if schema.permissions:
        base["permissions"] = dict(schema.permissions)
    return base


def _list_data(schema: SchemaDefinition) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for name, field in schema.fields.items():
        # listable=false always wins over show_in
        if not field.listable or not _shown_in(field, "list", True):
            continue
        entry: dict[str, Any] = {
            "type": field.type,
            "label": field.label,
            "sortable": field.sortable,
            "filterable": field.filterable,
        }
        if field.width is not None:
            entry["width"] = field.width
        if field.filterable:
            entry["filter_type"] = field.effective_filter_type
        fields[name] = entry

    data: dict[str, Any] = {"fields": fields, "default_sort": dict(schema.default_sort)}
    if schema.actions:
        data["actions"] = copy.deepcopy(schema.actions)
    return data


def _detail_data(schema: SchemaDefinition) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for name, field in schema.fields.items():
        if not _shown_in(field, "detail", field.viewable):
            continue
        entry: dict[str, Any] = {
            "type": field.type,
            "label": field.label,
            "editable": field.writable,
            "readonly": not field.writable,
        }
        if field.description:
            entry["description"] = field.description
        if field.default is not None:
            entry["default"] = field.default
        fields[name] = entry

    raw = schema.raw
    data: dict[str, Any] = {"fields": fields}
    for key in ("details", "relationships", "actions"):
        if raw.get(key):
            data[key] = copy.deepcopy(raw[key])
    if schema.title_field:
        data["title_field"] = schema.title_field
    return data


def _form_fields(schema: SchemaDefinition, context: str) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for name, field in schema.fields.items():
        # Readonly and generated fields never reach a form
        if not field.writable or not _shown_in(field, context, True):
            continue
        entry: dict[str, Any] = {
            "type": field.type,
            "label": field.label,
            "required": field.required,
        }
        if field.validation:
            entry["validation"] = copy.deepcopy(field.validation)
        if field.placeholder:
            entry["placeholder"] = field.placeholder
        if field.description:
            entry["description"] = field.description
        if field.default is not None:
            entry["default"] = field.default
        if field.show_in is not None:
            entry["show_in"] = list(field.show_in)
        fields[name] = entry
    return fields


def _context_data(schema: SchemaDefinition, context: str) -> dict[str, Any] | None:
    if context == "meta":
        return {}
    if context == "list":
        return _list_data(schema)
    if context == "detail":
        return _detail_data(schema)
    if context in ("create", "edit"):
        return {"fields": _form_fields(schema, context)}
    if context == "form":
        fields = _form_fields(schema, "create")
        for name, entry in _form_fields(schema, "edit").items():
            fields.setdefault(name, entry)
        return {"fields": fields}
    return None


def filter_for_context(schema: SchemaDefinition, context: str | None = None) -> dict[str, Any]:
    """Build the view of ``schema`` for a context. Pure: the schema is never modified."""
    if context is None or context.strip() in ("", FULL):
        return copy.deepcopy(schema.to_dict())

    if "," in context:
        names = [c.strip() for c in context.split(",") if c.strip()]
        view = _base(schema)
        if schema.actions:
            view["actions"] = copy.deepcopy(schema.actions)
        contexts: dict[str, Any] = {}
        for name in names:
            data = _context_data(schema, name)
            if data is not None:
                contexts[name] = data
        view["contexts"] = contexts
        return view

    data = _context_data(schema, context.strip())
    if data is None:
        return copy.deepcopy(schema.to_dict())
    return {**_base(schema), **data}
