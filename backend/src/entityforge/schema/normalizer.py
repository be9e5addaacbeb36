"""Normalize raw schema documents before validation.

Schema documents are written by hand and by generators, so a few
equivalent spellings are accepted and folded into one canonical shape:

- ``fields`` given as a list of ``{"name": ...}`` dicts becomes a mapping
- ``defaultValue`` becomes ``default``
- ``editable: false`` becomes ``readonly: true``
- a field without ``type`` is a ``string``
- the primary key field is always ``readonly``
"""

from __future__ import annotations

import copy
from typing import Any


def normalize_document(raw: dict[str, Any]) -> dict[str, Any]:
    """Return a normalized deep copy of a raw schema document.

    Values that are structurally wrong (e.g. ``fields`` is a string) are left
    untouched so that validation can report them.
    """
    doc = copy.deepcopy(raw)

    fields = doc.get("fields")
    if isinstance(fields, list) and all(
        isinstance(f, dict) and "name" in f for f in fields
    ):
        doc["fields"] = {f["name"]: {k: v for k, v in f.items() if k != "name"} for f in fields}
        fields = doc["fields"]

    if isinstance(fields, dict):
        primary_key = doc.get("primary_key", "id")
        for name, field in fields.items():
            if not isinstance(field, dict):
                continue
            field.setdefault("type", "string")
            if "defaultValue" in field and "default" not in field:
                field["default"] = field.pop("defaultValue")
            if field.get("editable") is False:
                field["readonly"] = True
            if name == primary_key:
                field["readonly"] = True

    # Legacy single detail block folds into the details list
    detail = doc.get("detail")
    if isinstance(detail, dict):
        details = doc.setdefault("details", [])
        if isinstance(details, list) and detail not in details:
            details.insert(0, detail)

    return doc
