"""Relationship lifecycle actions.

A relationship may declare what happens to its pivot rows when the owning
record is created, updated or deleted::

    "actions": {
        "on_create": {"attach": [{"related_id": 1, "pivot_data": {"granted_at": "now"}}]},
        "on_update": {"sync": "role_ids"},
        "on_delete": {"detach": "all"}
    }

Actions run on the connection of the entity write that triggered them, so a
failing action rolls the write back with it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date
from typing import Any

from sqlalchemy.engine import Connection

from entityforge.entity.configurator import RuntimeEntityConfig
from entityforge.entity.tables import utcnow
from entityforge.relationships import pivot
from entityforge.relationships.specs import RelationshipResolver

logger = logging.getLogger(__name__)

EVENTS = ("on_create", "on_update", "on_delete")


def resolve_pivot_data(data: Mapping[str, Any]) -> dict[str, Any]:
    """Replace the ``now`` and ``current_date`` placeholders with real values."""
    resolved: dict[str, Any] = {}
    for key, value in data.items():
        if value == "now":
            resolved[key] = utcnow()
        elif value == "current_date":
            resolved[key] = date.today()
        else:
            resolved[key] = value
    return resolved


def _sync_ids(value: Any) -> list[Any]:
    items = value if isinstance(value, (list, tuple)) else [value]
    return [i for i in items if i is not None and i != ""]


def run_actions(
    conn: Connection,
    resolver: RelationshipResolver,
    config: RuntimeEntityConfig,
    event: str,
    entity_id: Any,
    payload: Mapping[str, Any] | None = None,
) -> None:
    """Run every relationship action declared for ``event`` on one record.

    Raises:
        ValueError: If the event name is unknown
        EntityForgeError: Whatever the underlying pivot operation raises
    """
    if event not in EVENTS:
        raise ValueError(f"Unknown relationship event '{event}'")
    payload = payload or {}

    for definition in config.schema.relationships:
        action = definition.actions.get(event)
        if not action:
            continue

        spec = resolver.resolve(config, definition.name)
        related = resolver.related_config(config, spec)

        try:
            for item in action.get("attach", []):
                pivot.attach(
                    conn,
                    spec,
                    related,
                    entity_id,
                    [item["related_id"]],
                    resolve_pivot_data(item.get("pivot_data", {})),
                )

            sync = action.get("sync")
            if event == "on_update" and sync:
                field = sync if isinstance(sync, str) else f"{definition.name}_ids"
                if field in payload:
                    pivot.sync(conn, spec, related, entity_id, _sync_ids(payload[field]))
                else:
                    logger.debug(
                        "Sync field '%s' not in payload, skipping %s.%s",
                        field,
                        config.model,
                        definition.name,
                    )

            detach = action.get("detach")
            if detach == "all":
                pivot.detach(conn, spec, related, entity_id)
            elif isinstance(detach, list):
                pivot.detach(conn, spec, related, entity_id, detach)
        except Exception:
            logger.error(
                "Relationship action %s failed for %s.%s (id=%s)",
                event,
                config.model,
                definition.name,
                entity_id,
            )
            raise

        logger.debug("Ran %s actions for %s.%s (id=%s)", event, config.model, definition.name, entity_id)
