"""Pivot-table mutations for many-to-many relationships.

Every function works on a connection the caller already holds inside a
transaction, so a relationship change can share one transaction with the
entity write that triggered it.

Links are inserted with ON CONFLICT DO NOTHING on SQLite and PostgreSQL, so
a link added concurrently by another transaction is skipped rather than
duplicated. That relies on a unique constraint over the pivot's
(foreign_key, related_key) pair; pivots without one can still collect
duplicates under concurrent attaches.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import delete, insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from entityforge.entity.configurator import RuntimeEntityConfig
from entityforge.entity.tables import CREATED_AT, UPDATED_AT, utcnow
from entityforge.errors import RelationshipIntegrityError, UnsupportedRelationshipType
from entityforge.relationships.specs import ManyToMany, RelationshipSpec

logger = logging.getLogger(__name__)


def require_many_to_many(spec: RelationshipSpec) -> ManyToMany:
    """Only plain many-to-many relationships own a pivot that can be mutated.

    Raises:
        UnsupportedRelationshipType: For one_to_many and many_to_many_through
    """
    if not isinstance(spec, ManyToMany):
        raise UnsupportedRelationshipType(
            f"Relationship '{spec.name}' cannot be attached, detached or synced",
            relationship=spec.name,
        )
    return spec


def _unique_ids(related: RuntimeEntityConfig, ids: Iterable[Any], relation: str) -> list[Any]:
    cast = related.casts[related.primary_key]
    result: list[Any] = []
    seen: set[Any] = set()
    for raw in ids:
        try:
            value = cast(raw)
        except (TypeError, ValueError):
            raise RelationshipIntegrityError(
                f"Invalid id {raw!r} for relationship '{relation}'",
                relationship=relation,
            ) from None
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def _verify_related(
    conn: Connection, related: RuntimeEntityConfig, ids: list[Any], relation: str
) -> None:
    if not ids:
        return
    pk = related.column(related.primary_key)
    stmt = select(pk).where(pk.in_(ids))
    if related.soft_delete_column:
        stmt = stmt.where(related.column(related.soft_delete_column).is_(None))
    found = set(conn.execute(stmt).scalars())
    missing = [i for i in ids if i not in found]
    if missing:
        raise RelationshipIntegrityError(
            f"Related '{related.model}' records do not exist: {missing}",
            relationship=relation,
            missing=missing,
        )


def linked_ids(conn: Connection, spec: ManyToMany, parent_id: Any) -> list[Any]:
    """Related ids currently linked to the parent through the pivot."""
    pivot = spec.pivot()
    stmt = (
        select(pivot.c[spec.related_key])
        .where(pivot.c[spec.foreign_key] == parent_id)
        .order_by(pivot.c[spec.related_key])
    )
    return list(conn.execute(stmt).scalars())


def _insert_links(
    conn: Connection,
    spec: ManyToMany,
    parent_id: Any,
    ids: list[Any],
    pivot_data: Mapping[str, Any] | None = None,
) -> None:
    if not ids:
        return
    data = dict(pivot_data or {})
    pivot = spec.pivot(tuple(data))
    now = utcnow()
    rows = []
    for related_id in ids:
        row = {spec.foreign_key: parent_id, spec.related_key: related_id, **data}
        if spec.pivot_timestamps:
            row[CREATED_AT] = now
            row[UPDATED_AT] = now
        rows.append(row)
    try:
        conn.execute(_link_insert(conn, pivot), rows)
    except IntegrityError as exc:
        raise RelationshipIntegrityError(
            f"Could not link {ids} via {spec.pivot_table}: {exc.orig}",
            relationship=spec.name,
        ) from exc


def _link_insert(conn: Connection, pivot):
    dialect = conn.dialect.name
    if dialect == "postgresql":
        return postgresql.insert(pivot).on_conflict_do_nothing()
    if dialect == "sqlite":
        return sqlite.insert(pivot).on_conflict_do_nothing()
    return insert(pivot)


def attach(
    conn: Connection,
    spec: RelationshipSpec,
    related: RuntimeEntityConfig,
    parent_id: Any,
    ids: Iterable[Any],
    pivot_data: Mapping[str, Any] | None = None,
) -> list[Any]:
    """Link related ids to the parent, skipping links that already exist.

    Returns:
        The ids that were newly linked

    Raises:
        RelationshipIntegrityError: If any id does not exist in the related table
    """
    spec = require_many_to_many(spec)
    wanted = _unique_ids(related, ids, spec.name)
    _verify_related(conn, related, wanted, spec.name)

    existing = set(linked_ids(conn, spec, parent_id))
    missing = [i for i in wanted if i not in existing]
    _insert_links(conn, spec, parent_id, missing, pivot_data)
    logger.debug(
        "Attached %d of %d id(s) to %s via %s", len(missing), len(wanted), parent_id, spec.pivot_table
    )
    return missing


def detach(
    conn: Connection,
    spec: RelationshipSpec,
    related: RuntimeEntityConfig,
    parent_id: Any,
    ids: Iterable[Any] | None = None,
) -> int:
    """Unlink the listed ids from the parent, or every linked id when ``ids`` is None.

    Returns:
        Number of pivot rows removed
    """
    spec = require_many_to_many(spec)
    pivot = spec.pivot()
    stmt = delete(pivot).where(pivot.c[spec.foreign_key] == parent_id)
    if ids is not None:
        targets = _unique_ids(related, ids, spec.name)
        if not targets:
            return 0
        stmt = stmt.where(pivot.c[spec.related_key].in_(targets))
    removed = conn.execute(stmt).rowcount
    logger.debug("Detached %d link(s) from %s via %s", removed, parent_id, spec.pivot_table)
    return removed


def sync(
    conn: Connection,
    spec: RelationshipSpec,
    related: RuntimeEntityConfig,
    parent_id: Any,
    ids: Iterable[Any],
) -> dict[str, list[Any]]:
    """Make the parent's linked set exactly ``ids``.

    Returns:
        ``{"attached": [...], "detached": [...]}``

    Raises:
        RelationshipIntegrityError: If any id does not exist in the related table
    """
    spec = require_many_to_many(spec)
    wanted = _unique_ids(related, ids, spec.name)
    _verify_related(conn, related, wanted, spec.name)

    existing = linked_ids(conn, spec, parent_id)
    wanted_set = set(wanted)
    existing_set = set(existing)
    to_detach = [i for i in existing if i not in wanted_set]
    to_attach = [i for i in wanted if i not in existing_set]

    if to_detach:
        pivot = spec.pivot()
        conn.execute(
            delete(pivot).where(
                pivot.c[spec.foreign_key] == parent_id,
                pivot.c[spec.related_key].in_(to_detach),
            )
        )
    _insert_links(conn, spec, parent_id, to_attach)
    logger.debug(
        "Synced %s via %s: +%d -%d", parent_id, spec.pivot_table, len(to_attach), len(to_detach)
    )
    return {"attached": to_attach, "detached": to_detach}
