"""Relationship specs, pivot mutations and lifecycle actions."""

from entityforge.relationships.specs import (
    ManyToMany,
    ManyToManyThrough,
    OneToMany,
    RelationshipResolver,
    RelationshipSpec,
    build_spec,
)

__all__ = [
    "ManyToMany",
    "ManyToManyThrough",
    "OneToMany",
    "RelationshipResolver",
    "RelationshipSpec",
    "build_spec",
]
