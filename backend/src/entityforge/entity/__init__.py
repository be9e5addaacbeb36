"""Runtime entity configuration, table rendering and record writes."""

from entityforge.entity.configurator import (
    EntityConfigRegistry,
    RuntimeEntityConfig,
    configure,
    default_registry,
)

__all__ = [
    "EntityConfigRegistry",
    "RuntimeEntityConfig",
    "configure",
    "default_registry",
]
