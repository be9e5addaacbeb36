"""Engine settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass
class EngineSettings:
    """Tunables shared by the schema store and the query engine."""

    schema_path: Path
    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> EngineSettings:
        """Create settings from environment variables.

        Resolution order for the schema directory:
        1. ENTITYFORGE_SCHEMA_PATH env var
        2. {base_path}/schema
        3. ./schema
        """
        schema_path = os.environ.get("ENTITYFORGE_SCHEMA_PATH")
        if schema_path:
            path = Path(schema_path)
        elif base_path:
            path = base_path / "schema"
        else:
            path = Path("schema")

        max_size = _int_env("ENTITYFORGE_MAX_PAGE_SIZE", MAX_PAGE_SIZE)
        default_size = min(
            _int_env("ENTITYFORGE_DEFAULT_PAGE_SIZE", DEFAULT_PAGE_SIZE), max_size
        )
        return cls(
            schema_path=path,
            default_page_size=default_size,
            max_page_size=max_size,
        )
