"""Database configuration and per-connection engine registry."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from entityforge.errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_CONNECTION = "default"


@dataclass
class DatabaseConfig:
    """Database connection configuration.

    Supports sqlite:/// and postgresql:// URL schemes.
    """

    url: str
    name: str = DEFAULT_CONNECTION

    @classmethod
    def from_env(
        cls, name: str | None = None, base_path: Path | None = None
    ) -> DatabaseConfig:
        """Create config for a named connection from environment variables.

        Resolution order for the default connection:
        1. DATABASE_URL env var
        2. Default: sqlite:///{base_path}/data/entityforge.db

        Named connections read DATABASE_URL_<NAME> (upper-cased) and have
        no fallback.

        Raises:
            StorageError: If a named connection is not configured
        """
        if name and name != DEFAULT_CONNECTION:
            env_key = f"DATABASE_URL_{name.upper()}"
            url = os.environ.get(env_key)
            if not url:
                raise StorageError(
                    f"Connection '{name}' is not configured (set {env_key})",
                    connection=name,
                )
            return cls(url=url, name=name)

        url = os.environ.get("DATABASE_URL")
        if url:
            return cls(url=url)

        if base_path:
            return cls(url=f"sqlite:///{base_path / 'data' / 'entityforge.db'}")

        return cls(url="sqlite:///entityforge.db")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgresql(self) -> bool:
        return self.url.startswith("postgresql")

    @property
    def sqlalchemy_url(self) -> str:
        """URL suitable for SQLAlchemy engine creation.

        Ensures postgresql:// URLs use the psycopg (v3) driver since
        the project depends on psycopg[binary], not psycopg2.
        """
        if self.url.startswith("postgresql://"):
            return self.url.replace("postgresql://", "postgresql+psycopg://", 1)
        return self.url


def create_db_engine(config: DatabaseConfig) -> Engine:
    """Create a SQLAlchemy engine for a connection config.

    Raises:
        StorageError: For unsupported URL schemes
    """
    if config.is_sqlite:
        db_path = config.url.replace("sqlite:///", "")
        if not db_path or db_path == ":memory:":
            # A single shared connection keeps the in-memory database alive
            return create_engine(
                "sqlite://",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(config.sqlalchemy_url)

    if config.is_postgresql:
        return create_engine(config.sqlalchemy_url, pool_pre_ping=True)

    raise StorageError(f"Unsupported database URL scheme: {config.url}")


class ConnectionRegistry:
    """Hands out one engine per named connection.

    Engines are created on first use from the environment unless a config
    was registered explicitly.
    """

    def __init__(self, base_path: Path | None = None):
        self.base_path = base_path
        self._configs: dict[str, DatabaseConfig] = {}
        self._engines: dict[str, Engine] = {}
        self._lock = threading.Lock()

    def register(self, config: DatabaseConfig) -> None:
        with self._lock:
            self._configs[config.name] = config
            stale = self._engines.pop(config.name, None)
        if stale is not None:
            stale.dispose()

    def register_engine(self, name: str, engine: Engine) -> None:
        """Register an already-built engine under a connection name."""
        with self._lock:
            self._engines[name] = engine

    def get_engine(self, name: str | None = None) -> Engine:
        key = name or DEFAULT_CONNECTION
        with self._lock:
            engine = self._engines.get(key)
            if engine is not None:
                return engine
            config = self._configs.get(key) or DatabaseConfig.from_env(
                key, self.base_path
            )
            engine = create_db_engine(config)
            self._engines[key] = engine
        logger.debug("Created engine for connection '%s'", key)
        return engine

    def dispose(self) -> None:
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            engine.dispose()
