"""Persistence layer - connection configuration and transaction scope."""

from entityforge.persistence.config import (
    ConnectionRegistry,
    DatabaseConfig,
    create_db_engine,
)
from entityforge.persistence.transaction import read_scope, transaction

__all__ = [
    "ConnectionRegistry",
    "DatabaseConfig",
    "create_db_engine",
    "read_scope",
    "transaction",
]
