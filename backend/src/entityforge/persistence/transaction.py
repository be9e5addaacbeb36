"""Transaction scope and storage error translation."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from entityforge.errors import ConflictError, EntityForgeError, StorageError

logger = logging.getLogger(__name__)


@contextmanager
def transaction(
    engine: Engine,
    integrity_error: type[EntityForgeError] = ConflictError,
) -> Iterator[Connection]:
    """Run a block inside one storage transaction.

    Commits when the block exits normally and rolls back on any exception.
    Driver errors are re-raised as engine errors; an integrity violation
    becomes ``integrity_error`` (ConflictError for entity writes).
    """
    try:
        with engine.begin() as conn:
            yield conn
    except EntityForgeError:
        raise
    except IntegrityError as exc:
        logger.warning("Integrity violation, transaction rolled back: %s", exc.orig)
        raise integrity_error(
            f"Constraint violation: {exc.orig}"
        ) from exc
    except SQLAlchemyError as exc:
        logger.error("Storage failure, transaction rolled back", exc_info=True)
        raise StorageError(f"Storage failure: {exc}") from exc


@contextmanager
def read_scope(engine: Engine) -> Iterator[Connection]:
    """Open a connection for reads, translating driver errors."""
    try:
        with engine.connect() as conn:
            yield conn
    except EntityForgeError:
        raise
    except SQLAlchemyError as exc:
        logger.error("Storage failure during read", exc_info=True)
        raise StorageError(f"Storage failure: {exc}") from exc
