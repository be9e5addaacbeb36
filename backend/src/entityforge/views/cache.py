"""Single-flight cache of schema views keyed by (model, context).

Each key moves through ``absent -> loading -> ready | error``. The first
caller for an absent key starts the load as an asyncio task; every caller,
the first included, awaits that task through ``asyncio.shield`` so a
waiter that is cancelled or times out never cancels the load for the
others. Ready and error outcomes stay cached until invalidated. A load
task that is itself cancelled leaves the key absent again.

Every caller gets its own deep copy of the view, so mutating a result
never changes what later callers see.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

logger = logging.getLogger(__name__)

LOADING = "loading"
READY = "ready"
ERROR = "error"

ViewLoader = Callable[[str, str], Awaitable[dict[str, Any]]]


@dataclass
class _Entry:
    state: str
    task: asyncio.Task
    value: dict[str, Any] | None = None
    error: BaseException | None = None


class SchemaViewCache:
    def __init__(self, loader: ViewLoader):
        self._loader = loader
        self._entries: dict[tuple[str, str], _Entry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(model: str, context: str | None) -> tuple[str, str]:
        return (model, (context or "full").strip() or "full")

    def state(self, model: str, context: str | None = None) -> str | None:
        """Current state of a key, or None when absent."""
        with self._lock:
            entry = self._entries.get(self.key(model, context))
            return entry.state if entry else None

    async def get(self, model: str, context: str | None = None) -> dict[str, Any]:
        """Get the view for (model, context), loading it at most once.

        Raises:
            Exception: The load's error, cached and re-raised to every caller
            asyncio.CancelledError: If this caller is cancelled, or the load task was
        """
        key = self.key(model, context)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                task = asyncio.ensure_future(self._loader(*key))
                entry = _Entry(state=LOADING, task=task)
                self._entries[key] = entry
                task.add_done_callback(partial(self._settle, key, entry))
                logger.debug("Loading schema view %s", key)
            state, value, error, task = entry.state, entry.value, entry.error, entry.task

        if state == READY:
            return copy.deepcopy(value)
        if state == ERROR:
            raise error
        return copy.deepcopy(await asyncio.shield(task))

    def _settle(self, key: tuple[str, str], entry: _Entry, task: asyncio.Task) -> None:
        with self._lock:
            current = self._entries.get(key)
            if task.cancelled():
                if current is entry:
                    del self._entries[key]
                logger.debug("Load of schema view %s was cancelled", key)
                return
            error = task.exception()
            # Invalidated while loading; the outcome still reaches the waiters
            if current is not entry:
                return
            if error is not None:
                entry.state, entry.error = ERROR, error
                logger.warning("Loading schema view %s failed: %s", key, error)
            else:
                entry.state, entry.value = READY, task.result()

    def invalidate(self, model: str, context: str | None = None) -> None:
        """Drop one (model, context) entry, or every context of the model."""
        with self._lock:
            if context is not None:
                self._entries.pop(self.key(model, context), None)
            else:
                for key in [k for k in self._entries if k[0] == model]:
                    del self._entries[key]
        logger.debug("Invalidated schema views for '%s' (context=%s)", model, context)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
