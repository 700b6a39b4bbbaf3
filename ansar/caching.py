"""In-process embedding cache and in-flight request deduplication."""

import asyncio
import re
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import numpy as np

from .config import config

logger = config.get_logger(__name__)

T = TypeVar("T")

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    """Lowercase, trim and collapse whitespace for consistent cache keys.

    Returns:
        The normalized key.
    """
    return _WHITESPACE_RE.sub(" ", query.lower().strip())


class EmbeddingCache:
    """Least-recently-used map from normalized text to embedding vector."""

    def __init__(self, capacity: int | None = None) -> None:
        """Initialize the cache.

        Args:
            capacity: Maximum number of vectors kept. If None, uses
                config.EMBEDDING_CACHE_SIZE.
        """
        self.capacity = (
            capacity if capacity is not None else config.EMBEDDING_CACHE_SIZE
        )
        self._entries: OrderedDict[str, np.ndarray] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, text: object) -> bool:
        return isinstance(text, str) and normalize_query(text) in self._entries

    def get(self, text: str) -> np.ndarray | None:
        """Look up the vector cached for ``text``, refreshing its recency.

        Returns:
            The cached vector, or None on a miss.
        """
        key = normalize_query(text)
        vector = self._entries.get(key)
        if vector is None:
            return None
        self._entries.move_to_end(key)
        return vector

    def set(self, text: str, vector: np.ndarray) -> None:
        """Store ``vector`` for ``text``, evicting the oldest entry when full."""
        key = normalize_query(text)
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.capacity:
            self._entries.popitem(last=False)
        self._entries[key] = vector

    def clear(self) -> None:
        """Drop every cached vector."""
        self._entries.clear()


class RequestDeduplicator:
    """Collapses concurrent calls sharing a normalized key into one execution."""

    def __init__(self) -> None:
        """Initialize an empty in-flight map."""
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    async def dedupe(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run ``factory`` once per in-flight normalized key.

        Callers arriving while a call for the same key is pending await the
        same task and receive the same result (or the same exception). The
        entry is removed as soon as the task settles.

        Returns:
            The factory result.
        """
        normalized = normalize_query(key)
        task = self._inflight.get(normalized)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[normalized] = task
            task.add_done_callback(lambda done: self._forget(normalized, done))
        else:
            logger.debug("Joining in-flight request for %r", normalized)

        # Shielded so one cancelled caller does not cancel the shared work.
        return await asyncio.shield(task)

    def _forget(self, normalized: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(normalized) is task:
            del self._inflight[normalized]
        if not task.cancelled():
            # Mark the exception retrieved; every waiter already receives it.
            task.exception()
