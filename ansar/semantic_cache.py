"""Embedding-keyed answer cache and its write-back path."""

import asyncio
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import numpy as np

from .background import DetachedTasks
from .config import config
from .models import CacheLookup, SemanticCacheEntry, SourceBadge
from .rate_limiter import STORE_SERVICE, RateLimiter
from .store import DocumentStore

logger = config.get_logger(__name__)

HIGH_CONFIDENCE_MIN_SOURCES = 3
HIGH_CONFIDENCE_MIN_SIMILARITY = 0.8


def get_cache_ttl_days(source_count: int, avg_similarity: float) -> int:
    """Pick how long a generated answer stays cached.

    Well-grounded answers (3+ sources, average similarity above 0.8) live for
    CACHE_TTL_HIGH_DAYS; everything else for CACHE_TTL_DEFAULT_DAYS.
    Low-confidence answers are never cached at all.

    Returns:
        TTL in days.
    """
    if (
        source_count >= HIGH_CONFIDENCE_MIN_SOURCES
        and avg_similarity > HIGH_CONFIDENCE_MIN_SIMILARITY
    ):
        return config.CACHE_TTL_HIGH_DAYS
    return config.CACHE_TTL_DEFAULT_DAYS


def average_similarity(sources: list[SourceBadge]) -> float:
    """Mean similarity of ``sources``, counting missing scores as 0.

    Returns:
        Average similarity, 0.0 for an empty list.
    """
    if not sources:
        return 0.0
    return sum(badge.similarity or 0.0 for badge in sources) / len(sources)


class SemanticCache:
    """Looks up and stores previously generated answers by embedding similarity."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        tasks: DetachedTasks | None = None,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the cache on top of a document store.

        Args:
            store: Store exposing the cache procedures.
            tasks: Owner of fire-and-forget work (hit counts, inserts).
            rate_limiter: Limiter pacing store calls.
            clock: Source of timezone-aware "now" for expiry stamps.
        """
        self.store = store
        self.tasks = tasks if tasks is not None else DetachedTasks()
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self.timeout = config.CACHE_TIMEOUT

    async def lookup(
        self,
        embedding: np.ndarray,
        similarity_threshold: float | None = None,
        language: str | None = None,
    ) -> CacheLookup:
        """Find a cached answer for a near-identical question.

        When ``language`` is given, the best match stored in that language is
        preferred. If none of the matches is in that language, the overall
        best match is returned anyway, even though its answer may be written
        in another language.

        Returns:
            CacheLookup with ``hit`` set when a match passed the threshold.
        """
        threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else config.CACHE_SIMILARITY
        )
        try:
            matches = await asyncio.wait_for(
                self.rate_limiter.throttle(
                    STORE_SERVICE,
                    lambda: self.store.check_semantic_cache(embedding, threshold),
                ),
                timeout=self.timeout,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cache check failed: %s", exc)
            return CacheLookup(hit=False)

        if not matches:
            return CacheLookup(hit=False)

        chosen = matches[0]
        if language is not None:
            chosen = next(
                (match for match in matches if match.entry.language == language),
                matches[0],
            )

        entry = chosen.entry
        logger.info(
            "Semantic cache hit %s (similarity %.4f)", entry.id, chosen.similarity
        )
        self.tasks.spawn(
            self.store.increment_cache_hit(entry.id), name="cache-hit-count"
        )

        return CacheLookup(
            hit=True,
            answer=entry.answer_text,
            sources=list(entry.answer_sources),
            entry_id=entry.id,
        )

    def write(  # noqa: PLR0913
        self,
        embedding: np.ndarray,
        question: str,
        answer: str,
        sources: list[SourceBadge],
        language: str,
        ttl_days: int,
    ) -> asyncio.Task:
        """Schedule insertion of a new entry expiring ``ttl_days`` from now.

        The caller does not wait for the insert; failures are logged by the
        detached task.

        Returns:
            The detached task performing the insert.
        """
        created_at = self._clock()
        entry = SemanticCacheEntry(
            id=str(uuid.uuid4()),
            question_text=question,
            question_embedding=embedding,
            answer_text=answer,
            answer_sources=list(sources),
            language=language,
            created_at=created_at,
            expires_at=created_at + timedelta(days=ttl_days),
        )
        return self.tasks.spawn(self._insert(entry), name="cache-write")

    async def _insert(self, entry: SemanticCacheEntry) -> None:
        await asyncio.wait_for(
            self.rate_limiter.throttle(
                STORE_SERVICE, lambda: self.store.insert_cache_entry(entry)
            ),
            timeout=self.timeout,
        )
        logger.info(
            "Cached answer %s (%s, expires %s)",
            entry.id,
            entry.language,
            entry.expires_at.isoformat(),
        )


class CacheWriter:
    """Persists validated answers back into the semantic cache."""

    def __init__(self, cache: SemanticCache) -> None:
        """Initialize the writer with the cache it feeds."""
        self.cache = cache

    def write_back(
        self,
        embedding: np.ndarray | None,
        question: str,
        final_answer: str,
        sources: list[SourceBadge],
        language: str,
    ) -> asyncio.Task | None:
        """Store an answer with a TTL derived from its grounding.

        Callers skip this for low-confidence answers. Nothing here raises.

        Returns:
            The detached write task, or None when nothing was scheduled.
        """
        if embedding is None:
            return None
        try:
            ttl_days = get_cache_ttl_days(len(sources), average_similarity(sources))
            return self.cache.write(
                embedding, question, final_answer, sources, language, ttl_days
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cache write failed: %s", exc)
            return None
