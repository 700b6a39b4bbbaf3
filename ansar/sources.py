"""Source retrieval and prompt context assembly."""

import asyncio

import numpy as np

from .classifier import DEFAULT_CATEGORY
from .config import config
from .models import SearchResult, SourceBadge, SourceDocument
from .rate_limiter import STORE_SERVICE, RateLimiter
from .store import GRADE_COLORS, DocumentStore

logger = config.get_logger(__name__)

CONTEXT_HEADER = "=== VERIFIED SOURCES (ground your answer in these) ==="
CONTEXT_FOOTER = "=== END SOURCES ==="
CONTEXT_SEPARATOR = "\n\n---\n\n"
CONTEXT_INSTRUCTIONS = (
    "INSTRUCTIONS: Base your answer primarily on the sources above. "
    "Cite them by [Source N].\n"
    "If sources are insufficient for the question, state that no verified "
    "source was found for that specific point."
)


def map_to_badges(documents: list[SourceDocument]) -> list[SourceBadge]:
    """Turn retrieved rows into citation badges.

    Returns:
        One badge per document, in the same order.
    """
    return [
        SourceBadge(
            type=document.source_type,
            label=document.book_name or document.title,
            reference=document.reference,
            grade=document.hadith_grade,
            grade_color=GRADE_COLORS.get(document.hadith_grade or ""),
            verse_key=document.verse_key,
            similarity=document.similarity,
        )
        for document in documents
    ]


def _format_source(index: int, document: SourceDocument) -> str:
    entry = f"[Source {index}] {document.source_type.upper()} - {document.title}"
    if document.reference:
        entry += f" | Ref: {document.reference}"
    if document.hadith_grade:
        entry += f" | Grade: {document.hadith_grade}"
    if document.narrator:
        entry += f" | Narrator: {document.narrator}"
    if document.original_text:
        entry += f"\nOriginal: {document.original_text}"
    entry += f"\nContent: {document.content}"
    if document.translation:
        entry += f"\nTranslation: {document.translation}"
    entry += f"\nRelevance: {document.similarity * 100:.1f}%"
    return entry


def build_context(raw_results: list[SourceDocument]) -> str:
    """Build the numbered source block injected into the LLM prompt.

    Returns:
        The context string, or an empty string when there is nothing to
        ground the answer in.
    """
    if not raw_results:
        return ""

    entries = [
        _format_source(index, document)
        for index, document in enumerate(raw_results, start=1)
    ]
    return "\n".join([
        CONTEXT_HEADER,
        CONTEXT_SEPARATOR.join(entries),
        CONTEXT_FOOTER,
        "",
        CONTEXT_INSTRUCTIONS,
    ])


class SourceSearcher:
    """Hybrid vector+text search over the indexed source corpus."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        rate_limiter: RateLimiter | None = None,
        similarity_threshold: float | None = None,
        max_sources: int | None = None,
        min_grade: str | None = None,
    ) -> None:
        """Initialize the searcher.

        Args:
            store: Store exposing ``hybrid_search_sources``.
            rate_limiter: Limiter pacing store calls.
            similarity_threshold: Minimum cosine similarity. If None, uses
                config.SOURCE_SIMILARITY.
            max_sources: Result cap. If None, uses config.MAX_SOURCES.
            min_grade: Minimum hadith grade. If None, uses
                config.SOURCE_MIN_GRADE.
        """
        self.store = store
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self.similarity_threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else config.SOURCE_SIMILARITY
        )
        self.max_sources = (
            max_sources if max_sources is not None else config.MAX_SOURCES
        )
        self.min_grade = min_grade or config.SOURCE_MIN_GRADE
        self.timeout = config.SEARCH_TIMEOUT

    async def search(
        self, embedding: np.ndarray, category: str, query_text: str = ""
    ) -> SearchResult:
        """Search sources, retrying without the category filter if needed.

        Returns:
            Badges and raw rows; both empty when nothing was found or the
            store failed.
        """
        type_filter = category if category != DEFAULT_CATEGORY else None
        try:
            documents = await self._search(embedding, query_text, type_filter)
            if not documents and type_filter is not None:
                logger.info(
                    "No %s sources found, retrying without category filter", category
                )
                documents = await self._search(embedding, query_text, None)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Source search failed: %s", exc)
            return SearchResult()

        documents = documents[: self.max_sources]
        return SearchResult(badges=map_to_badges(documents), raw_results=documents)

    async def _search(
        self, embedding: np.ndarray, query_text: str, type_filter: str | None
    ) -> list[SourceDocument]:
        return await asyncio.wait_for(
            self.rate_limiter.throttle(
                STORE_SERVICE,
                lambda: self.store.hybrid_search_sources(
                    embedding,
                    query_text,
                    self.similarity_threshold,
                    self.max_sources,
                    type_filter,
                    self.min_grade,
                ),
            ),
            timeout=self.timeout,
        )

    async def keyword_search(
        self, query_text: str, source_type: str = "hadith", limit: int = 3
    ) -> SearchResult:
        """Direct keyword search used when vector retrieval is unavailable.

        Returns:
            Badges and raw rows, empty on any failure.
        """
        try:
            documents = await asyncio.wait_for(
                self.rate_limiter.throttle(
                    STORE_SERVICE,
                    lambda: self.store.keyword_search(query_text, source_type, limit),
                ),
                timeout=self.timeout,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Keyword search failed: %s", exc)
            return SearchResult()

        return SearchResult(badges=map_to_badges(documents), raw_results=documents)
