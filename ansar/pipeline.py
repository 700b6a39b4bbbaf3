"""RAG pipeline: embed, check the semantic cache, classify, search, build context."""

from pathlib import Path

import numpy as np

from .background import DetachedTasks
from .caching import EmbeddingCache, RequestDeduplicator
from .classifier import classify_question, is_hadith_query
from .config import config
from .embeddings import EmbeddingService
from .language import detect_language
from .models import RAGResult, SourceDocument
from .rate_limiter import RateLimiter
from .semantic_cache import CacheWriter, SemanticCache
from .sources import SourceSearcher, build_context
from .store import DocumentStore, get_document_store

logger = config.get_logger(__name__)

LEGACY_SOURCE_TYPE = "hadith"
LEGACY_LIMIT = 3


class RAGPipeline:
    """Main RAG pipeline orchestrating Embed -> Cache -> Classify -> Search -> Context.

    All shared state (embedding LRU, in-flight map, rate-limiter windows,
    detached tasks) is owned by the instance, so independent pipelines do
    not interfere with each other.
    """

    def __init__(
        self,
        openai_api_key: str | None = None,
        store: DocumentStore | None = None,
        *,
        db_path: Path | None = None,
        embedding_service: EmbeddingService | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize the pipeline and its collaborators.

        Args:
            openai_api_key: OpenAI API key. If None, reads OPENAI_API_KEY.
            store: Document store. If None, one is built from config.
            db_path: SQLite path used when ``store`` is None. If None, uses
                config.DOCUMENT_STORE_DB_PATH.
            embedding_service: Pre-built embedder, mainly for tests.
            rate_limiter: Shared limiter. If None, the default limits are used.
        """
        self.embedding_cache = EmbeddingCache()
        self.deduplicator = RequestDeduplicator()
        self.rate_limiter = (
            rate_limiter if rate_limiter is not None else RateLimiter.with_defaults()
        )
        self.tasks = DetachedTasks()

        self.store = store if store is not None else get_document_store(db_path=db_path)
        logger.info("Using %s document store", self.store.backend)

        self.embedding_service = embedding_service or EmbeddingService(
            api_key=openai_api_key,
            cache=self.embedding_cache,
            rate_limiter=self.rate_limiter,
        )
        self.semantic_cache = SemanticCache(
            self.store, tasks=self.tasks, rate_limiter=self.rate_limiter
        )
        self.cache_writer = CacheWriter(self.semantic_cache)
        self.searcher = SourceSearcher(self.store, rate_limiter=self.rate_limiter)

    async def process_query(self, query: str) -> RAGResult:
        """Retrieve everything needed to answer ``query``.

        Identical concurrent queries (ignoring case and surrounding
        whitespace) share one execution. Retrieval failures only ever
        reduce the context; nothing here raises.

        Returns:
            RAGResult: Either a cache hit carrying the stored answer, or the
                context and source badges for generation.
        """
        return await self.deduplicator.dedupe(query, lambda: self._process(query))

    async def _process(self, query: str) -> RAGResult:
        logger.info("Processing query: %s", query)
        category = classify_question(query)

        embedding = await self.embedding_service.embed(query)
        if embedding is None:
            logger.info("No embedding available, continuing without vector search")
            return await self._legacy_fallback(query, None, category)

        lang = detect_language(query)
        cache = await self.semantic_cache.lookup(embedding, language=lang)
        if cache.hit and cache.answer:
            return RAGResult(
                context="",
                sources=cache.sources,
                cache_hit=True,
                cached_answer=cache.answer,
                cached_sources=cache.sources,
                embedding=embedding,
                category=category,
            )

        search = await self.searcher.search(embedding, category, query)
        if not search.raw_results:
            return await self._legacy_fallback(query, embedding, category)

        logger.info("Retrieved %d %s source(s)", len(search.raw_results), category)
        return RAGResult(
            context=build_context(search.raw_results),
            sources=search.badges,
            cache_hit=False,
            embedding=embedding,
            category=category,
        )

    async def _legacy_fallback(
        self, query: str, embedding: np.ndarray | None, category: str
    ) -> RAGResult:
        if is_hadith_query(query):
            result = await self.searcher.keyword_search(
                query, LEGACY_SOURCE_TYPE, LEGACY_LIMIT
            )
            if result.raw_results:
                logger.info(
                    "Keyword fallback found %d hadith(s)", len(result.raw_results)
                )
                return RAGResult(
                    context=build_context(result.raw_results),
                    sources=result.badges,
                    cache_hit=False,
                    embedding=embedding,
                    category=category,
                )

        return RAGResult(
            context="",
            sources=[],
            cache_hit=False,
            embedding=embedding,
            category=category,
        )

    async def index_sources(self, documents: list[SourceDocument]) -> list[int]:
        """Embed documents that lack a vector and add them to the store.

        Documents whose embedding cannot be produced are skipped.

        Returns:
            Row ids of the stored documents.
        """
        ready = []
        for document in documents:
            if document.embedding is None:
                document.embedding = await self.embedding_service.embed(
                    document.content
                )
            if document.embedding is None:
                logger.warning("Skipping source without embedding: %s", document.title)
                continue
            ready.append(document)

        ids = await self.store.add_sources(ready)
        logger.info("Indexed %d of %d source(s)", len(ids), len(documents))
        return ids

    async def purge_expired_cache(self) -> int:
        """Delete expired semantic cache entries.

        Returns:
            Number of entries removed.
        """
        return await self.store.purge_expired()

    async def aclose(self) -> None:
        """Wait for pending cache writes and hit-count updates."""
        await self.tasks.drain()
