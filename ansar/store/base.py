"""Interface of the vector+text document store and shared scoring helpers."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from ansar.models import CacheMatch, SemanticCacheEntry, SourceDocument

VECTOR_WEIGHT = 0.7
TEXT_WEIGHT = 0.3

# Authenticity scale, weakest first.
GRADE_RANK: dict[str, int] = {
    "mawdu": 0,
    "daif": 1,
    "hasan_li_ghayrihi": 2,
    "hasan": 3,
    "sahih_li_ghayrihi": 4,
    "sahih": 5,
}

GRADE_COLORS: dict[str, str] = {
    "sahih": "#10B981",
    "hasan": "#F59E0B",
    "sahih_li_ghayrihi": "#34D399",
    "hasan_li_ghayrihi": "#FBBF24",
    "daif": "#EF4444",
    "mawdu": "#991B1B",
}

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
MIN_TOKEN_LENGTH = 3


def grade_passes(grade: str | None, min_grade: str | None) -> bool:
    """Check a document grade against the minimum authenticity grade.

    Ungraded documents (Quran verses, fiqh notes, ...) always pass. Graded
    documents with a grade outside the known scale never pass a filter.

    Returns:
        True if the document is admissible.
    """
    if min_grade is None or grade is None:
        return True
    rank = GRADE_RANK.get(grade)
    return rank is not None and rank >= GRADE_RANK.get(min_grade, 0)


def tokenize(text: str) -> set[str]:
    """Split text into lowercase terms usable for full-text matching.

    Returns:
        Set of terms at least MIN_TOKEN_LENGTH characters long.
    """
    return {
        token
        for token in _TOKEN_RE.findall(text.lower())
        if len(token) >= MIN_TOKEN_LENGTH
    }


def text_relevance(query_terms: set[str], document_text: str) -> float:
    """Fraction of query terms present in the document.

    Returns:
        Score in [0, 1]; 0 when the query has no usable terms.
    """
    if not query_terms:
        return 0.0
    return len(query_terms & tokenize(document_text)) / len(query_terms)


def cosine_similarity(
    query_embedding: np.ndarray, embeddings: np.ndarray
) -> np.ndarray:
    """Calculate cosine similarity between a query and a matrix of embeddings.

    Returns:
        np.ndarray: One similarity score per row of ``embeddings``.

    Raises:
        ValueError: If the query and stored vectors differ in dimension.
    """
    if embeddings.shape[1] != query_embedding.shape[0]:
        msg = (
            f"Embedding dimension mismatch: query has {query_embedding.shape[0]}, "
            f"store has {embeddings.shape[1]}"
        )
        raise ValueError(msg)

    query_norm = np.linalg.norm(query_embedding)
    doc_norms = np.linalg.norm(embeddings, axis=1)
    denominators = doc_norms * query_norm
    denominators[denominators == 0] = 1.0
    return (embeddings @ query_embedding) / denominators


class DocumentStore(ABC):
    """Remote procedures the RAG core consumes from the document store."""

    backend: str = "abstract"

    @abstractmethod
    async def check_semantic_cache(
        self, embedding: np.ndarray, threshold: float
    ) -> list[CacheMatch]:
        """Return unexpired cache entries at or above ``threshold``, best first."""

    @abstractmethod
    async def increment_cache_hit(self, entry_id: str) -> None:
        """Add one to the hit count of a cache entry."""

    @abstractmethod
    async def insert_cache_entry(self, entry: SemanticCacheEntry) -> None:
        """Persist a new semantic cache entry."""

    @abstractmethod
    async def hybrid_search_sources(  # noqa: PLR0913
        self,
        embedding: np.ndarray,
        text: str,
        threshold: float,
        limit: int,
        type_filter: str | None = None,
        min_grade: str | None = None,
    ) -> list[SourceDocument]:
        """Blend vector and full-text relevance over the source corpus."""

    @abstractmethod
    async def keyword_search(
        self, text: str, source_type: str, limit: int
    ) -> list[SourceDocument]:
        """Plain keyword search over one source type, most authentic first."""

    @abstractmethod
    async def add_sources(self, documents: list[SourceDocument]) -> list[int]:
        """Index source documents carrying embeddings."""

    @abstractmethod
    async def purge_expired(self) -> int:
        """Delete expired cache entries and return how many were removed."""
