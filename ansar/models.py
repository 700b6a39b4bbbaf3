"""Data models for the RAG query pipeline."""

from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

import numpy as np

SourceType = Literal[
    "quran", "hadith", "fiqh", "aqeedah", "seerah", "tafsir", "general"
]
Confidence = Literal["high", "medium", "low"]

SOURCE_TYPES: tuple[str, ...] = (
    "quran",
    "hadith",
    "fiqh",
    "aqeedah",
    "seerah",
    "tafsir",
    "general",
)


def as_embedding(values: Iterable[float] | np.ndarray) -> np.ndarray:
    """Build a read-only float32 embedding vector.

    Returns:
        A one-dimensional array whose buffer cannot be written to.
    """
    vector = np.array(values, dtype=np.float32).reshape(-1)
    vector.flags.writeable = False
    return vector


@dataclass
class SourceBadge:
    """Citation metadata for one retrieved source document."""

    type: str
    label: str
    reference: str | None = None
    grade: str | None = None
    grade_color: str | None = None
    verse_key: str | None = None
    similarity: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the badge, dropping unset optional fields.

        Returns:
            JSON-compatible mapping.
        """
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceBadge":
        """Rebuild a badge from its serialized form.

        Returns:
            SourceBadge instance.
        """
        return cls(
            type=str(data.get("type", "general")),
            label=str(data.get("label", "")),
            reference=data.get("reference"),
            grade=data.get("grade"),
            grade_color=data.get("grade_color"),
            verse_key=data.get("verse_key"),
            similarity=data.get("similarity"),
        )


@dataclass
class SourceDocument:
    """A row of the indexed religious source corpus."""

    source_type: str
    title: str
    content: str
    id: int | None = None
    book_name: str | None = None
    reference: str | None = None
    hadith_grade: str | None = None
    narrator: str | None = None
    original_text: str | None = None
    translation: str | None = None
    verse_key: str | None = None
    similarity: float = 0.0
    embedding: np.ndarray | None = None


@dataclass
class SemanticCacheEntry:
    """A persisted question/answer snapshot keyed by its question embedding."""

    id: str
    question_text: str
    question_embedding: np.ndarray
    answer_text: str
    answer_sources: list[SourceBadge]
    language: str
    created_at: datetime
    expires_at: datetime
    hit_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        """Check whether the entry is past its expiry horizon.

        Returns:
            True if ``now`` is at or after ``expires_at``.
        """
        return now >= self.expires_at


@dataclass
class CacheMatch:
    """A semantic cache entry together with its similarity to a query."""

    entry: SemanticCacheEntry
    similarity: float


@dataclass
class CacheLookup:
    """Outcome of a semantic cache lookup."""

    hit: bool
    answer: str | None = None
    sources: list[SourceBadge] | None = None
    entry_id: str | None = None


@dataclass
class SearchResult:
    """Badges and raw rows returned by a source search."""

    badges: list[SourceBadge] = field(default_factory=list)
    raw_results: list[SourceDocument] = field(default_factory=list)


@dataclass
class RAGResult:
    """Retrieval outcome handed back to the chat layer."""

    context: str
    sources: list[SourceBadge]
    cache_hit: bool
    cached_answer: str | None = None
    cached_sources: list[SourceBadge] | None = None
    embedding: np.ndarray | None = None
    category: str = "general"


@dataclass
class ValidationResult:
    """Post-processed answer with its confidence and warnings."""

    text: str
    confidence: Confidence
    warnings: list[str] = field(default_factory=list)


@dataclass
class GeneratedResponse:
    """Final text of a streamed generation."""

    text: str
    language: str
    model: str
    arabic_text: str | None = None
    translation: str | None = None


@dataclass
class ConversationTurn:
    """Represents a single turn in the conversation."""

    user_question: str
    bot_response: str
    sources: list[SourceBadge]
    confidence: Confidence | None
    cache_hit: bool
    timestamp: str
