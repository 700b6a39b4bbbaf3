"""SQLite-backed document store with numpy embedding blobs."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import numpy as np

from ansar.config import config
from ansar.models import (
    SOURCE_TYPES,
    CacheMatch,
    SemanticCacheEntry,
    SourceBadge,
    SourceDocument,
    as_embedding,
)
from ansar.store.base import (
    GRADE_RANK,
    TEXT_WEIGHT,
    VECTOR_WEIGHT,
    DocumentStore,
    cosine_similarity,
    grade_passes,
    text_relevance,
    tokenize,
)

logger = config.get_logger(__name__)

_SOURCE_COLUMNS = (
    "id, source_type, title, content, book_name, reference, hadith_grade, "
    "narrator, original_text, translation, verse_key, embedding"
)

_CACHE_COLUMNS = (
    "id, question_text, question_embedding, answer_text, answer_sources, "
    "language, hit_count, created_at, expires_at"
)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _to_blob(embedding: np.ndarray) -> bytes:
    return np.asarray(embedding, dtype=np.float32).tobytes()


def _from_blob(blob: bytes) -> np.ndarray:
    return as_embedding(np.frombuffer(blob, dtype=np.float32))


def _searchable_text(document: SourceDocument) -> str:
    return f"{document.title} {document.content} {document.translation or ''}"


class SQLiteDocumentStore(DocumentStore):
    """Source corpus and semantic cache kept in one SQLite database.

    Similarity is computed with numpy over every candidate row, which suits
    corpora of a few hundred thousand rows. Blocking work runs in a worker
    thread so the event loop is never held during I/O.
    """

    backend = "sqlite"

    def __init__(
        self,
        db_path: Path = Path("data/ansar.db"),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the store and ensure the schema exists.

        Args:
            db_path: Path to the SQLite database file.
            clock: Source of timezone-aware "now" used for expiry checks.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self._clock = clock
        self._create_tables()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def _create_tables(self) -> None:
        """Create source and cache tables if they don't exist."""
        type_list = ",".join(f"'{source_type}'" for source_type in SOURCE_TYPES)
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS sources (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_type TEXT NOT NULL CHECK(source_type IN ({type_list})),
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    book_name TEXT,
                    reference TEXT,
                    hadith_grade TEXT,
                    narrator TEXT,
                    original_text TEXT,
                    translation TEXT,
                    verse_key TEXT,
                    embedding BLOB NOT NULL,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)  # noqa: S608

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS semantic_cache (
                    id TEXT PRIMARY KEY,
                    question_text TEXT NOT NULL,
                    question_embedding BLOB NOT NULL,
                    answer_text TEXT NOT NULL,
                    answer_sources TEXT NOT NULL DEFAULT '[]',
                    language TEXT NOT NULL,
                    hit_count INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    expires_at REAL NOT NULL
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_sources_type ON sources(source_type)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_cache_expires "
                "ON semantic_cache(expires_at)"
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Source corpus
    # ------------------------------------------------------------------

    async def add_sources(self, documents: list[SourceDocument]) -> list[int]:
        """Add source documents with embeddings to the store.

        Returns:
            Row ids assigned to the inserted documents.
        """
        return await asyncio.to_thread(self._add_sources, documents)

    def _add_sources(self, documents: list[SourceDocument]) -> list[int]:
        ids: list[int] = []
        with self._connect() as conn:
            cursor = conn.cursor()
            for document in documents:
                if document.embedding is None:
                    logger.warning(
                        "Skipping source %r without embedding", document.title
                    )
                    continue
                cursor.execute(
                    """
                    INSERT INTO sources (
                        source_type, title, content, book_name, reference,
                        hadith_grade, narrator, original_text, translation,
                        verse_key, embedding
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        document.source_type,
                        document.title,
                        document.content,
                        document.book_name,
                        document.reference,
                        document.hadith_grade,
                        document.narrator,
                        document.original_text,
                        document.translation,
                        document.verse_key,
                        _to_blob(document.embedding),
                    ),
                )
                row_id = cursor.lastrowid
                if row_id is None:
                    msg = "Failed to insert source row"
                    raise RuntimeError(msg)
                document.id = int(row_id)
                ids.append(document.id)
            conn.commit()

        logger.info("Added %d sources to SQLite document store", len(ids))
        return ids

    def _load_sources(self, source_type: str | None) -> list[SourceDocument]:
        query = f"SELECT {_SOURCE_COLUMNS} FROM sources"  # noqa: S608
        params: tuple[str, ...] = ()
        if source_type is not None:
            query += " WHERE source_type = ?"
            params = (source_type,)
        query += " ORDER BY id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._build_source_from_row(row) for row in rows]

    @staticmethod
    def _build_source_from_row(row: tuple) -> SourceDocument:
        (
            row_id,
            source_type,
            title,
            content,
            book_name,
            reference,
            hadith_grade,
            narrator,
            original_text,
            translation,
            verse_key,
            embedding,
        ) = row
        return SourceDocument(
            id=int(row_id),
            source_type=source_type,
            title=title,
            content=content,
            book_name=book_name,
            reference=reference,
            hadith_grade=hadith_grade,
            narrator=narrator,
            original_text=original_text,
            translation=translation,
            verse_key=verse_key,
            embedding=_from_blob(embedding),
        )

    async def hybrid_search_sources(  # noqa: PLR0913
        self,
        embedding: np.ndarray,
        text: str,
        threshold: float,
        limit: int,
        type_filter: str | None = None,
        min_grade: str | None = None,
    ) -> list[SourceDocument]:
        """Search sources by blended vector and text relevance.

        Returns:
            Up to ``limit`` documents whose cosine similarity is at least
            ``threshold``, ordered by blended score. Each document's
            ``similarity`` holds the cosine similarity.
        """
        return await asyncio.to_thread(
            self._hybrid_search,
            embedding,
            text,
            threshold,
            limit,
            type_filter,
            min_grade,
        )

    def _hybrid_search(  # noqa: PLR0913,PLR0917
        self,
        embedding: np.ndarray,
        text: str,
        threshold: float,
        limit: int,
        type_filter: str | None,
        min_grade: str | None,
    ) -> list[SourceDocument]:
        candidates = [
            document
            for document in self._load_sources(type_filter)
            if grade_passes(document.hadith_grade, min_grade)
        ]
        if not candidates:
            return []

        matrix = np.vstack([document.embedding for document in candidates])
        query = np.asarray(embedding, dtype=np.float32)
        similarities = cosine_similarity(query, matrix)
        query_terms = tokenize(text)

        scored: list[tuple[float, SourceDocument]] = []
        for document, similarity in zip(candidates, similarities, strict=True):
            if similarity < threshold:
                continue
            document.similarity = float(similarity)
            relevance = text_relevance(query_terms, _searchable_text(document))
            score = VECTOR_WEIGHT * float(similarity) + TEXT_WEIGHT * relevance
            scored.append((score, document))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [document for _, document in scored[:limit]]

    async def keyword_search(
        self, text: str, source_type: str, limit: int
    ) -> list[SourceDocument]:
        """Find documents of ``source_type`` sharing terms with ``text``.

        Returns:
            Matching documents, most authentic first, then most terms shared.
        """
        return await asyncio.to_thread(self._keyword_search, text, source_type, limit)

    def _keyword_search(
        self, text: str, source_type: str, limit: int
    ) -> list[SourceDocument]:
        query_terms = tokenize(text)
        matches: list[tuple[int, float, SourceDocument]] = []
        for document in self._load_sources(source_type):
            relevance = text_relevance(query_terms, _searchable_text(document))
            if relevance > 0:
                grade_rank = GRADE_RANK.get(document.hadith_grade or "", -1)
                matches.append((grade_rank, relevance, document))

        matches.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [document for _, _, document in matches[:limit]]

    # ------------------------------------------------------------------
    # Semantic cache
    # ------------------------------------------------------------------

    async def check_semantic_cache(
        self, embedding: np.ndarray, threshold: float
    ) -> list[CacheMatch]:
        """Find unexpired cache entries similar to ``embedding``.

        Returns:
            Matches at or above ``threshold``, most similar first.
        """
        return await asyncio.to_thread(self._check_semantic_cache, embedding, threshold)

    def _check_semantic_cache(
        self, embedding: np.ndarray, threshold: float
    ) -> list[CacheMatch]:
        now = self._clock().timestamp()
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_CACHE_COLUMNS} FROM semantic_cache WHERE expires_at > ?",  # noqa: S608
                (now,),
            ).fetchall()
        if not rows:
            return []

        entries = [self._build_cache_entry_from_row(row) for row in rows]
        matrix = np.vstack([entry.question_embedding for entry in entries])
        query = np.asarray(embedding, dtype=np.float32)
        similarities = cosine_similarity(query, matrix)

        matches = [
            CacheMatch(entry=entry, similarity=float(similarity))
            for entry, similarity in zip(entries, similarities, strict=True)
            if similarity >= threshold
        ]
        matches.sort(key=lambda match: match.similarity, reverse=True)
        return matches

    @staticmethod
    def _build_cache_entry_from_row(row: tuple) -> SemanticCacheEntry:
        (
            entry_id,
            question_text,
            question_embedding,
            answer_text,
            answer_sources,
            language,
            hit_count,
            created_at,
            expires_at,
        ) = row
        try:
            raw_sources = json.loads(answer_sources) if answer_sources else []
        except json.JSONDecodeError:
            logger.warning("Cache entry %s has unreadable sources", entry_id)
            raw_sources = []

        return SemanticCacheEntry(
            id=entry_id,
            question_text=question_text,
            question_embedding=_from_blob(question_embedding),
            answer_text=answer_text,
            answer_sources=[SourceBadge.from_dict(item) for item in raw_sources],
            language=language,
            hit_count=int(hit_count),
            created_at=datetime.fromtimestamp(created_at, tz=UTC),
            expires_at=datetime.fromtimestamp(expires_at, tz=UTC),
        )

    async def increment_cache_hit(self, entry_id: str) -> None:
        """Add one to the hit count of ``entry_id``."""
        await asyncio.to_thread(self._increment_cache_hit, entry_id)

    def _increment_cache_hit(self, entry_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE semantic_cache SET hit_count = hit_count + 1 WHERE id = ?",
                (entry_id,),
            )
            conn.commit()

    async def insert_cache_entry(self, entry: SemanticCacheEntry) -> None:
        """Persist ``entry``; an existing id is replaced (last write wins)."""
        await asyncio.to_thread(self._insert_cache_entry, entry)

    def _insert_cache_entry(self, entry: SemanticCacheEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO semantic_cache ({_CACHE_COLUMNS}) "  # noqa: S608
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.id,
                    entry.question_text,
                    _to_blob(entry.question_embedding),
                    entry.answer_text,
                    json.dumps(
                        [badge.to_dict() for badge in entry.answer_sources],
                        ensure_ascii=False,
                    ),
                    entry.language,
                    entry.hit_count,
                    entry.created_at.timestamp(),
                    entry.expires_at.timestamp(),
                ),
            )
            conn.commit()

    async def get_cache_entry(self, entry_id: str) -> SemanticCacheEntry | None:
        """Fetch one cache entry, expired or not.

        Inspection helper for maintenance scripts and tests; lookups go
        through ``check_semantic_cache``.

        Returns:
            The entry, or None if the id is unknown.
        """
        return await asyncio.to_thread(self._get_cache_entry, entry_id)

    def _get_cache_entry(self, entry_id: str) -> SemanticCacheEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_CACHE_COLUMNS} FROM semantic_cache WHERE id = ?",  # noqa: S608
                (entry_id,),
            ).fetchone()
        return self._build_cache_entry_from_row(row) if row is not None else None

    async def purge_expired(self) -> int:
        """Delete expired cache entries.

        Returns:
            Number of entries removed.
        """
        return await asyncio.to_thread(self._purge_expired)

    def _purge_expired(self) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM semantic_cache WHERE expires_at <= ?",
                (self._clock().timestamp(),),
            )
            conn.commit()
            removed = cursor.rowcount

        if removed:
            logger.info("Purged %d expired semantic cache entries", removed)
        return removed
