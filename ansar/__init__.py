"""Ansar v0.1 - Grounded question answering core for the Ansar assistant."""

from .caching import EmbeddingCache, RequestDeduplicator
from .classifier import classify_question, is_hadith_query
from .conversation import ChatSession
from .embeddings import EmbeddingService
from .errors import (
    AnsarError,
    GenerationCancelledError,
    LLMUnavailableError,
    RateLimitQueueFullError,
)
from .generation import ResponseGenerator
from .language import detect_language
from .markdown import MarkdownStreamCleaner, strip_markdown
from .models import (
    ConversationTurn,
    RAGResult,
    SourceBadge,
    SourceDocument,
    ValidationResult,
)
from .pipeline import RAGPipeline
from .rate_limiter import RateLimiter
from .semantic_cache import CacheWriter, SemanticCache, get_cache_ttl_days
from .sources import SourceSearcher, build_context
from .store import DocumentStore, SQLiteDocumentStore, get_document_store
from .validation import validate_response

__all__ = [
    "AnsarError",
    "CacheWriter",
    "ChatSession",
    "ConversationTurn",
    "DocumentStore",
    "EmbeddingCache",
    "EmbeddingService",
    "GenerationCancelledError",
    "LLMUnavailableError",
    "MarkdownStreamCleaner",
    "RAGPipeline",
    "RAGResult",
    "RateLimitQueueFullError",
    "RateLimiter",
    "RequestDeduplicator",
    "ResponseGenerator",
    "SQLiteDocumentStore",
    "SemanticCache",
    "SourceBadge",
    "SourceDocument",
    "SourceSearcher",
    "ValidationResult",
    "build_context",
    "classify_question",
    "detect_language",
    "get_cache_ttl_days",
    "get_document_store",
    "is_hadith_query",
    "strip_markdown",
    "validate_response",
]
