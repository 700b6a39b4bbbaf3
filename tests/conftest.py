"""Test configuration and fixtures for Ansar tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Deterministic embeddings
- Fake OpenAI and Anthropic responses and chat streams
- Document store fixtures
- Pipeline, generator and chat session factories
"""

import asyncio
import hashlib
from unittest.mock import AsyncMock, Mock, patch

import numpy as np
import pytest

from ansar import (
    ChatSession,
    EmbeddingService,
    RAGPipeline,
    ResponseGenerator,
    SourceDocument,
    SQLiteDocumentStore,
)
from ansar.models import as_embedding
from ansar.rate_limiter import (
    ANTHROPIC_SERVICE,
    OPENAI_SERVICE,
    STORE_SERVICE,
    RateLimiter,
)


class TestConstants:
    """Centralized test constants to avoid repetition across test files."""

    # Long enough to pass the placeholder check on API keys
    TEST_API_KEY = "sk-test-key-0123456789abcdef"
    TEST_EMBEDDING_MODEL = "text-embedding-3-small"
    TEST_CHAT_MODEL = "gpt-4o-mini"
    DEFAULT_EMBEDDING_DIMENSION = 64


def hash_embedding(
    text: str, dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION
) -> np.ndarray:
    """Deterministic unit vector derived from the text hash."""
    seed = int.from_bytes(
        hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
        byteorder="big",
        signed=False,
    )
    rng = np.random.default_rng(seed)
    embedding = rng.normal(0, 1, dimension)
    return as_embedding(embedding / np.linalg.norm(embedding))


def embedding_with_similarity(
    base: np.ndarray, similarity: float, seed_text: str = "orthogonal"
) -> np.ndarray:
    """Unit vector whose cosine similarity to ``base`` is exactly ``similarity``."""
    base = np.asarray(base, dtype=np.float64)
    base = base / np.linalg.norm(base)
    other = np.asarray(hash_embedding(seed_text, base.shape[0]), dtype=np.float64)
    orthogonal = other - np.dot(other, base) * base
    orthogonal /= np.linalg.norm(orthogonal)
    vector = similarity * base + np.sqrt(1 - similarity**2) * orthogonal
    return as_embedding(vector)


class MockEmbeddingService:
    """Embedding service stand-in that never calls the API.

    Unknown texts get a hash embedding; ``overrides`` pins specific texts to
    chosen vectors. With ``available=False`` every call returns None, as the
    real service does without credentials.
    """

    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.overrides: dict[str, np.ndarray] = {}
        self.calls: list[str] = []

    async def embed(self, text: str) -> np.ndarray | None:
        self.calls.append(text)
        if not self.available:
            return None
        if text in self.overrides:
            return self.overrides[text]
        return hash_embedding(text)


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response."""
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(content: str | None) -> Mock:
    """Create a mock non-streaming OpenAI chat completion response."""
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(content=content))]
    return mock_response


def create_stream_chunk(content: str | None) -> Mock:
    """Create one chunk of a streamed chat completion."""
    chunk = Mock()
    chunk.choices = [Mock(delta=Mock(content=content))]
    return chunk


def create_anthropic_event(text: str | None) -> Mock:
    """Create one event of a streamed Claude message; None is a bookkeeping event."""
    if text is None:
        return Mock(type="message_start")
    return Mock(type="content_block_delta", delta=Mock(type="text_delta", text=text))


def create_mock_anthropic_response(text: str) -> Mock:
    """Create a mock non-streaming Claude message."""
    mock_response = Mock()
    mock_response.content = [Mock(type="text", text=text)]
    return mock_response


async def hang_forever(*_args, **_kwargs) -> None:
    """Side effect for a collaborator that never answers."""
    await asyncio.Event().wait()


class FakeChatStream:
    """Async iterable of chat chunks mimicking the SDKs' ``AsyncStream``.

    ``pauses`` maps a token index to seconds slept before that token is
    delivered, simulating a model that stalls mid-answer.
    """

    def __init__(
        self,
        tokens: list[str],
        error: Exception | None = None,
        *,
        pauses: dict[int, float] | None = None,
        chunk_factory=create_stream_chunk,
    ) -> None:
        self.tokens = list(tokens)
        self.error = error
        self.pauses = pauses or {}
        self.chunk_factory = chunk_factory
        self.consumed = 0
        self.closed = False

    def __aiter__(self):  # noqa: ANN204
        return self._iterate()

    async def _iterate(self):  # noqa: ANN202
        for index, token in enumerate(self.tokens):
            if index in self.pauses:
                await asyncio.sleep(self.pauses[index])
            self.consumed += 1
            yield self.chunk_factory(token)
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def hanging_call():
    """Async side effect that awaits forever, for exercising timeouts."""
    return hang_forever


@pytest.fixture
def fast_rate_limiter() -> RateLimiter:
    """Rate limiter with quotas high enough never to delay a test."""
    limiter = RateLimiter()
    for service_key in (ANTHROPIC_SERVICE, OPENAI_SERVICE, STORE_SERVICE):
        limiter.register(
            service_key, max_requests=1000, window_seconds=1.0, queue_limit=100
        )
    return limiter


@pytest.fixture
def mock_embedding_service() -> MockEmbeddingService:
    """Embedding service returning deterministic hash embeddings."""
    return MockEmbeddingService()


@pytest.fixture
def unavailable_embedding_service() -> MockEmbeddingService:
    """Embedding service behaving as if no API key were configured."""
    return MockEmbeddingService(available=False)


@pytest.fixture
def mock_embeddings():
    """Factory function to create deterministic embeddings from text."""
    return hash_embedding


@pytest.fixture
def similar_embedding():
    """Factory for vectors at an exact cosine similarity to a base vector."""
    return embedding_with_similarity


@pytest.fixture
def chat_stream_factory():
    """Factory for fake streamed chat completions."""

    def _create_stream(tokens, error=None, pauses=None) -> FakeChatStream:
        return FakeChatStream(tokens, error=error, pauses=pauses)

    return _create_stream


@pytest.fixture
def chat_response_factory():
    """Factory for fake non-streaming chat completions."""
    return create_mock_chat_response


@pytest.fixture
def anthropic_stream_factory():
    """Factory for fake streamed Claude messages."""

    def _create_stream(texts, error=None) -> FakeChatStream:
        return FakeChatStream(
            texts, error=error, chunk_factory=create_anthropic_event
        )

    return _create_stream


@pytest.fixture
def anthropic_response_factory():
    """Factory for fake non-streaming Claude messages."""
    return create_mock_anthropic_response


@pytest.fixture
def openai_embeddings_response_factory():
    """Factory for fake embeddings API responses."""
    return create_mock_openai_response


@pytest.fixture
def openai_embeddings_api_mock():
    """Patch the async embeddings endpoint of the OpenAI SDK."""
    with patch(
        "openai.resources.embeddings.AsyncEmbeddings.create", new_callable=AsyncMock
    ) as mock_create:
        yield mock_create


@pytest.fixture
def embedding_service_factory(fast_rate_limiter):
    """Factory for real EmbeddingService instances with a fake-looking key."""

    def _create_service(api_key=None, model=None) -> EmbeddingService:
        return EmbeddingService(
            api_key=api_key or TestConstants.TEST_API_KEY,
            model=model,
            rate_limiter=fast_rate_limiter,
        )

    return _create_service


@pytest.fixture
def temp_document_store(tmp_path) -> SQLiteDocumentStore:
    """Create temporary SQLite document store for testing."""
    return SQLiteDocumentStore(tmp_path / "test_store.db")


@pytest.fixture
def source_factory():
    """Factory for source documents carrying an embedding."""

    def _create_source(  # noqa: PLR0913
        title: str,
        content: str,
        *,
        source_type: str = "hadith",
        embedding: np.ndarray | None = None,
        hadith_grade: str | None = None,
        **fields,
    ) -> SourceDocument:
        return SourceDocument(
            source_type=source_type,
            title=title,
            content=content,
            hadith_grade=hadith_grade,
            embedding=embedding if embedding is not None else hash_embedding(content),
            **fields,
        )

    return _create_source


@pytest.fixture
def chat_client_factory():
    """Factory for fake async OpenAI clients.

    Each positional response is returned by one ``chat.completions.create``
    call, in order: a FakeChatStream for streaming calls, a mock completion
    for non-streaming ones, or an exception to raise.
    """

    def _create_client(*responses) -> Mock:
        client = Mock()
        client.chat.completions.create = AsyncMock(side_effect=list(responses))
        return client

    return _create_client


@pytest.fixture
def anthropic_client_factory():
    """Factory for fake async Anthropic clients.

    Each positional response is returned by one ``messages.create`` call, in
    order, like ``chat_client_factory``.
    """

    def _create_client(*responses) -> Mock:
        client = Mock()
        client.messages.create = AsyncMock(side_effect=list(responses))
        return client

    return _create_client


@pytest.fixture
def generator_factory(fast_rate_limiter):
    """Factory for ResponseGenerator instances without retry back-off."""

    def _create_generator(client=None, anthropic_client=None) -> ResponseGenerator:
        generator = ResponseGenerator(
            client=client,
            anthropic_client=anthropic_client,
            model=TestConstants.TEST_CHAT_MODEL,
            rate_limiter=fast_rate_limiter,
        )
        generator.retry_delay = 0
        return generator

    return _create_generator


@pytest.fixture
def rag_pipeline_factory(temp_document_store, fast_rate_limiter):
    """Factory for RAGPipeline instances on a temporary store."""

    def _create_pipeline(embedding_service=None, store=None) -> RAGPipeline:
        return RAGPipeline(
            store=store if store is not None else temp_document_store,
            embedding_service=embedding_service or MockEmbeddingService(),
            rate_limiter=fast_rate_limiter,
        )

    return _create_pipeline


@pytest.fixture
def chat_session_factory(rag_pipeline_factory, generator_factory):
    """Factory for ChatSession instances wired to fakes."""

    def _create_session(client, embedding_service=None, pipeline=None) -> ChatSession:
        pipeline = pipeline or rag_pipeline_factory(embedding_service)
        return ChatSession(pipeline, generator=generator_factory(client))

    return _create_session
