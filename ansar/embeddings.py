"""OpenAI embeddings service."""

import asyncio

import numpy as np
from openai import AsyncOpenAI

from .caching import EmbeddingCache
from .config import config
from .models import as_embedding
from .rate_limiter import OPENAI_SERVICE, RateLimiter

logger = config.get_logger(__name__)

MIN_API_KEY_LENGTH = 20


def is_usable_api_key(api_key: str | None) -> bool:
    """Reject missing keys and obvious placeholders.

    Returns:
        True if the key looks like a real credential.
    """
    if not api_key or len(api_key) < MIN_API_KEY_LENGTH:
        return False
    return not any(marker in api_key for marker in ("YOUR_", "your_", "_HERE"))


class EmbeddingService:
    """Turns query text into embedding vectors, degrading to None on failure."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        *,
        cache: EmbeddingCache | None = None,
        rate_limiter: RateLimiter | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the EmbeddingService with OpenAI API key and model.

        Args:
            api_key: OpenAI API key. If None,
                reads from OPENAI_API_KEY environment variable.
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            cache: LRU cache shared with the pipeline. A private one is
                created when omitted.
            rate_limiter: Limiter pacing calls to the embedding API.
            client: Pre-built async client, mainly for tests.
        """
        api_key = api_key or config.get_openai_api_key()
        self.model = model or config.EMBEDDING_MODEL
        self.cache = cache if cache is not None else EmbeddingCache()
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self.max_chars = config.EMBEDDING_MAX_CHARS
        self.timeout = config.EMBEDDING_TIMEOUT

        if client is not None:
            self.client: AsyncOpenAI | None = client
        elif is_usable_api_key(api_key):
            default_headers = config.get_api_headers()
            self.client = AsyncOpenAI(
                api_key=api_key,
                base_url=config.OPENAI_BASE_URL,
                default_headers=default_headers or None,
            )
        else:
            logger.warning("No usable OpenAI API key; embeddings are disabled")
            self.client = None

    async def embed(self, text: str) -> np.ndarray | None:
        """Get the embedding for ``text``.

        Args:
            text: The input text to generate an embedding for.

        Returns:
            The read-only embedding vector, or None when the embedding
            could not be produced for any reason.
        """
        cached = self.cache.get(text)
        if cached is not None:
            return cached

        if self.client is None:
            return None

        try:
            embedding = await asyncio.wait_for(
                self.rate_limiter.throttle(OPENAI_SERVICE, lambda: self._request(text)),
                timeout=self.timeout,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Embedding generation failed: %s", exc)
            return None

        self.cache.set(text, embedding)
        return embedding

    async def _request(self, text: str) -> np.ndarray:
        if self.client is None:
            msg = "Embedding client is not configured"
            raise RuntimeError(msg)
        response = await self.client.embeddings.create(
            model=self.model,
            input=text[: self.max_chars],
        )
        values = response.data[0].embedding
        if not values:
            msg = "Embedding response contained an empty vector"
            raise ValueError(msg)
        return as_embedding(values)
