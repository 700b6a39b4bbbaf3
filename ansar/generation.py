"""Streaming answer generation over Anthropic and OpenAI chat models."""

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from .completeness import (
    CompletenessInfo,
    analyze_completeness,
    build_continuation_prompt,
    verify_completeness,
)
from .config import config
from .embeddings import is_usable_api_key
from .errors import GenerationCancelledError, LLMUnavailableError
from .language import detect_language
from .markdown import MarkdownStreamCleaner
from .models import GeneratedResponse
from .rate_limiter import ANTHROPIC_SERVICE, OPENAI_SERVICE, RateLimiter

logger = config.get_logger(__name__)

LANGUAGE_INSTRUCTIONS = {
    "en": "Respond in English.",
    "fr": "Réponds en français.",
    "ar": "أجب باللغة العربية.",
}

LIST_MAX_TOKENS = 4096
LONG_LIST_MAX_TOKENS = 8192
LONG_LIST_THRESHOLD = 20

ANTHROPIC_KEY_PREFIX = "sk-ant-"

_END_OF_STREAM = object()


def build_system_prompt(
    lang: str, completeness_prompt: str = "", context: str = ""
) -> str:
    """Build the system prompt for one question.

    Returns:
        Instructions in the user's language, followed by the completeness
        requirement and the retrieved sources when present.
    """
    language_instruction = LANGUAGE_INSTRUCTIONS.get(lang, LANGUAGE_INSTRUCTIONS["en"])
    prompt = (
        f"You are Ansar, an Islamic knowledge assistant. {language_instruction}\n\n"
        "Rules:\n"
        "- Cite Quran/Hadith sources with authenticity grades\n"
        "- When verified sources are provided, cite them as [Source N]\n"
        "- Include Arabic text for verses/hadiths with translations\n"
        "- Be clear, structured, and respectful\n"
        "- Use plain text and numbered lists, no markdown styling"
    )
    if completeness_prompt:
        prompt += "\n" + completeness_prompt
    if context:
        prompt += "\n\n" + context
    return prompt


def generation_settings(completeness: CompletenessInfo) -> tuple[int, float]:
    """Pick max tokens and temperature for a question.

    Returns:
        ``(max_tokens, temperature)``.
    """
    if not completeness.is_list_request:
        return config.CHAT_MAX_TOKENS, config.CHAT_TEMPERATURE
    if (
        completeness.expected_count is not None
        and completeness.expected_count > LONG_LIST_THRESHOLD
    ):
        return LONG_LIST_MAX_TOKENS, config.LIST_TEMPERATURE
    return LIST_MAX_TOKENS, config.LIST_TEMPERATURE


def is_usable_anthropic_key(api_key: str | None) -> bool:
    """Accept only non-placeholder keys in the Anthropic format.

    Returns:
        True if the key looks like a real Anthropic credential.
    """
    return is_usable_api_key(api_key) and api_key.startswith(ANTHROPIC_KEY_PREFIX)


def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise GenerationCancelledError


async def _next_chunk(
    chunks: AsyncIterator[Any], cancel_event: asyncio.Event | None
) -> Any:  # noqa: ANN401
    """Wait for the next stream chunk, giving up as soon as cancel is set.

    Returns:
        The chunk, or ``_END_OF_STREAM`` once the stream is exhausted.

    Raises:
        GenerationCancelledError: If the event fires before the chunk arrives.
    """
    _check_cancelled(cancel_event)
    if cancel_event is None:
        return await anext(chunks, _END_OF_STREAM)

    pending_chunk = asyncio.ensure_future(anext(chunks, _END_OF_STREAM))
    cancel_wait = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait(
            {pending_chunk, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        cancel_wait.cancel()
        if not pending_chunk.done():
            pending_chunk.cancel()
            await asyncio.wait({pending_chunk})

    if pending_chunk.cancelled():
        raise GenerationCancelledError
    return pending_chunk.result()


class OpenAIChatProvider:
    """Chat completions through the OpenAI async client."""

    name = "openai"

    def __init__(
        self, client: AsyncOpenAI, model: str, rate_limiter: RateLimiter
    ) -> None:
        """Wrap ``client`` for ``model``, paced by ``rate_limiter``."""
        self.client = client
        self.model = model
        self.rate_limiter = rate_limiter
        self.timeout = config.LLM_TIMEOUT

    def _request(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        **extra: Any,  # noqa: ANN401
    ) -> Any:  # noqa: ANN401
        return self.rate_limiter.throttle(
            OPENAI_SERVICE,
            lambda: self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
                timeout=self.timeout,
                **extra,
            ),
        )

    async def open_stream(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> Any:  # noqa: ANN401
        """Start a streamed request; the result is closed with ``close()``."""  # noqa: DOC201
        return await self._request(
            system_prompt, user_prompt, max_tokens, temperature, stream=True
        )

    @staticmethod
    def chunk_text(chunk: Any) -> str | None:  # noqa: ANN401
        """Text carried by one streamed chunk, if any."""  # noqa: DOC201
        if not chunk.choices:
            return None
        return chunk.choices[0].delta.content

    async def complete(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> str:
        """Request the whole answer in one response."""  # noqa: DOC201
        response = await self._request(
            system_prompt, user_prompt, max_tokens, temperature
        )
        return response.choices[0].message.content or ""


class AnthropicChatProvider:
    """Claude messages through the Anthropic async client."""

    name = "anthropic"

    def __init__(
        self, client: AsyncAnthropic, model: str, rate_limiter: RateLimiter
    ) -> None:
        """Wrap ``client`` for ``model``, paced by ``rate_limiter``."""
        self.client = client
        self.model = model
        self.rate_limiter = rate_limiter
        self.timeout = config.LLM_TIMEOUT

    def _request(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        **extra: Any,  # noqa: ANN401
    ) -> Any:  # noqa: ANN401
        return self.rate_limiter.throttle(
            ANTHROPIC_SERVICE,
            lambda: self.client.messages.create(
                model=self.model,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
                timeout=self.timeout,
                **extra,
            ),
        )

    async def open_stream(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> Any:  # noqa: ANN401
        """Start a streamed request; the result is closed with ``close()``."""  # noqa: DOC201
        return await self._request(
            system_prompt, user_prompt, max_tokens, temperature, stream=True
        )

    @staticmethod
    def chunk_text(event: Any) -> str | None:  # noqa: ANN401
        """Text of a ``content_block_delta`` event; other events carry none."""  # noqa: DOC201
        if event.type != "content_block_delta":
            return None
        return getattr(event.delta, "text", None)

    async def complete(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> str:
        """Request the whole answer in one response."""  # noqa: DOC201
        response = await self._request(
            system_prompt, user_prompt, max_tokens, temperature
        )
        return "".join(
            block.text for block in response.content if block.type == "text"
        )


ChatProvider = AnthropicChatProvider | OpenAIChatProvider


class ResponseGenerator:
    """Streams cleaned answers from the configured chat models.

    Providers are tried in order, Claude first and OpenAI second. Streaming
    is attempted on every provider before falling back to one non-streaming
    completion per provider.
    """

    def __init__(  # noqa: PLR0913
        self,
        api_key: str | None = None,
        model: str | None = None,
        *,
        anthropic_api_key: str | None = None,
        anthropic_model: str | None = None,
        client: AsyncOpenAI | None = None,
        anthropic_client: AsyncAnthropic | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            api_key: OpenAI API key. If None, reads OPENAI_API_KEY.
            model: OpenAI chat model. If None, uses config.CHAT_MODEL.
            anthropic_api_key: Anthropic API key. If None, reads
                ANTHROPIC_API_KEY.
            anthropic_model: Claude model. If None, uses config.ANTHROPIC_MODEL.
            client: Pre-built OpenAI client, mainly for tests.
            anthropic_client: Pre-built Anthropic client, mainly for tests.
                When either client is given, API keys are ignored and only
                the given clients are used.
            rate_limiter: Limiter pacing calls to the chat APIs.
        """
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self.max_retries = config.LLM_MAX_RETRIES
        self.retry_delay = config.LLM_RETRY_DELAY
        openai_model = model or config.CHAT_MODEL
        claude_model = anthropic_model or config.ANTHROPIC_MODEL

        if client is None and anthropic_client is None:
            anthropic_api_key = anthropic_api_key or config.get_anthropic_api_key()
            api_key = api_key or config.get_openai_api_key()
            default_headers = config.get_api_headers() or None
            if is_usable_anthropic_key(anthropic_api_key):
                anthropic_client = AsyncAnthropic(
                    api_key=anthropic_api_key, default_headers=default_headers
                )
            if is_usable_api_key(api_key):
                client = AsyncOpenAI(
                    api_key=api_key,
                    base_url=config.OPENAI_BASE_URL,
                    default_headers=default_headers,
                )

        self.providers: list[ChatProvider] = []
        if anthropic_client is not None:
            self.providers.append(
                AnthropicChatProvider(anthropic_client, claude_model, self.rate_limiter)
            )
        if client is not None:
            self.providers.append(
                OpenAIChatProvider(client, openai_model, self.rate_limiter)
            )

        if self.providers:
            logger.info(
                "Available chat providers: %s",
                ", ".join(provider.name for provider in self.providers),
            )
        else:
            logger.warning(
                "No usable ANTHROPIC_API_KEY or OPENAI_API_KEY; generation is disabled"
            )

    @property
    def model(self) -> str | None:
        """Model of the first provider tried, or None without providers."""
        return self.providers[0].model if self.providers else None

    async def stream(
        self,
        query: str,
        *,
        context: str = "",
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        """Stream the answer to ``query`` as clean text deltas.

        The cancel event is checked before each request and raced against
        every pending chunk; once it is set the network stream is closed and
        GenerationCancelledError is raised. LLMUnavailableError is raised
        when no provider is configured.

        Yields:
            New clean text since the previous delta.
        """
        async for delta in self._stream(query, context, cancel_event, []):
            yield delta

    async def stream_generate(
        self,
        query: str,
        on_token: Callable[[str], None],
        cancel_event: asyncio.Event | None = None,
        context: str = "",
    ) -> GeneratedResponse:
        """Callback-style wrapper around ``stream``.

        Returns:
            GeneratedResponse: The full cleaned text and the model that
            produced it.
        """
        parts = []
        served_by: list[str] = []
        async for delta in self._stream(query, context, cancel_event, served_by):
            parts.append(delta)
            on_token(delta)
        return GeneratedResponse(
            text="".join(parts),
            language=detect_language(query),
            model=served_by[0] if served_by else self.model,
        )

    async def _stream(
        self,
        query: str,
        context: str,
        cancel_event: asyncio.Event | None,
        served_by: list[str],
    ) -> AsyncIterator[str]:
        if not self.providers:
            msg = "No LLM client available. Check ANTHROPIC_API_KEY or OPENAI_API_KEY."
            raise LLMUnavailableError(msg)

        lang = detect_language(query)
        completeness = analyze_completeness(query)
        system_prompt = build_system_prompt(
            lang, completeness.prompt_augmentation, context
        )
        max_tokens, temperature = generation_settings(completeness)
        cleaner = MarkdownStreamCleaner()
        raw_parts: list[str] = []

        async for token in self._stream_with_fallback(
            system_prompt, query, max_tokens, temperature, cancel_event, served_by
        ):
            raw_parts.append(token)
            delta = cleaner.feed(token)
            if delta:
                yield delta

        if completeness.expected_count is not None:
            check = verify_completeness("".join(raw_parts), completeness.expected_count)
            if not check.is_complete and check.item_count > 0:
                logger.info(
                    "List cut short at %d/%d items, requesting continuation",
                    check.item_count,
                    completeness.expected_count,
                )
                continuation = build_continuation_prompt(
                    check.item_count, completeness.expected_count, completeness.label
                )
                try:
                    delta = cleaner.feed("\n")
                    if delta:
                        yield delta
                    async for token in self._stream_with_fallback(
                        system_prompt,
                        continuation,
                        LIST_MAX_TOKENS,
                        config.LIST_TEMPERATURE,
                        cancel_event,
                        [],
                    ):
                        delta = cleaner.feed(token)
                        if delta:
                            yield delta
                except GenerationCancelledError:
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.warning("List continuation failed: %s", exc)

        delta = cleaner.flush()
        if delta:
            yield delta

    async def _stream_with_fallback(  # noqa: PLR0913
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        cancel_event: asyncio.Event | None,
        served_by: list[str],
    ) -> AsyncIterator[str]:
        last_error: Exception | None = None

        for provider in self.providers:
            emitted = False
            for attempt in range(self.max_retries + 1):
                _check_cancelled(cancel_event)
                try:
                    async for token in self._stream_once(
                        provider,
                        system_prompt,
                        user_prompt,
                        max_tokens,
                        temperature,
                        cancel_event,
                    ):
                        if not emitted:
                            emitted = True
                            served_by.append(provider.model)
                        yield token
                except GenerationCancelledError:
                    raise
                except Exception as exc:
                    # Tokens already reached the caller; another model would
                    # restart the answer mid-sentence.
                    if emitted:
                        raise
                    last_error = exc
                    logger.warning(
                        "%s streaming attempt %d failed: %s", provider.name, attempt, exc
                    )
                    if attempt < self.max_retries:
                        await asyncio.sleep(self.retry_delay * (attempt + 1))
                else:
                    return

        logger.info("All streaming attempts failed, falling back to non-streaming")
        for provider in self.providers:
            _check_cancelled(cancel_event)
            try:
                text = await provider.complete(
                    system_prompt, user_prompt, max_tokens, temperature
                )
            except Exception as exc:
                last_error = exc
                logger.warning("%s non-streaming also failed: %s", provider.name, exc)
                continue
            _check_cancelled(cancel_event)
            served_by.append(provider.model)
            if text:
                yield text
            return

        raise last_error

    async def _stream_once(  # noqa: PLR0913
        self,
        provider: ChatProvider,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        cancel_event: asyncio.Event | None,
    ) -> AsyncIterator[str]:
        stream = await provider.open_stream(
            system_prompt, user_prompt, max_tokens, temperature
        )
        chunks = aiter(stream)
        try:
            while True:
                chunk = await _next_chunk(chunks, cancel_event)
                if chunk is _END_OF_STREAM:
                    return
                content = provider.chunk_text(chunk)
                if content:
                    yield content
        finally:
            await stream.close()
