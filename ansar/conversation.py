"""Chat session: retrieval, streamed generation, validation and cache write-back."""

import asyncio
import datetime
from collections.abc import Callable

import anthropic
import openai

from .config import config
from .errors import GenerationCancelledError, LLMUnavailableError
from .generation import ResponseGenerator
from .language import detect_language, get_error_message, get_offline_message
from .models import ConversationTurn, SourceBadge
from .pipeline import RAGPipeline
from .semantic_cache import average_similarity
from .validation import validate_response

logger = config.get_logger(__name__)

MAX_HISTORY_TURNS = 50

# Failures reaching a model API, as opposed to bugs in handling its reply.
SERVICE_ERRORS = (anthropic.APIError, openai.APIError, OSError)


def _ignore_token(_token: str) -> None:
    pass


class ChatSession:
    """Answers questions for one user and keeps a bounded history."""

    def __init__(
        self,
        rag_pipeline: RAGPipeline,
        generator: ResponseGenerator | None = None,
        openai_api_key: str | None = None,
        anthropic_api_key: str | None = None,
    ) -> None:
        """Initialize ChatSession.

        Args:
            rag_pipeline: RAG pipeline instance.
            generator: Response generator. If None, one is built sharing the
                pipeline's rate limiter.
            openai_api_key: OpenAI API key used when building the generator.
            anthropic_api_key: Anthropic API key used when building the
                generator.
        """
        self.rag_pipeline: RAGPipeline = rag_pipeline
        self.generator = generator or ResponseGenerator(
            api_key=openai_api_key,
            anthropic_api_key=anthropic_api_key,
            rate_limiter=rag_pipeline.rate_limiter,
        )
        self.conversation_history: list[ConversationTurn] = []
        self.max_history_turns = MAX_HISTORY_TURNS

    async def generate_response_stream(
        self,
        query: str,
        on_token: Callable[[str], None] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ConversationTurn:
        """Answer ``query``, forwarding text to ``on_token`` as it is produced.

        Cached answers are forwarded as a single token. Generated answers are
        streamed, validated once complete, and any text appended by validation
        is forwarded last. Answers that are not low confidence are written
        back to the semantic cache.

        Returns:
            ConversationTurn: The recorded turn.

        Raises:
            GenerationCancelledError: If ``cancel_event`` was set during
                generation. Nothing is validated, cached or recorded.
        """
        emit = on_token or _ignore_token
        lang = detect_language(query)
        rag = await self.rag_pipeline.process_query(query)

        if rag.cache_hit and rag.cached_answer:
            logger.info("Answering from semantic cache")
            emit(rag.cached_answer)
            return self._record(
                query, rag.cached_answer, rag.cached_sources or [], None, cache_hit=True
            )

        try:
            generated = await self.generator.stream_generate(
                query, emit, cancel_event=cancel_event, context=rag.context
            )
        except GenerationCancelledError:
            logger.info("Generation cancelled for query: %s", query)
            raise
        except LLMUnavailableError:
            answer = get_offline_message(lang, has_client=False)
            emit(answer)
            return self._record(query, answer, [], None, cache_hit=False)
        except SERVICE_ERRORS as exc:
            logger.warning("Chat model unreachable: %s", exc)
            answer = get_offline_message(lang, str(exc))
            emit(answer)
            return self._record(query, answer, [], None, cache_hit=False)
        except Exception:
            logger.exception("Generation failed")
            answer = get_error_message(lang)
            emit(answer)
            return self._record(query, answer, [], None, cache_hit=False)

        validation = validate_response(
            generated.text,
            len(rag.sources),
            average_similarity(rag.sources),
            rag.category,
        )
        suffix = validation.text[len(generated.text) :]
        if suffix:
            emit(suffix)

        if validation.confidence != "low":
            self.rag_pipeline.cache_writer.write_back(
                rag.embedding, query, validation.text, rag.sources, lang
            )

        return self._record(
            query, validation.text, rag.sources, validation.confidence, cache_hit=False
        )

    def _record(
        self,
        question: str,
        answer: str,
        sources: list[SourceBadge],
        confidence: str | None,
        *,
        cache_hit: bool,
    ) -> ConversationTurn:
        turn = ConversationTurn(
            user_question=question,
            bot_response=answer,
            sources=sources,
            confidence=confidence,
            cache_hit=cache_hit,
            timestamp=datetime.datetime.now(tz=datetime.UTC).isoformat(),
        )
        self.conversation_history.append(turn)
        del self.conversation_history[: -self.max_history_turns]
        return turn

    def clear_history(self) -> None:
        """Clear the conversation history."""
        self.conversation_history = []
        logger.info("Conversation history cleared.")
