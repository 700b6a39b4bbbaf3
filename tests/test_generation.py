"""Tests for ResponseGenerator streaming, retries, cancellation and lists."""

import asyncio
import time

import pytest

from ansar import GenerationCancelledError, LLMUnavailableError, ResponseGenerator
from ansar.completeness import analyze_completeness
from ansar.config import config
from ansar.generation import (
    LIST_MAX_TOKENS,
    LONG_LIST_MAX_TOKENS,
    build_system_prompt,
    generation_settings,
    is_usable_anthropic_key,
)


async def _collect(generator, query, **kwargs):
    return [delta async for delta in generator.stream(query, **kwargs)]


def test_build_system_prompt_language_and_context():
    prompt = build_system_prompt("fr", "\nCOMPLETENESS", "=== SOURCES ===")

    assert "Réponds en français." in prompt
    assert "COMPLETENESS" in prompt
    assert prompt.endswith("=== SOURCES ===")
    assert "Respond in English." in build_system_prompt("de")


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        ("What is wudu?", (config.CHAT_MAX_TOKENS, config.CHAT_TEMPERATURE)),
        ("What are the pillars of Islam?", (LIST_MAX_TOKENS, config.LIST_TEMPERATURE)),
        (
            "Give me the 99 names of Allah",
            (LONG_LIST_MAX_TOKENS, config.LIST_TEMPERATURE),
        ),
    ],
)
def test_generation_settings(query, expected):
    assert generation_settings(analyze_completeness(query)) == expected


@pytest.mark.asyncio
async def test_stream_yields_clean_deltas(
    chat_client_factory, chat_stream_factory, generator_factory
):
    stream = chat_stream_factory(["**Bis", "millah**", None, "\n## Title"])
    client = chat_client_factory(stream)
    generator = generator_factory(client)

    deltas = await _collect(generator, "What is wudu?", context="CONTEXT BLOCK")

    assert "".join(deltas) == "Bismillah\nTitle"
    assert all("*" not in delta and "#" not in delta for delta in deltas)
    assert stream.closed
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["timeout"] == config.LLM_TIMEOUT
    assert kwargs["messages"][0]["content"].endswith("CONTEXT BLOCK")
    assert kwargs["messages"][1] == {"role": "user", "content": "What is wudu?"}


@pytest.mark.asyncio
async def test_stream_generate_reports_tokens_and_text(
    chat_client_factory, chat_stream_factory, generator_factory
):
    generator = generator_factory(
        chat_client_factory(chat_stream_factory(["Le wudu ", "est ", "l'ablution."]))
    )
    received = []

    response = await generator.stream_generate(
        "Qu'est-ce que le wudu ?", received.append
    )

    assert response.text == "Le wudu est l'ablution."
    assert "".join(received) == response.text
    assert response.language == "fr"
    assert response.model == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_cancel_event_closes_stream(
    chat_client_factory, chat_stream_factory, generator_factory
):
    stream = chat_stream_factory(["Hello", " world", " and", " more", " text"])
    generator = generator_factory(chat_client_factory(stream))
    cancel_event = asyncio.Event()
    received = []

    def on_token(delta):
        received.append(delta)
        cancel_event.set()

    with pytest.raises(GenerationCancelledError):
        await generator.stream_generate("Say hello", on_token, cancel_event)

    assert received == ["Hello"]
    assert stream.closed
    assert stream.consumed < len(stream.tokens)


@pytest.mark.asyncio
async def test_cancel_before_request_sends_nothing(chat_client_factory, generator_factory):
    client = chat_client_factory()
    generator = generator_factory(client)
    cancel_event = asyncio.Event()
    cancel_event.set()

    with pytest.raises(GenerationCancelledError):
        await _collect(generator, "Say hello", cancel_event=cancel_event)

    client.chat.completions.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_after_failed_stream(
    chat_client_factory, chat_stream_factory, generator_factory
):
    client = chat_client_factory(RuntimeError("boom"), chat_stream_factory(["Hi"]))
    generator = generator_factory(client)

    assert await _collect(generator, "Say hi") == ["Hi"]
    assert client.chat.completions.create.await_count == 2


@pytest.mark.asyncio
async def test_falls_back_to_non_streaming_completion(
    chat_client_factory, chat_response_factory, generator_factory
):
    client = chat_client_factory(
        RuntimeError("stream failed"),
        RuntimeError("stream failed again"),
        chat_response_factory("Fallback **answer**"),
    )
    generator = generator_factory(client)

    deltas = await _collect(generator, "Say hi")

    assert "".join(deltas) == "Fallback answer"
    calls = client.chat.completions.create.await_args_list
    assert len(calls) == 3
    assert calls[0].kwargs["stream"] is True
    assert "stream" not in calls[2].kwargs


@pytest.mark.asyncio
async def test_error_after_tokens_is_not_retried(
    chat_client_factory, chat_stream_factory, generator_factory
):
    stream = chat_stream_factory(["Partial"], error=RuntimeError("connection reset"))
    client = chat_client_factory(stream, chat_stream_factory(["Again"]))
    generator = generator_factory(client)
    received = []

    with pytest.raises(RuntimeError, match="connection reset"):
        await generator.stream_generate("Say hi", received.append)

    assert received == ["Partial"]
    assert stream.closed
    client.chat.completions.create.assert_awaited_once()


@pytest.mark.asyncio
async def test_no_client_raises_llm_unavailable():
    generator = ResponseGenerator(
        api_key="YOUR_OPENAI_KEY_HERE", anthropic_api_key="YOUR_ANTHROPIC_KEY_HERE"
    )

    assert generator.providers == []
    with pytest.raises(LLMUnavailableError):
        await _collect(generator, "What is wudu?")


@pytest.mark.asyncio
async def test_short_known_list_is_continued(
    chat_client_factory, chat_stream_factory, generator_factory
):
    client = chat_client_factory(
        chat_stream_factory(["1. Ar-Rahman\n", "2. Ar-Raheem"]),
        chat_stream_factory(["3. Al-Malik"]),
    )
    generator = generator_factory(client)

    deltas = await _collect(generator, "Give me the 99 names of Allah")

    assert "".join(deltas) == "1. Ar-Rahman\n2. Ar-Raheem\n3. Al-Malik"
    first, second = client.chat.completions.create.await_args_list
    assert first.kwargs["max_tokens"] == LONG_LIST_MAX_TOKENS
    assert "ALL 99 items" in first.kwargs["messages"][0]["content"]
    assert second.kwargs["max_tokens"] == LIST_MAX_TOKENS
    assert second.kwargs["messages"][1]["content"].startswith(
        "You previously provided items 1 through 2 of the 99 Names of Allah."
    )


@pytest.mark.asyncio
async def test_failed_continuation_keeps_partial_list(
    chat_client_factory, chat_stream_factory, generator_factory
):
    client = chat_client_factory(
        chat_stream_factory(["1. Shahada\n2. Salah"]),
        RuntimeError("down"),
        RuntimeError("down"),
        RuntimeError("down"),
    )
    generator = generator_factory(client)

    deltas = await _collect(generator, "What are the pillars of Islam?")

    assert "".join(deltas) == "1. Shahada\n2. Salah\n"


@pytest.mark.asyncio
async def test_unnumbered_answer_is_not_continued(
    chat_client_factory, chat_stream_factory, generator_factory
):
    client = chat_client_factory(chat_stream_factory(["Shahada, Salah, Zakat."]))
    generator = generator_factory(client)

    await _collect(generator, "What are the pillars of Islam?")

    client.chat.completions.create.assert_awaited_once()


@pytest.mark.asyncio
async def test_cancel_interrupts_stalled_stream(
    chat_client_factory, chat_stream_factory, generator_factory
):
    stream = chat_stream_factory(["Hello", " world"], pauses={1: 3.0})
    generator = generator_factory(chat_client_factory(stream))
    cancel_event = asyncio.Event()
    received = []

    def on_token(delta):
        received.append(delta)
        asyncio.get_running_loop().call_later(0.05, cancel_event.set)

    started = time.monotonic()
    with pytest.raises(GenerationCancelledError):
        await generator.stream_generate("Say hello", on_token, cancel_event)
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert received == ["Hello"]
    assert stream.closed
    assert stream.consumed == 1


@pytest.mark.parametrize(
    ("api_key", "expected"),
    [
        ("sk-ant-REDACTED", True),
        ("sk-test-key-0123456789abcdef", False),
        ("sk-ant-REDACTED", False),
        ("sk-ant-short", False),
        (None, False),
    ],
)
def test_is_usable_anthropic_key(api_key, expected):
    assert is_usable_anthropic_key(api_key) is expected


def test_providers_are_ordered_claude_first():
    generator = ResponseGenerator(
        api_key="sk-test-key-0123456789abcdef",
        anthropic_api_key="sk-ant-REDACTED",
    )
    openai_only = ResponseGenerator(
        api_key="sk-test-key-0123456789abcdef",
        anthropic_api_key="YOUR_ANTHROPIC_KEY_HERE",
    )

    assert [provider.name for provider in generator.providers] == [
        "anthropic",
        "openai",
    ]
    assert generator.model == config.ANTHROPIC_MODEL
    assert [provider.name for provider in openai_only.providers] == ["openai"]


@pytest.mark.asyncio
async def test_claude_answers_first(
    anthropic_client_factory,
    anthropic_stream_factory,
    chat_client_factory,
    generator_factory,
):
    stream = anthropic_stream_factory([None, "Wudu is ", "**ablution**."])
    claude = anthropic_client_factory(stream)
    openai_client = chat_client_factory()
    generator = generator_factory(openai_client, anthropic_client=claude)

    response = await generator.stream_generate(
        "What is wudu?", lambda _delta: None, context="CONTEXT BLOCK"
    )

    assert response.text == "Wudu is ablution."
    assert response.model == config.ANTHROPIC_MODEL
    assert stream.closed
    openai_client.chat.completions.create.assert_not_awaited()
    kwargs = claude.messages.create.await_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["system"].endswith("CONTEXT BLOCK")
    assert kwargs["messages"] == [{"role": "user", "content": "What is wudu?"}]
    assert kwargs["timeout"] == config.LLM_TIMEOUT


@pytest.mark.asyncio
async def test_failed_claude_stream_falls_back_to_openai(
    anthropic_client_factory,
    chat_client_factory,
    chat_stream_factory,
    generator_factory,
):
    claude = anthropic_client_factory(
        RuntimeError("overloaded"), RuntimeError("overloaded")
    )
    openai_client = chat_client_factory(chat_stream_factory(["From OpenAI"]))
    generator = generator_factory(openai_client, anthropic_client=claude)

    response = await generator.stream_generate("Say hi", lambda _delta: None)

    assert response.text == "From OpenAI"
    assert response.model == "gpt-4o-mini"
    assert claude.messages.create.await_count == 2
    openai_client.chat.completions.create.assert_awaited_once()


@pytest.mark.asyncio
async def test_non_streaming_fallback_follows_provider_order(
    anthropic_client_factory,
    anthropic_response_factory,
    chat_client_factory,
    chat_response_factory,
    generator_factory,
):
    claude = anthropic_client_factory(
        RuntimeError("stream down"),
        RuntimeError("stream down"),
        anthropic_response_factory("Claude **fallback**"),
    )
    openai_client = chat_client_factory(
        RuntimeError("stream down"),
        RuntimeError("stream down"),
        chat_response_factory("unused"),
    )
    generator = generator_factory(openai_client, anthropic_client=claude)

    response = await generator.stream_generate("Say hi", lambda _delta: None)

    assert response.text == "Claude fallback"
    assert response.model == config.ANTHROPIC_MODEL
    assert "stream" not in claude.messages.create.await_args_list[2].kwargs
    assert openai_client.chat.completions.create.await_count == 2


@pytest.mark.asyncio
async def test_last_error_raised_when_every_provider_fails(
    anthropic_client_factory, chat_client_factory, generator_factory
):
    claude = anthropic_client_factory(*(RuntimeError("claude down") for _ in range(3)))
    openai_client = chat_client_factory(
        *(RuntimeError("openai down") for _ in range(3))
    )
    generator = generator_factory(openai_client, anthropic_client=claude)

    with pytest.raises(RuntimeError, match="openai down"):
        await _collect(generator, "Say hi")

    assert claude.messages.create.await_count == 3
    assert openai_client.chat.completions.create.await_count == 3


@pytest.mark.asyncio
async def test_cancelled_claude_stream_does_not_fall_back(
    anthropic_client_factory,
    anthropic_stream_factory,
    chat_client_factory,
    generator_factory,
):
    stream = anthropic_stream_factory(["Bismillah", " and", " more"])
    openai_client = chat_client_factory()
    generator = generator_factory(
        openai_client, anthropic_client=anthropic_client_factory(stream)
    )
    cancel_event = asyncio.Event()

    def on_token(_delta):
        cancel_event.set()

    with pytest.raises(GenerationCancelledError):
        await generator.stream_generate("Say bismillah", on_token, cancel_event)

    assert stream.closed
    openai_client.chat.completions.create.assert_not_awaited()
