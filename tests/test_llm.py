"""Tests for chat completion helpers with a mocked OpenAI client."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.llm import (
    SYSTEM_PROMPT,
    ContextChunk,
    build_context_string,
    build_messages,
    generate_chat_response,
    stream_chat_response,
    unique_sources,
)

CONTEXT = [
    ContextChunk(content="Pinecone stores vectors.", title="Guide", author="Ada"),
    ContextChunk(content="Chunks overlap by 200 tokens.", title="Guide", author="Ada"),
    ContextChunk(content="Sessions group conversations.", title="Manual"),
]


def test_context_string_groups_by_heading():
    rendered = build_context_string(CONTEXT[1:])
    assert rendered == (
        "=== Guide by Ada ===\nChunks overlap by 200 tokens.\n\n"
        "=== Manual ===\nSessions group conversations."
    )


def test_messages_carry_context_in_system_prompt():
    messages = build_messages("What stores vectors?", CONTEXT)

    assert [m["role"] for m in messages] == ["system", "user"]
    assert messages[0]["content"].startswith(SYSTEM_PROMPT)
    assert "=== Manual ===" in messages[0]["content"]
    assert messages[1]["content"] == "What stores vectors?"


def test_unique_sources_keep_first_seen_order():
    assert unique_sources(CONTEXT) == [
        {"title": "Guide", "author": "Ada"},
        {"title": "Manual", "author": None},
    ]


class TestGenerateChatResponse:
    def _client(self, response):
        client = MagicMock()
        client.chat.completions.create.return_value = response
        return client

    def test_returns_answer_sources_and_usage(self):
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Pinecone does."))],
            usage=SimpleNamespace(prompt_tokens=120, completion_tokens=8, total_tokens=128),
        )
        client = self._client(response)
        with patch("app.core.llm._get_client", return_value=client):
            result = generate_chat_response("What stores vectors?", CONTEXT)

        assert result.answer == "Pinecone does."
        assert len(result.sources) == 2
        assert result.usage == {"prompt_tokens": 120, "completion_tokens": 8, "total_tokens": 128}
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 1000

    def test_empty_answer_raises(self):
        response = SimpleNamespace(choices=[], usage=None)
        with patch("app.core.llm._get_client", return_value=self._client(response)):
            with pytest.raises(RuntimeError, match="No response generated"):
                generate_chat_response("q", CONTEXT)

    def test_provider_error_is_wrapped(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = Exception("invalid api key")
        with patch("app.core.llm._get_client", return_value=client):
            with pytest.raises(RuntimeError, match="invalid api key"):
                generate_chat_response("q", CONTEXT)


def _delta(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


async def _chunks():
    yield _delta("Pine")
    yield SimpleNamespace(choices=[])
    yield _delta(None)
    yield _delta("cone.")


@pytest.mark.asyncio
async def test_stream_yields_only_text_deltas():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_chunks())

    with patch("app.core.llm._get_async_client", return_value=client):
        pieces = [piece async for piece in stream_chat_response("q", CONTEXT)]

    assert pieces == ["Pine", "cone."]
    assert client.chat.completions.create.call_args.kwargs["stream"] is True
