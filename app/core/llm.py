"""OpenAI chat completion helpers for answering questions over retrieved chunks."""

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

from openai import AsyncOpenAI, OpenAI

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a helpful chat assistant that helps users interact with the provided institutional knowledge base.
Your only job is to answer questions using the information provided in the knowledge base. Never use outside sources and never invent unsupported details.
If the knowledge base does not contain the answer, say clearly and naturally that you do not have that information.

Tone:
- Write primarily in flowing, conversational paragraphs, speaking directly to the user.
- Be warm, patient and clear, like a colleague explaining something.
- Use short lists (2-4 items) only when they genuinely clarify a process or distinct categories, and never lead with one.

Content rules:
- Only use information from the provided knowledge base.
- Never make assumptions beyond the data or bring in external facts.
- Never claim an identity or persona. You are simply the organization's chat assistant.
- Synthesize and connect information across documents when appropriate.
- Do not cite sources in your response; sources are shown separately."""


@dataclass
class ContextChunk:
    content: str
    title: str
    author: str | None = None


@dataclass
class ChatCompletion:
    answer: str
    sources: list[dict[str, Any]]
    usage: dict[str, int] = field(default_factory=dict)


def _get_client() -> OpenAI:
    return OpenAI(api_key=get_settings().OPENAI_API_KEY)


def _get_async_client() -> AsyncOpenAI:
    return AsyncOpenAI(api_key=get_settings().OPENAI_API_KEY)


def build_context_string(context: list[ContextChunk]) -> str:
    """Render chunks as ``=== Title by Author ===`` blocks separated by blank lines."""
    blocks = []
    for item in context:
        byline = f" by {item.author}" if item.author else ""
        blocks.append(f"=== {item.title}{byline} ===\n{item.content}")
    return "\n\n".join(blocks)


def build_messages(question: str, context: list[ContextChunk]) -> list[dict[str, str]]:
    system = f"{SYSTEM_PROMPT}\n\nAvailable documents:\n{build_context_string(context)}"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": question},
    ]


def unique_sources(context: list[ContextChunk]) -> list[dict[str, Any]]:
    """One source per document title, in first-seen order."""
    seen: set[str] = set()
    sources = []
    for item in context:
        if item.title in seen:
            continue
        seen.add(item.title)
        sources.append({"title": item.title, "author": item.author})
    return sources


def generate_chat_response(question: str, context: list[ContextChunk]) -> ChatCompletion:
    """
    Answer a question in one (non-streaming) completion.

    Raises:
        RuntimeError: If the model returns no content or the call fails
    """
    settings = get_settings()
    try:
        response = _get_client().chat.completions.create(
            model=settings.CHAT_MODEL,
            messages=build_messages(question, context),
            temperature=settings.CHAT_TEMPERATURE,
            max_tokens=settings.CHAT_MAX_TOKENS,
        )
    except Exception as e:
        logger.error(f"Chat completion failed: {e}")
        raise RuntimeError(f"Failed to generate response: {e}") from e

    answer = response.choices[0].message.content if response.choices else None
    if not answer:
        raise RuntimeError("Failed to generate response: No response generated")

    usage = response.usage
    return ChatCompletion(
        answer=answer,
        sources=unique_sources(context),
        usage={
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
            "total_tokens": getattr(usage, "total_tokens", 0) or 0,
        },
    )


async def stream_chat_response(
    question: str,
    context: list[ContextChunk],
) -> AsyncGenerator[str, None]:
    """Yield answer text deltas as the model produces them."""
    settings = get_settings()
    client = _get_async_client()

    stream = await client.chat.completions.create(
        model=settings.CHAT_MODEL,
        messages=build_messages(question, context),
        temperature=settings.CHAT_TEMPERATURE,
        max_tokens=settings.CHAT_MAX_TOKENS,
        stream=True,
    )

    async for chunk in stream:
        if not chunk.choices:
            continue
        delta = chunk.choices[0].delta.content
        if delta:
            yield delta
