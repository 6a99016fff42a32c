"""Embedding generation (Voyage AI or OpenAI) with validation and retries."""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any

import voyageai
from openai import OpenAI

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.tokens import TOKEN_LIMITS, create_token_aware_batches

logger = get_logger(__name__)

MAX_RETRIES = 3


class EmbeddingError(Exception):
    """Raised when embeddings cannot be generated."""

    def __init__(self, message: str, category: str = "UNKNOWN"):
        super().__init__(message)
        self.category = category


@dataclass
class ErrorClassification:
    category: str
    retryable: bool
    wait_seconds: float | None = None


_RETRY_AFTER_RE = re.compile(r"try again in (\d+) seconds", re.IGNORECASE)

# Checked in order; first matching category wins
_ERROR_MARKERS: list[tuple[str, bool, tuple[str, ...]]] = [
    ("TOKEN_LIMIT", True, ("max allowed tokens", "too large", "token limit", "exceeds maximum")),
    ("RATE_LIMIT", True, ("429", "rate limit", "too many requests")),
    (
        "MODEL_UNAVAILABLE",
        True,
        ("model unavailable", "service unavailable", "temporarily unavailable", "503", "502"),
    ),
    (
        "NETWORK",
        True,
        ("network", "connection", "timeout", "econnreset", "enotfound", "fetch failed"),
    ),
    ("AUTH", False, ("unauthorized", "invalid api key", "authentication", "401")),
    ("QUOTA", False, ("quota", "billing", "payment", "insufficient", "credits")),
]


def classify_error(error: Exception) -> ErrorClassification:
    """Map a provider error onto a retry category by its message.

    AUTH and QUOTA errors are not retryable; anything unrecognised is
    UNKNOWN and retried.
    """
    message = str(error)
    lowered = message.lower()

    for category, retryable, markers in _ERROR_MARKERS:
        if any(marker in lowered for marker in markers):
            wait = None
            if category == "RATE_LIMIT":
                match = _RETRY_AFTER_RE.search(message)
                wait = float(match.group(1)) if match else None
            return ErrorClassification(category, retryable=retryable, wait_seconds=wait)

    return ErrorClassification("UNKNOWN", retryable=True)


def backoff_seconds(classification: ErrorClassification, attempt: int) -> float:
    """Wait time before retry ``attempt`` (0-based) for a classified error."""
    category = classification.category
    if category == "TOKEN_LIMIT":
        return 3.0 * (2**attempt)
    if category == "RATE_LIMIT":
        if classification.wait_seconds:
            return classification.wait_seconds + 1
        return 30.0 + 15.0 * attempt
    if category == "MODEL_UNAVAILABLE":
        return 60.0 + 30.0 * attempt
    if category == "NETWORK":
        return 5.0 + 5.0 * attempt
    return 2.0 * (attempt + 1)


def _get_client() -> Any:
    """Get the embedding client for the configured provider."""
    settings = get_settings()
    if settings.EMBEDDING_PROVIDER == "openai":
        return OpenAI(api_key=settings.OPENAI_API_KEY)
    return voyageai.Client(api_key=settings.VOYAGE_API_KEY)


def _embed_batch(client: Any, texts: list[str], input_type: str | None) -> list[list[float]]:
    settings = get_settings()
    if settings.EMBEDDING_PROVIDER == "openai":
        response = client.embeddings.create(model=settings.EMBEDDING_MODEL, input=texts)
        return [item.embedding for item in response.data]

    result = client.embed(texts, model=settings.EMBEDDING_MODEL, input_type=input_type)
    return result.embeddings


def embed_texts(
    texts: list[str],
    input_type: str | None = "document",
    sleep=time.sleep,
) -> list[list[float]]:
    """
    Generate embeddings for a list of texts.

    Texts are grouped into token-bounded batches. When a batch fails with a
    retryable error the whole call is retried with the next, smaller token
    limit after the category's backoff.

    Args:
        texts: List of text strings to embed
        input_type: Voyage input type ("document" or "query")

    Returns:
        List of embedding vectors in the same order as ``texts``

    Raises:
        ValueError: If embedding dimension doesn't match expected EMBEDDING_DIM
        EmbeddingError: If the provider keeps failing or rejects the credentials
    """
    if not texts:
        return []

    settings = get_settings()
    client = _get_client()
    last_error: Exception | None = None

    for attempt in range(MAX_RETRIES + 1):
        token_limit = TOKEN_LIMITS[min(attempt, len(TOKEN_LIMITS) - 1)]
        try:
            embeddings: list[list[float] | None] = [None] * len(texts)
            for batch in create_token_aware_batches(texts, max_tokens_per_batch=token_limit):
                vectors = _embed_batch(client, batch.texts, input_type)
                for index, vector in zip(batch.indices, vectors):
                    embeddings[index] = vector

            for i, embedding in enumerate(embeddings):
                if embedding is None or len(embedding) != settings.EMBEDDING_DIM:
                    got = 0 if embedding is None else len(embedding)
                    raise ValueError(
                        f"Embedding dimension mismatch for text {i}: "
                        f"expected {settings.EMBEDDING_DIM}, got {got}"
                    )

            logger.info(
                f"Generated {len(embeddings)} embeddings using {settings.EMBEDDING_MODEL}",
                extra={"extra_data": {"model": settings.EMBEDDING_MODEL, "count": len(embeddings)}},
            )
            return embeddings

        except ValueError:
            raise
        except Exception as e:
            last_error = e
            classification = classify_error(e)
            if not classification.retryable:
                logger.error(f"Embedding failed ({classification.category}): {e}")
                raise EmbeddingError(str(e), classification.category) from e
            if attempt == MAX_RETRIES:
                break
            wait = backoff_seconds(classification, attempt)
            logger.warning(
                f"Embedding attempt {attempt + 1} failed ({classification.category}), "
                f"retrying in {wait:.0f}s"
            )
            sleep(wait)

    raise EmbeddingError(
        f"Failed to generate embeddings after {MAX_RETRIES + 1} attempts: {last_error}",
        classify_error(last_error).category if last_error else "UNKNOWN",
    )


def embed_text(text: str, input_type: str | None = "query") -> list[float]:
    """Embed a single text (queries by default)."""
    return embed_texts([text], input_type=input_type)[0]


async def embed_texts_async(texts: list[str], input_type: str | None = "document") -> list[list[float]]:
    """Async wrapper around embed_texts using thread pool."""
    return await asyncio.to_thread(embed_texts, texts, input_type)


async def embed_text_async(text: str) -> list[float]:
    return await asyncio.to_thread(embed_text, text)
