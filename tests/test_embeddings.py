"""Tests for embeddings generation with mocked providers."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from app.core.embeddings import (
    EmbeddingError,
    backoff_seconds,
    classify_error,
    embed_text,
    embed_texts,
)

DIM = 1024


@pytest.fixture
def voyage_client():
    """Voyage client mock returning one vector per input text."""
    client = MagicMock()
    client.embed.side_effect = lambda texts, **kwargs: SimpleNamespace(embeddings=[[0.1] * DIM for _ in texts])
    with patch("app.core.embeddings._get_client", return_value=client):
        yield client


def test_embed_texts_voyage(voyage_client):
    embeddings = embed_texts(["Text one", "Text two", "Text three"])

    assert len(embeddings) == 3
    assert all(len(e) == DIM for e in embeddings)
    kwargs = voyage_client.embed.call_args.kwargs
    assert kwargs == {"model": "voyage-3-large", "input_type": "document"}


def test_embed_text_uses_query_input_type(voyage_client):
    assert len(embed_text("What is RAG?")) == DIM
    assert voyage_client.embed.call_args.kwargs["input_type"] == "query"


def test_embed_texts_empty():
    assert embed_texts([]) == []


def test_embed_texts_openai_provider():
    settings = SimpleNamespace(
        EMBEDDING_PROVIDER="openai", EMBEDDING_MODEL="text-embedding-3-small", EMBEDDING_DIM=1536
    )
    client = MagicMock()
    client.embeddings.create.return_value = SimpleNamespace(
        data=[SimpleNamespace(embedding=[0.2] * 1536), SimpleNamespace(embedding=[0.3] * 1536)]
    )
    with (
        patch("app.core.embeddings.get_settings", return_value=settings),
        patch("app.core.embeddings._get_client", return_value=client),
    ):
        embeddings = embed_texts(["a", "b"])

    assert embeddings[1][0] == 0.3
    client.embeddings.create.assert_called_once_with(model="text-embedding-3-small", input=["a", "b"])


def test_dimension_mismatch_raises_value_error():
    client = MagicMock()
    client.embed.return_value = SimpleNamespace(embeddings=[[0.1] * 512])
    with patch("app.core.embeddings._get_client", return_value=client):
        with pytest.raises(ValueError, match="expected 1024, got 512"):
            embed_texts(["text"])


class TestRetries:
    def test_retries_transient_errors(self, voyage_client):
        sleep = MagicMock()
        voyage_client.embed.side_effect = [
            Exception("Connection reset by peer"),
            SimpleNamespace(embeddings=[[0.1] * DIM]),
        ]

        embeddings = embed_texts(["text"], sleep=sleep)

        assert len(embeddings) == 1
        sleep.assert_called_once_with(5.0)

    def test_auth_errors_are_not_retried(self, voyage_client):
        sleep = MagicMock()
        voyage_client.embed.side_effect = Exception("Invalid API key provided")

        with pytest.raises(EmbeddingError) as exc:
            embed_texts(["text"], sleep=sleep)

        assert exc.value.category == "AUTH"
        sleep.assert_not_called()

    def test_gives_up_after_max_retries(self, voyage_client):
        sleep = MagicMock()
        voyage_client.embed.side_effect = Exception("503 Service Unavailable")

        with pytest.raises(EmbeddingError, match="after 4 attempts") as exc:
            embed_texts(["text"], sleep=sleep)

        assert exc.value.category == "MODEL_UNAVAILABLE"
        assert [c.args[0] for c in sleep.call_args_list] == [60.0, 90.0, 120.0]


class TestErrorClassification:
    @pytest.mark.parametrize(
        "message,category,retryable",
        [
            ("Request too large: max allowed tokens per batch", "TOKEN_LIMIT", True),
            ("429 Too Many Requests", "RATE_LIMIT", True),
            ("Service temporarily unavailable", "MODEL_UNAVAILABLE", True),
            ("fetch failed: ECONNRESET", "NETWORK", True),
            ("401 Unauthorized", "AUTH", False),
            ("You exceeded your current quota", "QUOTA", False),
            ("something unexpected", "UNKNOWN", True),
        ],
    )
    def test_categories(self, message, category, retryable):
        result = classify_error(Exception(message))
        assert (result.category, result.retryable) == (category, retryable)

    def test_rate_limit_uses_provider_wait(self):
        result = classify_error(Exception("Rate limit reached. Please try again in 20 seconds."))
        assert result.wait_seconds == 20.0
        assert backoff_seconds(result, attempt=0) == 21.0

    def test_backoff_grows_with_attempts(self):
        token_limit = classify_error(Exception("token limit exceeded"))
        assert [backoff_seconds(token_limit, a) for a in range(3)] == [3.0, 6.0, 12.0]
        rate_limit = classify_error(Exception("rate limit"))
        assert backoff_seconds(rate_limit, 1) == 45.0
