"""Tests for sentence-aware text chunking."""

import pytest

from app.core.chunking import chunk_text, estimate_tokens

SENTENCES = "Alpha beta gamma delta. Epsilon zeta eta theta. Iota kappa lambda mu."


def test_chunk_text_single_chunk():
    chunks = chunk_text("One. Two! Three?", chunk_size=1000, overlap=200)

    assert chunks == [{"chunk_index": 0, "content": "One. Two! Three?", "token_count": 4}]


def test_chunk_text_keeps_sentence_punctuation():
    chunks = chunk_text("Is it ready?! Yes... Ship it", chunk_size=1000, overlap=0)

    assert chunks[0]["content"] == "Is it ready?! Yes... Ship it"


def test_token_count_rounds_half_up():
    # 10 chars is 2.5 estimated tokens
    assert chunk_text("Abcdefghi.")[0]["token_count"] == 3
    # 18 chars is 4.5
    assert chunk_text("Abcdefghijklmnopq.")[0]["token_count"] == 5


def test_chunk_text_splits_on_token_budget_with_word_overlap():
    # chunk_size=10 tokens is ~40 chars; overlap=8 tokens carries 2 words
    chunks = chunk_text(SENTENCES, chunk_size=10, overlap=8)

    assert [c["content"] for c in chunks] == [
        "Alpha beta gamma delta.",
        "gamma delta. Epsilon zeta eta theta.",
        "eta theta. Iota kappa lambda mu.",
    ]
    assert [c["chunk_index"] for c in chunks] == [0, 1, 2]
    assert chunks[0]["token_count"] == 6


def test_chunk_text_without_overlap():
    chunks = chunk_text(SENTENCES, chunk_size=10, overlap=0)

    assert [c["content"] for c in chunks] == [
        "Alpha beta gamma delta.",
        "Epsilon zeta eta theta.",
        "Iota kappa lambda mu.",
    ]


def test_oversized_sentence_stays_whole():
    long_sentence = "word " * 100
    chunks = chunk_text(f"Short. {long_sentence}.", chunk_size=10, overlap=0)

    assert len(chunks) == 2
    assert chunks[1]["content"].startswith("word word")


@pytest.mark.parametrize("text", ["", "   ", "...", None])
def test_chunk_text_empty(text):
    assert chunk_text(text) == []


def test_chunk_text_invalid_params():
    with pytest.raises(ValueError, match="must be greater than overlap"):
        chunk_text("Some text.", chunk_size=100, overlap=100)


def test_estimate_tokens():
    assert estimate_tokens("a" * 40) == 10
