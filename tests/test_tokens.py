"""Tests for script-aware token estimation and embedding batches."""

from app.core.tokens import (
    create_token_aware_batches,
    detect_script,
    estimate_batch_token_count,
    estimate_token_count,
    split_text_to_token_limit,
    truncate_to_token_limit,
)

WORDS = ("word " * 100).strip()


def test_detect_script():
    assert detect_script("hello world") == "latin"
    assert detect_script("مرحبا بالعالم") == "arabic"
    assert detect_script("你好世界") == "cjk"
    assert detect_script("abcd你") == "multilingual"
    assert detect_script("") == "latin"


def test_estimates_err_high_for_non_latin():
    assert estimate_token_count("") == 0
    assert estimate_token_count("hello world") == 14
    assert estimate_token_count("你好世界") == 9
    assert estimate_batch_token_count(["hello world", "你好世界"]) == 23


def test_split_keeps_every_word_within_limit():
    pieces = split_text_to_token_limit(WORDS, max_tokens=50)

    assert len(pieces) > 1
    assert all(estimate_token_count(p) <= 50 for p in pieces)
    assert " ".join(pieces).split() == WORDS.split()


def test_split_short_text_unchanged():
    assert split_text_to_token_limit("short text", max_tokens=50) == ["short text"]


def test_truncate_at_word_boundary():
    assert truncate_to_token_limit(WORDS, max_tokens=20) == "word word..."
    assert truncate_to_token_limit("short", max_tokens=20) == "short"


class TestBatches:
    def test_bounded_by_tokens(self):
        texts = ["a" * 40] * 5  # 50 tokens each

        batches = create_token_aware_batches(texts, max_tokens_per_batch=120)

        assert [b.indices for b in batches] == [[0, 1], [2, 3], [4]]
        assert batches[0].estimated_tokens == 100

    def test_bounded_by_item_count(self):
        batches = create_token_aware_batches(["a", "b", "c"], max_items_per_batch=2)
        assert [b.texts for b in batches] == [["a", "b"], ["c"]]

    def test_oversized_text_is_truncated_into_its_own_batch(self):
        batches = create_token_aware_batches(["a" * 8, WORDS], max_tokens_per_batch=20)

        assert [b.indices for b in batches] == [[0], [1]]
        assert batches[1].texts == ["word word..."]
