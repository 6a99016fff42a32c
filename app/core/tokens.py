"""Script-aware token estimation and token-bounded batching for embeddings."""

import math
import re
from dataclasses import dataclass
from typing import Literal

from app.core.logging import get_logger

logger = get_logger(__name__)

Script = Literal["arabic", "cjk", "multilingual", "latin"]

# Characters per token and safety margin per script family
CHARS_PER_TOKEN: dict[str, float] = {
    "arabic": 0.6,
    "cjk": 0.7,
    "multilingual": 0.8,
    "latin": 1.0,
}
SAFETY_MARGIN: dict[str, float] = {
    "arabic": 1.4,
    "cjk": 1.35,
    "multilingual": 1.3,
    "latin": 1.25,
}

# Descending token limits tried on successive embedding retries
TOKEN_LIMITS = [15000, 10000, 7000, 5000, 3000, 1000]

_ARABIC_RE = re.compile(r"[؀-ۿݐ-ݿࢠ-ࣿﭐ-﷿ﹰ-﻿]")
_CJK_RE = re.compile(r"[一-鿿㐀-䶿぀-ゟ゠-ヿ가-힯]")

_SAMPLE_CHARS = 1000


@dataclass
class TokenBatch:
    texts: list[str]
    indices: list[int]
    estimated_tokens: int


def detect_script(text: str) -> Script:
    """Classify text by the share of Arabic or CJK characters in its first 1000 chars."""
    sample = text[:_SAMPLE_CHARS]
    if not sample:
        return "latin"

    arabic_ratio = len(_ARABIC_RE.findall(sample)) / len(sample)
    cjk_ratio = len(_CJK_RE.findall(sample)) / len(sample)

    if arabic_ratio > 0.3:
        return "arabic"
    if cjk_ratio > 0.3:
        return "cjk"
    if arabic_ratio > 0.1 or cjk_ratio > 0.1:
        return "multilingual"
    return "latin"


def estimate_token_count(text: str) -> int:
    """
    Estimate the token count of ``text``, erring on the high side.

    Non-Latin scripts tokenize into more tokens per character, so both the
    ratio and the safety margin scale with the detected script.
    """
    if not text:
        return 0
    script = detect_script(text)
    base = math.ceil(len(text) / CHARS_PER_TOKEN[script])
    return math.ceil(base * SAFETY_MARGIN[script])


def estimate_batch_token_count(texts: list[str]) -> int:
    return sum(estimate_token_count(t) for t in texts)


def split_text_to_token_limit(text: str, max_tokens: int) -> list[str]:
    """Split text into pieces that each fit within ``max_tokens``.

    Pieces break at the last space when it falls in the final 20% of the
    piece, otherwise mid-word.
    """
    if estimate_token_count(text) <= max_tokens:
        return [text]

    script = detect_script(text)
    chunk_size = max(1, math.floor(max_tokens * CHARS_PER_TOKEN[script] / SAFETY_MARGIN[script]))

    pieces: list[str] = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        if end < len(text):
            last_space = text.rfind(" ", start, end)
            if last_space - start > chunk_size * 0.8:
                end = last_space
        piece = text[start:end].strip()
        if piece:
            pieces.append(piece)
        start = end

    return pieces


def truncate_to_token_limit(text: str, max_tokens: int) -> str:
    """Truncate text to roughly ``max_tokens`` at a word boundary, appending an ellipsis."""
    if estimate_token_count(text) <= max_tokens:
        return text

    script = detect_script(text)
    # Reserve room for the ellipsis
    max_chars = math.floor((max_tokens - 3) * CHARS_PER_TOKEN[script] / SAFETY_MARGIN[script])
    truncated = text[: max(max_chars, 0)]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        truncated = truncated[:last_space]
    return truncated + "..."


def create_token_aware_batches(
    texts: list[str],
    max_tokens_per_batch: int = TOKEN_LIMITS[0],
    max_items_per_batch: int = 100,
) -> list[TokenBatch]:
    """
    Group texts into batches bounded by estimated tokens and item count.

    A single text over the limit is truncated so it can still be embedded
    on its own. ``indices`` map each batch entry back to ``texts``.
    """
    batches: list[TokenBatch] = []
    current = TokenBatch(texts=[], indices=[], estimated_tokens=0)

    for i, text in enumerate(texts):
        tokens = estimate_token_count(text)
        if tokens > max_tokens_per_batch:
            logger.warning(
                f"Text {i} exceeds batch token limit ({tokens} > {max_tokens_per_batch}), truncating"
            )
            text = truncate_to_token_limit(text, max_tokens_per_batch)
            tokens = estimate_token_count(text)

        would_overflow = current.estimated_tokens + tokens > max_tokens_per_batch
        if current.texts and (would_overflow or len(current.texts) >= max_items_per_batch):
            batches.append(current)
            current = TokenBatch(texts=[], indices=[], estimated_tokens=0)

        current.texts.append(text)
        current.indices.append(i)
        current.estimated_tokens += tokens

    if current.texts:
        batches.append(current)

    return batches
