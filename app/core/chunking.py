"""Sentence-aware text chunking for document ingestion."""

import math
import re
from typing import Any

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]*")

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> float:
    return len(text) / CHARS_PER_TOKEN


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    overlap: int = 200,
) -> list[dict[str, Any]]:
    """
    Split text into overlapping chunks along sentence boundaries.

    Sentences keep their own terminating punctuation. Token counts round
    halves up.

    Sentences accumulate until adding the next one would push the estimated
    token count (``len / 4``) past ``chunk_size``. The next chunk then starts
    with the last ``overlap // 4`` words of the previous one.

    Args:
        text: Text to chunk
        chunk_size: Maximum estimated tokens per chunk
        overlap: Overlap between consecutive chunks in estimated tokens

    Returns:
        List of chunk dicts with:
            - chunk_index: int (0-based)
            - content: str
            - token_count: int

    Raises:
        ValueError: If chunk_size <= overlap
    """
    if chunk_size <= overlap:
        raise ValueError(f"chunk_size ({chunk_size}) must be greater than overlap ({overlap})")

    sentences = [s.strip() for s in _SENTENCE_RE.findall(text or "") if s.strip()]
    if not sentences:
        return []

    overlap_words = overlap // CHARS_PER_TOKEN
    chunks: list[dict[str, Any]] = []
    current = ""

    for sentence in sentences:
        candidate = f"{current} {sentence}" if current else sentence

        if current and estimate_tokens(candidate) > chunk_size:
            chunks.append(_make_chunk(current, len(chunks)))
            words = current.split()
            tail = " ".join(words[-overlap_words:]) if overlap_words else ""
            current = f"{tail} {sentence}" if tail else sentence
        else:
            current = candidate

    if current.strip():
        chunks.append(_make_chunk(current, len(chunks)))

    return chunks


def _make_chunk(content: str, index: int) -> dict[str, Any]:
    content = content.strip()
    return {
        "chunk_index": index,
        "content": content,
        "token_count": math.floor(estimate_tokens(content) + 0.5),
    }
