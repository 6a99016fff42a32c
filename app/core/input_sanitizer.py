"""User input sanitization.

Strips markup from free text before it is stored or sent to the model.
"""

import html
import re
from typing import Any

MAX_INPUT_LENGTH = 10_000

# Script and style blocks are dropped with their content
_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"</?[A-Za-z][^>]*>|<!--.*?-->", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_input(value: Any, max_length: int = MAX_INPUT_LENGTH) -> str:
    """Return ``value`` as plain text: no HTML, collapsed whitespace, bounded length."""
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)

    text = _BLOCK_RE.sub(" ", text)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    # Unescaping can reintroduce tags
    text = _TAG_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()

    return text[:max_length]


def sanitize_object(value: Any, max_length: int = MAX_INPUT_LENGTH) -> Any:
    """Recursively sanitize every string inside dicts and lists."""
    if isinstance(value, str):
        return sanitize_input(value, max_length)
    if isinstance(value, dict):
        return {k: sanitize_object(v, max_length) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize_object(v, max_length) for v in value]
    return value
