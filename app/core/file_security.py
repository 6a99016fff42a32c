"""Security checks applied to uploaded files before extraction."""

import re

DEFAULT_MAX_SIZE = 50 * 1024 * 1024
MAX_FILENAME_LENGTH = 255
SCAN_BYTES = 10_000

# Magic numbers per declared MIME type; None means no signature to check
FILE_SIGNATURES: dict[str, bytes | None] = {
    "application/pdf": b"%PDF",
    "application/msword": b"\xd0\xcf\x11\xe0",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": b"PK\x03\x04",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": b"PK\x03\x04",
    "text/plain": None,
    "text/markdown": None,
}

_DANGEROUS_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

_SUSPICIOUS_PATTERNS = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),
    re.compile(r"<\?php", re.IGNORECASE),
    re.compile(r"<%"),
]


class FileSecurityError(ValueError):
    """Raised when an upload fails a security check."""


def validate_file_signature(data: bytes, mime_type: str) -> bool:
    """True if ``data`` starts with the magic number expected for ``mime_type``."""
    signature = FILE_SIGNATURES.get(mime_type)
    if not signature:
        return True
    return data[: len(signature)] == signature


def validate_file_size(size: int, max_size: int = DEFAULT_MAX_SIZE) -> bool:
    return size <= max_size


def sanitize_filename(filename: str) -> str:
    """Replace path separators, control and shell characters; block traversal."""
    cleaned = _DANGEROUS_CHARS_RE.sub("_", filename)
    cleaned = cleaned.replace("..", "_")
    return cleaned[:MAX_FILENAME_LENGTH]


def scan_for_malicious_content(data: bytes) -> bool:
    """False if the first 10 000 bytes contain script or server-side code markers."""
    head = data[:SCAN_BYTES].decode("utf-8", errors="ignore")
    return not any(pattern.search(head) for pattern in _SUSPICIOUS_PATTERNS)


def check_upload(data: bytes, mime_type: str, max_size: int = DEFAULT_MAX_SIZE) -> None:
    """
    Run every security check on an upload.

    Only text formats are scanned for markup.

    Raises:
        FileSecurityError: With a user-facing message for the first failed check
    """
    if not validate_file_size(len(data), max_size):
        raise FileSecurityError(f"File size exceeds {max_size // (1024 * 1024)}MB limit")

    if not validate_file_signature(data, mime_type):
        raise FileSecurityError("File signature does not match file type")

    if mime_type.startswith("text/") and not scan_for_malicious_content(data):
        raise FileSecurityError("File contains potentially malicious content")
