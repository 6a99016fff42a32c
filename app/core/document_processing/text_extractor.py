"""Plain text and Markdown extractor."""

from typing import Any

from app.core.document_processing.base import (
    BaseExtractor,
    DocumentType,
    ExtractedSection,
    ExtractionError,
    ExtractionResult,
    ExtractorRegistry,
)
from app.core.logging import get_logger

logger = get_logger(__name__)

# Tried in order; latin-1 decodes any byte sequence
ENCODINGS = ("utf-8-sig", "utf-8", "latin-1")


def decode_text(raw_bytes: bytes) -> tuple[str, str]:
    """Decode bytes with the first encoding that works. Returns (text, encoding)."""
    for encoding in ENCODINGS:
        try:
            return raw_bytes.decode(encoding), encoding
        except UnicodeDecodeError:
            continue
    raise ExtractionError("Could not decode file as text", extractor="text")


class TextExtractor(BaseExtractor):
    document_type = DocumentType.TEXT

    async def extract(self, file_bytes: bytes, filename: str, **kwargs: Any) -> ExtractionResult:
        text, encoding = decode_text(file_bytes)
        text = text.replace("\r\n", "\n").strip()
        if not text:
            raise ExtractionError(f"{filename} contains no text", extractor="text")

        sections = [ExtractedSection(section_type="text", content=text)]
        logger.debug(f"Decoded {filename} as {encoding}")
        return self.build_result(sections, page_count=1, encoding=encoding)


class MarkdownExtractor(TextExtractor):
    document_type = DocumentType.MARKDOWN


ExtractorRegistry.register(TextExtractor())
ExtractorRegistry.register(MarkdownExtractor())
