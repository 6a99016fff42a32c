"""Base extractor interface and registry for uploaded documents.

Every supported file type has one extractor. The registry picks the
extractor from the declared MIME type, falling back to the file extension
when the browser sends a generic or empty type.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class DocumentType(Enum):
    """Supported document types."""
    TEXT = "text"
    MARKDOWN = "markdown"
    PDF = "pdf"
    DOCX = "docx"
    PPTX = "pptx"
    IMAGE = "image"


MIME_TYPE_MAP: dict[str, DocumentType] = {
    "text/plain": DocumentType.TEXT,
    "text/markdown": DocumentType.MARKDOWN,
    "text/x-markdown": DocumentType.MARKDOWN,
    "application/pdf": DocumentType.PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DocumentType.DOCX,
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": DocumentType.PPTX,
    "application/vnd.ms-powerpoint": DocumentType.PPTX,
    "image/png": DocumentType.IMAGE,
    "image/jpeg": DocumentType.IMAGE,
    "image/gif": DocumentType.IMAGE,
    "image/webp": DocumentType.IMAGE,
}

EXTENSION_MAP: dict[str, DocumentType] = {
    ".txt": DocumentType.TEXT,
    ".md": DocumentType.MARKDOWN,
    ".pdf": DocumentType.PDF,
    ".docx": DocumentType.DOCX,
    ".pptx": DocumentType.PPTX,
    ".ppt": DocumentType.PPTX,
    ".png": DocumentType.IMAGE,
    ".jpg": DocumentType.IMAGE,
    ".jpeg": DocumentType.IMAGE,
    ".gif": DocumentType.IMAGE,
    ".webp": DocumentType.IMAGE,
}

# Canonical MIME type per document type, used when only the extension is known
CANONICAL_MIME: dict[DocumentType, str] = {
    DocumentType.TEXT: "text/plain",
    DocumentType.MARKDOWN: "text/markdown",
    DocumentType.PDF: "application/pdf",
    DocumentType.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    DocumentType.PPTX: "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}

MAX_FILE_SIZE = 50 * 1024 * 1024

# Image OCR sends the whole file to the vision model
SIZE_LIMITS: dict[DocumentType, int] = {
    DocumentType.IMAGE: 5 * 1024 * 1024,
}


@dataclass
class ExtractedSection:
    """A unit of extracted content: a page, slide, paragraph group or image."""

    section_type: str
    content: str
    section_title: Optional[str] = None
    page_number: Optional[int] = None
    word_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.word_count == 0 and self.content:
            self.word_count = len(self.content.split())


@dataclass
class ExtractionResult:
    """Result of document extraction."""

    sections: list[ExtractedSection]
    page_count: int
    word_count: int
    extraction_method: str
    """'native' for text layers, 'vision' for OCR."""

    raw_text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class ExtractionError(Exception):
    """Raised when document extraction fails."""

    def __init__(self, message: str, extractor: str = None, recoverable: bool = False):
        super().__init__(message)
        self.extractor = extractor
        self.recoverable = recoverable


class BaseExtractor(ABC):
    """Base class for document extractors."""

    document_type: DocumentType

    def can_handle(self, mime_type: str, file_extension: str) -> bool:
        return detect_document_type(mime_type, file_extension) == self.document_type

    @abstractmethod
    async def extract(self, file_bytes: bytes, filename: str, **kwargs: Any) -> ExtractionResult:
        """Extract content from document.

        Raises:
            ExtractionError: If extraction fails
        """

    def get_size_limit(self) -> int:
        return get_size_limit(self.document_type)

    @staticmethod
    def build_result(
        sections: list[ExtractedSection],
        page_count: int,
        method: str = "native",
        separator: str = "\n\n",
        **metadata: Any,
    ) -> ExtractionResult:
        raw_text = separator.join(s.content for s in sections if s.content)
        return ExtractionResult(
            sections=sections,
            page_count=page_count,
            word_count=len(raw_text.split()),
            extraction_method=method,
            raw_text=raw_text,
            metadata=metadata,
        )


class ExtractorRegistry:
    """Registry for document extractors."""

    _extractors: list[BaseExtractor] = []

    @classmethod
    def register(cls, extractor: BaseExtractor) -> None:
        cls._extractors.append(extractor)

    @classmethod
    def get_extractor(cls, mime_type: str = None, file_extension: str = None) -> Optional[BaseExtractor]:
        for extractor in cls._extractors:
            if extractor.can_handle(mime_type or "", file_extension or ""):
                return extractor
        return None


def get_extractor(mime_type: str = None, file_extension: str = None) -> Optional[BaseExtractor]:
    return ExtractorRegistry.get_extractor(mime_type, file_extension)


def file_extension(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename[filename.rfind("."):].lower()


def detect_document_type(mime_type: str = None, file_extension: str = None) -> Optional[DocumentType]:
    """Detect document type from MIME type, falling back to extension."""
    if mime_type and mime_type in MIME_TYPE_MAP:
        return MIME_TYPE_MAP[mime_type]

    if file_extension:
        ext = file_extension.lower()
        if not ext.startswith("."):
            ext = f".{ext}"
        if ext in EXTENSION_MAP:
            return EXTENSION_MAP[ext]

    return None


def resolve_mime_type(mime_type: str | None, filename: str) -> str:
    """Declared MIME type if recognised, otherwise the canonical type for the extension."""
    if mime_type and mime_type in MIME_TYPE_MAP:
        return mime_type
    doc_type = detect_document_type(None, file_extension(filename))
    if doc_type in CANONICAL_MIME:
        return CANONICAL_MIME[doc_type]
    return mime_type or "application/octet-stream"


def get_size_limit(doc_type: DocumentType) -> int:
    return SIZE_LIMITS.get(doc_type, MAX_FILE_SIZE)


def validate_file(
    file_bytes: bytes,
    mime_type: str = None,
    filename: str = "",
) -> tuple[bool, str, Optional[DocumentType]]:
    """Validate file type and size.

    Returns:
        Tuple of (is_valid, error_message, document_type)
    """
    doc_type = detect_document_type(mime_type, file_extension(filename))
    if not doc_type:
        return (
            False,
            f"Unsupported file type: {filename} ({mime_type or 'unknown MIME type'}). "
            "Supported types: TXT, MD, PDF, DOCX, PPTX, images (PNG, JPG, GIF, WEBP)",
            None,
        )

    limit = get_size_limit(doc_type)
    size = len(file_bytes)
    if size > limit:
        return (
            False,
            f"File too large: {size / (1024 * 1024):.1f}MB. Max size: {limit // (1024 * 1024)}MB",
            doc_type,
        )

    return True, "", doc_type
