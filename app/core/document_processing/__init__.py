"""Document processing package: text extraction for uploaded files.

Usage:
    from app.core.document_processing import extract_text, validate_file

    result = await extract_text(file_bytes, mime_type, filename)
"""

from app.core.document_processing.base import (
    DocumentType,
    ExtractedSection,
    ExtractionResult,
    ExtractionError,
    BaseExtractor,
    ExtractorRegistry,
    get_extractor,
    detect_document_type,
    file_extension,
    resolve_mime_type,
    validate_file,
)

# Import extractors to register them
from app.core.document_processing import text_extractor  # noqa: F401
from app.core.document_processing import pdf_extractor  # noqa: F401
from app.core.document_processing import docx_extractor  # noqa: F401
from app.core.document_processing import pptx_extractor  # noqa: F401
from app.core.document_processing import image_extractor  # noqa: F401


async def extract_text(file_bytes: bytes, mime_type: str | None, filename: str) -> ExtractionResult:
    """Extract text with the extractor registered for the file's type.

    Raises:
        ExtractionError: If the type is unsupported or extraction fails
    """
    extractor = get_extractor(mime_type, file_extension(filename))
    if extractor is None:
        raise ExtractionError(f"Unsupported file type: {filename} ({mime_type or 'unknown'})")
    return await extractor.extract(file_bytes, filename, mime_type=mime_type)


__all__ = [
    "DocumentType",
    "ExtractedSection",
    "ExtractionResult",
    "ExtractionError",
    "BaseExtractor",
    "ExtractorRegistry",
    "get_extractor",
    "detect_document_type",
    "file_extension",
    "resolve_mime_type",
    "validate_file",
    "extract_text",
]
