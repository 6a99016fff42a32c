"""PDF extractor using PyMuPDF (fitz)."""

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

# Pages with less text than this are treated as scanned
MIN_PAGE_CHARS = 50


def _get_fitz():
    """Lazy load PyMuPDF."""
    import fitz

    return fitz


class PDFExtractor(BaseExtractor):
    """Extracts the text layer page by page.

    Scanned pages have no text layer; they are reported in ``warnings`` and
    the ``scanned_pages`` metadata rather than failing the whole document.
    """

    document_type = DocumentType.PDF

    async def extract(self, file_bytes: bytes, filename: str, **kwargs: Any) -> ExtractionResult:
        fitz = _get_fitz()

        try:
            doc = fitz.open(stream=file_bytes, filetype="pdf")
        except Exception as e:
            raise ExtractionError(f"Could not open PDF {filename}: {e}", extractor="pdf") from e

        sections: list[ExtractedSection] = []
        scanned_pages: list[int] = []
        try:
            page_count = len(doc)
            for page_num in range(page_count):
                text = doc[page_num].get_text("text").strip()
                if len(text) < MIN_PAGE_CHARS and doc[page_num].get_images():
                    scanned_pages.append(page_num + 1)
                if text:
                    sections.append(
                        ExtractedSection(section_type="page", content=text, page_number=page_num + 1)
                    )
        finally:
            doc.close()

        if not sections:
            raise ExtractionError(
                f"No extractable text in {filename}; the PDF may be scanned",
                extractor="pdf",
                recoverable=True,
            )

        result = self.build_result(sections, page_count=page_count, scanned_pages=scanned_pages)
        if scanned_pages:
            result.warnings.append(f"{len(scanned_pages)} page(s) appear to be scanned images")
        logger.info(f"Extracted {result.word_count} words from {page_count} PDF pages")
        return result


ExtractorRegistry.register(PDFExtractor())
