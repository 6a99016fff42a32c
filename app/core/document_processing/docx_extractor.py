"""DOCX extractor using python-docx."""

from io import BytesIO
from typing import Any

from docx import Document

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


class DOCXExtractor(BaseExtractor):
    """Groups paragraphs under their nearest heading; tables become pipe-delimited rows."""

    document_type = DocumentType.DOCX

    async def extract(self, file_bytes: bytes, filename: str, **kwargs: Any) -> ExtractionResult:
        try:
            document = Document(BytesIO(file_bytes))
        except Exception as e:
            raise ExtractionError(f"Could not open DOCX {filename}: {e}", extractor="docx") from e

        sections: list[ExtractedSection] = []
        heading: str | None = None
        buffer: list[str] = []

        def flush():
            if buffer:
                sections.append(
                    ExtractedSection(section_type="paragraph", content="\n".join(buffer), section_title=heading)
                )
                buffer.clear()

        for paragraph in document.paragraphs:
            text = paragraph.text.strip()
            if not text:
                continue
            style = paragraph.style.name if paragraph.style is not None else ""
            if style.startswith("Heading") or style == "Title":
                flush()
                heading = text
                buffer.append(text)
            else:
                buffer.append(text)
        flush()

        for table in document.tables:
            rows = [" | ".join(cell.text.strip() for cell in row.cells) for row in table.rows]
            rows = [r for r in rows if r.strip(" |")]
            if rows:
                sections.append(ExtractedSection(section_type="table", content="\n".join(rows)))

        if not sections:
            raise ExtractionError(f"{filename} contains no text", extractor="docx")

        return self.build_result(sections, page_count=1, heading_count=sum(1 for s in sections if s.section_title))


ExtractorRegistry.register(DOCXExtractor())
