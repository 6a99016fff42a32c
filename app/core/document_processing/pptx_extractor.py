"""PPTX extractor using python-pptx: slide text, tables and speaker notes."""

from io import BytesIO
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


def _get_pptx():
    """Lazy load python-pptx."""
    import pptx

    return pptx


class PPTXExtractor(BaseExtractor):
    document_type = DocumentType.PPTX

    async def extract(self, file_bytes: bytes, filename: str, **kwargs: Any) -> ExtractionResult:
        pptx = _get_pptx()
        try:
            presentation = pptx.Presentation(BytesIO(file_bytes))
        except Exception as e:
            raise ExtractionError(f"Could not open PPTX {filename}: {e}", extractor="pptx") from e

        sections: list[ExtractedSection] = []
        slide_count = 0

        for slide_num, slide in enumerate(presentation.slides, start=1):
            slide_count = slide_num
            lines: list[str] = []
            title = None

            for shape in slide.shapes:
                if shape.has_text_frame:
                    text = "\n".join(p.text.strip() for p in shape.text_frame.paragraphs if p.text.strip())
                    if text:
                        lines.append(text)
                        if title is None and shape == slide.shapes.title:
                            title = text
                if getattr(shape, "has_table", False) and shape.has_table:
                    for row in shape.table.rows:
                        lines.append(" | ".join(cell.text.strip() for cell in row.cells))

            if lines:
                sections.append(
                    ExtractedSection(
                        section_type="slide",
                        content="\n".join(lines),
                        section_title=title,
                        page_number=slide_num,
                    )
                )

            if slide.has_notes_slide and slide.notes_slide.notes_text_frame:
                notes = slide.notes_slide.notes_text_frame.text.strip()
                if notes:
                    sections.append(
                        ExtractedSection(section_type="speaker_notes", content=notes, page_number=slide_num)
                    )

        if not sections:
            raise ExtractionError(f"{filename} contains no text", extractor="pptx")

        return self.build_result(sections, page_count=slide_count)


ExtractorRegistry.register(PPTXExtractor())
