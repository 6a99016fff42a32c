"""Image OCR extractor using Anthropic vision."""

import asyncio
import base64
from typing import Any

from anthropic import Anthropic

from app.core.config import get_settings
from app.core.document_processing.base import (
    BaseExtractor,
    DocumentType,
    ExtractedSection,
    ExtractionError,
    ExtractionResult,
    ExtractorRegistry,
    MIME_TYPE_MAP,
    file_extension,
)
from app.core.logging import get_logger

logger = get_logger(__name__)

OCR_PROMPT = """Transcribe all readable text in this image exactly as written, preserving line breaks.
If the image contains a chart, diagram or table, describe its contents in plain sentences after the transcription.
Reply with the text only, no commentary. If there is no text and nothing to describe, reply with NO_TEXT."""

_EXTENSION_MIME = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def _get_client() -> Anthropic:
    settings = get_settings()
    if not settings.ANTHROPIC_API_KEY:
        raise ExtractionError("ANTHROPIC_API_KEY not configured for image OCR", extractor="image")
    return Anthropic(api_key=settings.ANTHROPIC_API_KEY)


class ImageExtractor(BaseExtractor):
    document_type = DocumentType.IMAGE

    async def extract(
        self,
        file_bytes: bytes,
        filename: str,
        mime_type: str | None = None,
        **kwargs: Any,
    ) -> ExtractionResult:
        if len(file_bytes) > self.get_size_limit():
            raise ExtractionError(
                f"Image exceeds {self.get_size_limit() // (1024 * 1024)}MB OCR limit", extractor="image"
            )

        if not mime_type or MIME_TYPE_MAP.get(mime_type) != DocumentType.IMAGE:
            mime_type = _EXTENSION_MIME.get(file_extension(filename), "image/png")

        settings = get_settings()
        client = _get_client()
        image_data = base64.standard_b64encode(file_bytes).decode("utf-8")

        try:
            response = await asyncio.to_thread(
                client.messages.create,
                model=settings.OCR_MODEL,
                max_tokens=4096,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {"type": "base64", "media_type": mime_type, "data": image_data},
                            },
                            {"type": "text", "text": OCR_PROMPT},
                        ],
                    }
                ],
            )
        except Exception as e:
            logger.error(f"Image OCR failed for {filename}: {e}")
            raise ExtractionError(f"Vision analysis failed: {e}", extractor="image", recoverable=True) from e

        text = response.content[0].text.strip() if response.content else ""
        if not text or text == "NO_TEXT":
            raise ExtractionError(f"No text found in image {filename}", extractor="image", recoverable=True)

        sections = [ExtractedSection(section_type="image_text", content=text, page_number=1)]
        return self.build_result(
            sections,
            page_count=1,
            method="vision",
            model_used=settings.OCR_MODEL,
            mime_type=mime_type,
        )


ExtractorRegistry.register(ImageExtractor())
