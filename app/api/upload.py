"""File upload API."""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status

from app.core.auth_middleware import AuthContext, require_contributor
from app.core.document_processing import ExtractionError
from app.core.file_security import FileSecurityError
from app.core.ingest import DuplicateDocumentError, ingest_upload
from app.core.logging import get_logger
from app.core.rate_limiter import get_identifier, upload_rate_limiter
from app.core.storage import StorageError

logger = get_logger(__name__)

router = APIRouter(tags=["documents"])


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    author: Optional[str] = Form(None),
    auth: AuthContext = Depends(require_contributor),
) -> dict:
    """
    Upload a document and index it for chat.

    The file is checked, its text extracted, the original stored and the
    text chunked, embedded and indexed. If indexing fails the document is
    kept with a failed ingest job so an admin can re-run it.
    """
    await asyncio.to_thread(
        upload_rate_limiter.enforce, get_identifier(request, str(auth.user_id)), auth.role.value
    )

    filename = file.filename or "upload"
    file_bytes = await file.read()
    if not file_bytes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is empty")

    try:
        document, result = await ingest_upload(
            file_bytes=file_bytes,
            filename=filename,
            mime_type=file.content_type,
            uploaded_by=str(auth.user_id),
            title=title,
            author=author,
        )
    except DuplicateDocumentError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except (FileSecurityError, ExtractionError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StorageError as e:
        logger.error(f"Upload storage failed: {e}", extra={"user_id": str(auth.user_id)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store the uploaded file",
        )

    logger.info(
        f"Uploaded {filename}",
        extra={"user_id": str(auth.user_id), "document_id": document["id"]},
    )

    return {
        "success": True,
        "document": {
            "id": document["id"],
            "title": document.get("title"),
            "author": document.get("author"),
            "word_count": document.get("word_count"),
            "page_count": document.get("page_count"),
        },
        "chunks_created": result.chunks_created if result else 0,
        "ingest_status": "completed" if result else "failed",
    }
