"""Document library API: listing, download links, deletion and re-ingestion."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.auth_middleware import AuthContext, require_admin, require_auth, require_contributor
from app.core.ingest import (
    IngestError,
    clear_document_vectors,
    delete_document_everywhere,
    process_document_vectors,
)
from app.core.logging import get_logger
from app.core.storage import StorageError, create_download_url
from app.db import documents as documents_db

logger = get_logger(__name__)

router = APIRouter(tags=["documents"])


def _get_document_or_404(document_id: str) -> dict:
    document = documents_db.get_document(document_id)
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document


@router.get("/documents")
def list_documents(auth: AuthContext = Depends(require_contributor)) -> dict:
    """Documents with their latest ingest status. Contributors only see their own uploads."""
    uploaded_by = None if auth.is_admin() else auth.user_id
    documents = documents_db.list_documents(uploaded_by=uploaded_by)
    return {"documents": documents, "total": len(documents)}


@router.get("/documents/{document_id}/download")
def download_document(
    document_id: str,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """A short-lived signed URL for the original file."""
    document = _get_document_or_404(document_id)
    if not document.get("storage_path"):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Original file not available")

    try:
        url = create_download_url(document["storage_path"])
    except StorageError as e:
        logger.error(f"Download link failed: {e}", extra={"document_id": document_id})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not create download link")

    return {"url": url, "filename": document.get("title")}


@router.delete("/documents/{document_id}")
async def delete_document(
    document_id: str,
    auth: AuthContext = Depends(require_contributor),
) -> dict:
    """Delete a document with its vectors, chunks and stored file. Contributors may only delete their own."""
    document = await asyncio.to_thread(_get_document_or_404, document_id)
    if not auth.is_admin() and str(document.get("uploaded_by")) != str(auth.user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only delete documents you uploaded",
        )

    await asyncio.to_thread(delete_document_everywhere, document)
    logger.info("Document deleted", extra={"user_id": str(auth.user_id), "document_id": document_id})
    return {"success": True, "message": f"Deleted '{document.get('title')}'"}


@router.post("/ingest/{document_id}")
async def reingest_document(
    document_id: str,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    """Re-run chunking, embedding and indexing for a stored document."""
    document = await asyncio.to_thread(_get_document_or_404, document_id)

    await asyncio.to_thread(clear_document_vectors, document_id)

    try:
        result = await asyncio.to_thread(process_document_vectors, document_id, str(auth.user_id))
    except IngestError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"Re-ingestion failed: {e}", extra={"document_id": document_id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Ingestion failed: {e}",
        )

    return {
        "success": True,
        "document_id": result.document_id,
        "document_title": result.document_title or document.get("title"),
        "chunks_created": result.chunks_created,
    }
