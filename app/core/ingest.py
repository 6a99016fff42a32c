"""Document ingestion: upload pipeline and chunk/embed/index processing."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from app.core.cache import CacheNamespace, cache
from app.core.chunking import chunk_text
from app.core.config import get_settings
from app.core.document_processing import ExtractionError, extract_text, resolve_mime_type, validate_file
from app.core.embeddings import embed_texts
from app.core.file_security import check_upload
from app.core.input_sanitizer import sanitize_input
from app.core.logging import get_logger, log_with_context
from app.core.storage import build_storage_path, remove_file, upload_file
from app.core.vector_store import ChunkVector, delete_document_chunks, store_chunks
from app.db import documents as documents_db

logger = get_logger(__name__)

EMBED_BATCH_SIZE = 100


class IngestError(Exception):
    """Raised when a document cannot be ingested."""


class DuplicateDocumentError(IngestError):
    def __init__(self, existing: dict[str, Any]):
        super().__init__(f"This file was already uploaded as '{existing.get('title')}'")
        self.existing = existing


@dataclass
class IngestResult:
    document_id: str
    document_title: str
    chunks_created: int


def process_document_vectors(document_id: str, user_id: str | None = None) -> IngestResult:
    """
    Chunk, embed and index a stored document.

    ``user_id`` is recorded on the ingest job as the user who triggered the run.

    Progress is tracked in an ``ingest_jobs`` row: ``processing`` while
    running, then ``completed`` with the chunk count or ``failed`` with the
    error message.

    Raises:
        IngestError: If the document is missing or has no content
        Exception: Any processing failure, after the job is marked failed
    """
    settings = get_settings()
    document = documents_db.get_document(document_id)
    if not document:
        raise IngestError("Document not found")
    if not document.get("content"):
        raise IngestError("Document has no content to process")

    job = documents_db.create_ingest_job(document_id, triggered_by=user_id)
    title = document.get("title") or "Untitled"
    author = document.get("author")

    try:
        chunks = chunk_text(document["content"], settings.CHUNK_SIZE, settings.CHUNK_OVERLAP)
        if not chunks:
            raise IngestError("No chunks created from document content")
        log_with_context(logger, logging.INFO, f"Chunked {title}", document_id=document_id, chunks=len(chunks))

        contents = [c["content"] for c in chunks]
        embeddings: list[list[float]] = []
        for start in range(0, len(contents), EMBED_BATCH_SIZE):
            embeddings.extend(embed_texts(contents[start : start + EMBED_BATCH_SIZE]))

        processed_at = datetime.now(UTC).isoformat()
        rows = documents_db.insert_chunks(
            [
                {
                    "document_id": document_id,
                    "content": chunk["content"],
                    "chunk_index": chunk["chunk_index"],
                    "token_count": chunk["token_count"],
                    "metadata": {
                        "documentTitle": title,
                        "documentAuthor": author,
                        "processingDate": processed_at,
                    },
                }
                for chunk in chunks
            ]
        )

        store_chunks(
            [
                ChunkVector(
                    id=str(row["id"]),
                    values=embedding,
                    document_id=document_id,
                    document_title=title,
                    document_author=author,
                    chunk_index=row["chunk_index"],
                    token_count=row["token_count"],
                    content=row["content"],
                )
                for row, embedding in zip(rows, embeddings)
            ]
        )

        documents_db.complete_ingest_job(job["id"], len(chunks))
        documents_db.mark_processed(document_id)
        cache.clear_namespace(CacheNamespace.SEARCH_RESULTS)
        log_with_context(
            logger, logging.INFO, f"Ingested {title}", document_id=document_id, user_id=user_id, chunks=len(chunks)
        )

        return IngestResult(document_id=document_id, document_title=title, chunks_created=len(chunks))

    except Exception as e:
        logger.error(f"Ingestion failed for {title}: {e}", extra={"document_id": document_id})
        documents_db.fail_ingest_job(job["id"], str(e) or e.__class__.__name__)
        raise


async def ingest_upload(
    file_bytes: bytes,
    filename: str,
    mime_type: str | None,
    uploaded_by: str,
    title: str | None = None,
    author: str | None = None,
) -> tuple[dict[str, Any], IngestResult | None]:
    """
    Full upload pipeline: checks, extraction, storage, document row, vectors.

    A failure after the document row exists leaves the document in place
    with a failed ingest job so it can be re-ingested.

    Returns:
        (document row, ingest result or None if vector processing failed)

    Raises:
        FileSecurityError: If the file fails a security check
        ExtractionError: If the type is unsupported or no text is found
        DuplicateDocumentError: If identical bytes were uploaded before
        StorageError: If the storage upload fails
    """
    settings = get_settings()
    mime_type = resolve_mime_type(mime_type, filename)

    valid, error, _ = validate_file(file_bytes, mime_type, filename)
    if not valid:
        raise ExtractionError(error)

    check_upload(file_bytes, mime_type, max_size=settings.MAX_UPLOAD_BYTES)

    checksum = documents_db.compute_checksum(file_bytes)
    existing = await asyncio.to_thread(documents_db.find_by_checksum, checksum)
    if existing:
        raise DuplicateDocumentError(existing)

    extraction = await extract_text(file_bytes, mime_type, filename)
    if not extraction.raw_text.strip():
        raise ExtractionError("No text could be extracted from the file")
    for warning in extraction.warnings:
        log_with_context(logger, logging.WARNING, warning, filename=filename, method=extraction.extraction_method)

    storage_path = build_storage_path(filename)
    await asyncio.to_thread(upload_file, storage_path, file_bytes, mime_type)

    try:
        document = await asyncio.to_thread(
            documents_db.create_document,
            title=sanitize_input(title) or filename,
            author=sanitize_input(author) or None,
            storage_path=storage_path,
            mime_type=mime_type,
            file_size=len(file_bytes),
            content=extraction.raw_text,
            word_count=extraction.word_count,
            page_count=extraction.page_count or None,
            uploaded_by=uploaded_by,
            checksum=checksum,
        )
    except Exception:
        await asyncio.to_thread(remove_file, storage_path)
        raise

    cache.clear_namespace(CacheNamespace.DOCUMENTS)

    try:
        result = await asyncio.to_thread(process_document_vectors, str(document["id"]), uploaded_by)
    except Exception as e:
        logger.error(f"Vector processing failed after upload: {e}", extra={"document_id": document["id"]})
        return document, None

    return document, result


def clear_document_vectors(document_id: str) -> None:
    """Remove a document's vectors and chunk rows, keeping the document itself."""
    delete_document_chunks(document_id)
    documents_db.delete_chunks(document_id)
    cache.clear_namespace(CacheNamespace.SEARCH_RESULTS)


def delete_document_everywhere(document: dict[str, Any]) -> None:
    """Remove a document's vectors, chunks, stored file and row."""
    document_id = str(document["id"])
    clear_document_vectors(document_id)
    if document.get("storage_path"):
        remove_file(document["storage_path"])
    documents_db.delete_document(document_id)
    cache.clear_namespace(CacheNamespace.DOCUMENTS)
    cache.clear_namespace(CacheNamespace.SEARCH_RESULTS)
    logger.info("Deleted document", extra={"document_id": document_id})
