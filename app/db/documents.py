"""Database operations for documents and their ingest jobs."""

import hashlib
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

_LIST_COLUMNS = (
    "id, title, author, mime_type, file_size, word_count, page_count, storage_path, "
    "uploaded_by, created_at, processed_at, "
    "ingest_jobs(id, status, chunks_created, error_message, created_at)"
)


def compute_checksum(file_bytes: bytes) -> str:
    """SHA256 checksum used to detect duplicate uploads."""
    return hashlib.sha256(file_bytes).hexdigest()


def find_by_checksum(checksum: str) -> dict[str, Any] | None:
    supabase = get_supabase()
    response = (
        supabase.table("documents")
        .select("id, title, created_at")
        .eq("checksum", checksum)
        .limit(1)
        .execute()
    )
    if response.data:
        logger.info(f"Found duplicate document with checksum {checksum[:16]}...")
        return response.data[0]
    return None


def create_document(
    title: str,
    author: str | None,
    storage_path: str,
    mime_type: str,
    file_size: int,
    content: str,
    word_count: int,
    page_count: int | None,
    uploaded_by: UUID | str,
    checksum: str,
) -> dict[str, Any]:
    """Create a document record.

    Raises:
        ValueError: If the insert returns no row
    """
    supabase = get_supabase()
    data = {
        "title": title,
        "author": author,
        "storage_path": storage_path,
        "mime_type": mime_type,
        "file_size": file_size,
        "content": content,
        "word_count": word_count,
        "page_count": page_count,
        "uploaded_by": str(uploaded_by),
        "checksum": checksum,
    }
    response = supabase.table("documents").insert(data).execute()
    if not response.data:
        raise ValueError("Failed to create document record")

    document = response.data[0]
    logger.info(f"Created document {title}", extra={"document_id": document["id"]})
    return document


def get_document(document_id: UUID | str) -> dict[str, Any] | None:
    supabase = get_supabase()
    response = supabase.table("documents").select("*").eq("id", str(document_id)).execute()
    return response.data[0] if response.data else None


def _latest_job(document: dict[str, Any]) -> dict[str, Any]:
    jobs = document.pop("ingest_jobs", None) or []
    latest = max(jobs, key=lambda j: j.get("created_at") or "", default=None)
    document["ingest_status"] = latest["status"] if latest else "pending"
    document["chunks_created"] = latest.get("chunks_created") if latest else None
    document["ingest_error"] = latest.get("error_message") if latest else None
    return document


def list_documents(uploaded_by: UUID | str | None = None) -> list[dict[str, Any]]:
    """List documents, newest first, each annotated with its latest ingest job status."""
    supabase = get_supabase()
    query = supabase.table("documents").select(_LIST_COLUMNS)
    if uploaded_by:
        query = query.eq("uploaded_by", str(uploaded_by))
    response = query.order("created_at", desc=True).execute()
    return [_latest_job(row) for row in response.data or []]


def update_document(document_id: UUID | str, data: dict[str, Any]) -> dict[str, Any] | None:
    supabase = get_supabase()
    response = supabase.table("documents").update(data).eq("id", str(document_id)).execute()
    return response.data[0] if response.data else None


def mark_processed(document_id: UUID | str) -> None:
    update_document(document_id, {"processed_at": datetime.now(UTC).isoformat()})


def delete_document(document_id: UUID | str) -> bool:
    supabase = get_supabase()
    response = supabase.table("documents").delete().eq("id", str(document_id)).execute()
    return bool(response.data)


def count_documents(uploaded_by: UUID | str | None = None) -> int:
    supabase = get_supabase()
    query = supabase.table("documents").select("id", count="exact")
    if uploaded_by:
        query = query.eq("uploaded_by", str(uploaded_by))
    response = query.limit(1).execute()
    return response.count or 0


# =============================================================================
# Chunks
# =============================================================================


def insert_chunks(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Insert chunk rows. Returns the inserted rows with their ids."""
    if not rows:
        return []
    supabase = get_supabase()
    response = supabase.table("chunks").insert(rows).execute()
    if not response.data or len(response.data) != len(rows):
        raise ValueError(f"Inserted {len(response.data or [])} of {len(rows)} chunks")
    return response.data


def delete_chunks(document_id: UUID | str) -> None:
    supabase = get_supabase()
    supabase.table("chunks").delete().eq("document_id", str(document_id)).execute()


def count_chunks() -> int:
    supabase = get_supabase()
    response = supabase.table("chunks").select("id", count="exact").limit(1).execute()
    return response.count or 0


# =============================================================================
# Ingest jobs
# =============================================================================


def create_ingest_job(document_id: UUID | str, triggered_by: UUID | str | None = None) -> dict[str, Any]:
    supabase = get_supabase()
    data = {
        "document_id": str(document_id),
        "triggered_by": str(triggered_by) if triggered_by else None,
        "status": "processing",
        "started_at": datetime.now(UTC).isoformat(),
    }
    response = supabase.table("ingest_jobs").insert(data).execute()
    if not response.data:
        raise ValueError("Failed to create ingest job")
    return response.data[0]


def complete_ingest_job(job_id: UUID | str, chunks_created: int) -> None:
    supabase = get_supabase()
    supabase.table("ingest_jobs").update(
        {
            "status": "completed",
            "chunks_created": chunks_created,
            "completed_at": datetime.now(UTC).isoformat(),
        }
    ).eq("id", str(job_id)).execute()


def fail_ingest_job(job_id: UUID | str, error_message: str) -> None:
    supabase = get_supabase()
    supabase.table("ingest_jobs").update(
        {
            "status": "failed",
            "error_message": error_message[:1000],
            "completed_at": datetime.now(UTC).isoformat(),
        }
    ).eq("id", str(job_id)).execute()
