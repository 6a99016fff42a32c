"""Pinecone vector store for document chunks."""

import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, TypeVar

from pinecone import Pinecone

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

UPSERT_BATCH_SIZE = 100
DELETE_BATCH_SIZE = 1000
MAX_QUERY_TOP_K = 10000
MAX_ATTEMPTS = 3


class VectorStoreError(Exception):
    """Raised when the vector index cannot be reached or rejects a request."""


@dataclass
class ChunkVector:
    """A chunk ready to be written to the index."""

    id: str
    values: list[float]
    document_id: str
    document_title: str
    document_author: str | None
    chunk_index: int
    token_count: int
    content: str

    def to_pinecone(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "values": self.values,
            "metadata": {
                "documentId": self.document_id,
                "documentTitle": self.document_title,
                "documentAuthor": self.document_author or "",
                "chunkIndex": self.chunk_index,
                "tokenCount": self.token_count,
                "content": self.content,
            },
        }


@dataclass
class VectorMatch:
    id: str
    score: float
    document_id: str
    document_title: str
    document_author: str
    chunk_index: int
    token_count: int
    content: str


@lru_cache(maxsize=1)
def get_index():
    """Get the Pinecone index handle (cached singleton)."""
    settings = get_settings()
    if not settings.PINECONE_API_KEY:
        raise VectorStoreError("PINECONE_API_KEY is not configured")
    pc = Pinecone(api_key=settings.PINECONE_API_KEY)
    return pc.Index(settings.PINECONE_INDEX)


def _namespace() -> str:
    return get_settings().PINECONE_NAMESPACE


def _with_retry(operation: str, fn: Callable[[], T], sleep: Callable[[float], None] | None = None) -> T:
    """Run ``fn`` with exponential backoff (1s, 2s) before giving up."""
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            return fn()
        except Exception as e:
            if attempt == MAX_ATTEMPTS:
                logger.error(f"Pinecone {operation} failed after {attempt} attempts: {e}")
                raise VectorStoreError(f"Pinecone {operation} failed: {e}") from e
            wait = 2 ** (attempt - 1)
            logger.warning(f"Pinecone {operation} attempt {attempt} failed, retrying in {wait}s: {e}")
            (sleep or time.sleep)(wait)
    raise AssertionError("unreachable")


def store_chunks(chunks: list[ChunkVector], sleep: Callable[[float], None] | None = None) -> int:
    """
    Upsert chunk vectors in batches of 100.

    Returns:
        Number of vectors written
    """
    if not chunks:
        return 0

    index = get_index()
    namespace = _namespace()
    written = 0

    for start in range(0, len(chunks), UPSERT_BATCH_SIZE):
        batch = [c.to_pinecone() for c in chunks[start : start + UPSERT_BATCH_SIZE]]
        _with_retry("upsert", lambda: index.upsert(vectors=batch, namespace=namespace), sleep)
        written += len(batch)

    logger.info(f"Stored {written} vectors in Pinecone", extra={"extra_data": {"namespace": namespace}})
    return written


def _to_match(match: Any) -> VectorMatch:
    metadata = match.metadata or {}
    return VectorMatch(
        id=match.id,
        score=float(match.score),
        document_id=str(metadata.get("documentId", "")),
        document_title=str(metadata.get("documentTitle", "")),
        document_author=str(metadata.get("documentAuthor", "")),
        chunk_index=int(metadata.get("chunkIndex", 0)),
        token_count=int(metadata.get("tokenCount", 0)),
        content=str(metadata.get("content", "")),
    )


def search_chunks(
    query_embedding: list[float],
    top_k: int = 10,
    min_score: float = 0.5,
    document_ids: list[str] | None = None,
) -> list[VectorMatch]:
    """Query the index and return matches scoring at least ``min_score``."""
    index = get_index()
    query: dict[str, Any] = {
        "vector": query_embedding,
        "top_k": top_k,
        "include_metadata": True,
        "namespace": _namespace(),
    }
    if document_ids:
        query["filter"] = {"documentId": {"$in": document_ids}}

    response = _with_retry("query", lambda: index.query(**query))
    matches = [_to_match(m) for m in response.matches or []]
    return [m for m in matches if m.score >= min_score]


def delete_document_chunks(document_id: str) -> int:
    """
    Delete every vector belonging to a document.

    Serverless indexes do not support delete-by-filter, so matching ids are
    found with a zero-vector query filtered on ``documentId`` first.
    """
    settings = get_settings()
    index = get_index()
    namespace = _namespace()

    response = _with_retry(
        "query",
        lambda: index.query(
            vector=[0.0] * settings.EMBEDDING_DIM,
            top_k=MAX_QUERY_TOP_K,
            include_metadata=False,
            filter={"documentId": {"$eq": document_id}},
            namespace=namespace,
        ),
    )
    ids = [m.id for m in response.matches or []]

    for start in range(0, len(ids), DELETE_BATCH_SIZE):
        batch = ids[start : start + DELETE_BATCH_SIZE]
        _with_retry("delete", lambda: index.delete(ids=batch, namespace=namespace))

    logger.info(
        f"Deleted {len(ids)} vectors for document",
        extra={"document_id": document_id},
    )
    return len(ids)


def get_index_stats() -> dict[str, Any]:
    stats = get_index().describe_index_stats()
    namespaces = getattr(stats, "namespaces", None) or {}
    return {
        "total_vector_count": getattr(stats, "total_vector_count", 0),
        "dimension": getattr(stats, "dimension", None),
        "namespaces": {
            name: getattr(ns, "vector_count", 0) for name, ns in dict(namespaces).items()
        },
    }


def check_connection() -> bool:
    """True when the index answers a stats request."""
    try:
        get_index().describe_index_stats()
        return True
    except Exception as e:
        logger.warning(f"Pinecone connection test failed: {e}")
        return False
