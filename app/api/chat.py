"""Chat API: answers questions over the document knowledge base as an SSE stream."""

import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from app.api.chat_sessions import invalidate_session_list
from app.core.auth_middleware import AuthContext, optional_auth
from app.core.cache import get_cached_response, set_cached_response
from app.core.embeddings import embed_text_async
from app.core.hybrid_search import HybridSearchOptions, SearchResult, intelligent_search
from app.core.input_sanitizer import sanitize_input
from app.core.llm import ContextChunk, stream_chat_response
from app.core.logging import get_logger
from app.core.rate_limiter import chat_rate_limiter, get_identifier
from app.core.schemas_chat import ChatRequest
from app.db import chat as chat_db

logger = get_logger(__name__)

router = APIRouter()

NO_RESULTS_ANSWER = (
    "I couldn't find any relevant information in the uploaded documents to answer your question. "
    "You might want to try rephrasing your question or check if relevant documents have been uploaded."
)
SEARCH_MAX_RESULTS = 20
SEARCH_MIN_SEMANTIC_SCORE = 0.3
MAX_CHUNKS_PER_DOCUMENT = 4
MAX_CONTEXT_CHUNKS = 16
MAX_SOURCES = 8


def _sse_event(data: dict) -> str:
    """Format a dict as an SSE data line."""
    return f"data: {json.dumps(data)}\n\n"


def select_context(results: list[SearchResult]) -> list[SearchResult]:
    """
    Pick the chunks sent to the model.

    At most MAX_CHUNKS_PER_DOCUMENT per document so one document cannot crowd
    out the rest; documents ordered by their best chunk; MAX_CONTEXT_CHUNKS total.
    """
    by_document: dict[str, list[SearchResult]] = {}
    for result in sorted(results, key=lambda r: r.score, reverse=True):
        by_document.setdefault(result.document_title, []).append(result)

    groups = [chunks[:MAX_CHUNKS_PER_DOCUMENT] for chunks in by_document.values()]
    groups.sort(key=lambda chunks: chunks[0].score, reverse=True)
    return [chunk for group in groups for chunk in group][:MAX_CONTEXT_CHUNKS]


def build_sources(results: list[SearchResult]) -> list[dict[str, Any]]:
    """One source per document title, in result order, capped at MAX_SOURCES."""
    sources: list[dict[str, Any]] = []
    seen: set[str] = set()
    for result in results:
        if result.document_title in seen:
            continue
        seen.add(result.document_title)
        sources.append(
            {
                "title": result.document_title,
                "author": result.document_author or None,
                "chunk_id": result.id,
            }
        )
    return sources[:MAX_SOURCES]


async def _persist(
    user_id: str,
    session_id: str,
    question: str,
    answer: str,
    sources: list[dict[str, Any]],
) -> None:
    await asyncio.to_thread(chat_db.create_conversation, user_id, session_id, question, answer, sources)
    await asyncio.to_thread(chat_db.touch_session, session_id)
    invalidate_session_list(user_id)


async def generate_chat_stream(
    user_id: str,
    session_id: str,
    question: str,
) -> AsyncGenerator[str, None]:
    """Yield SSE events: session_id, sources, text deltas, then done or error."""
    try:
        yield _sse_event({"type": "session_id", "session_id": session_id})

        cached = get_cached_response(question)
        if cached is not None:
            yield _sse_event({"type": "sources", "sources": cached.sources, "cached": True})
            yield _sse_event({"type": "text", "content": cached.answer})
            await _persist(user_id, session_id, question, cached.answer, cached.sources)
            yield _sse_event({"type": "done", "cached": True})
            return

        embedding = await embed_text_async(question)
        search = await intelligent_search(
            question,
            embedding,
            HybridSearchOptions(
                max_results=SEARCH_MAX_RESULTS,
                min_semantic_score=SEARCH_MIN_SEMANTIC_SCORE,
                user_id=user_id,
            ),
        )
        results = search.results
        logger.info(
            f"Found {len(results)} chunks via {search.search_strategy}",
            extra={"user_id": user_id, "session_id": session_id},
        )

        if not results:
            yield _sse_event({"type": "sources", "sources": []})
            yield _sse_event({"type": "text", "content": NO_RESULTS_ANSWER})
            await _persist(user_id, session_id, question, NO_RESULTS_ANSWER, [])
            yield _sse_event(
                {
                    "type": "done",
                    "search_strategy": search.search_strategy,
                    "confidence": search.confidence,
                    "chunks_found": 0,
                    "documents_used": 0,
                    "suggestions": search.suggestions,
                }
            )
            return

        context = select_context(results)
        sources = build_sources(results)
        documents_used = len({chunk.document_title for chunk in context})
        yield _sse_event({"type": "sources", "sources": sources})

        answer = ""
        async for delta in stream_chat_response(
            question,
            [
                ContextChunk(content=c.content, title=c.document_title, author=c.document_author or None)
                for c in context
            ],
        ):
            answer += delta
            yield _sse_event({"type": "text", "content": delta})

        await _persist(user_id, session_id, question, answer, sources)
        set_cached_response(question, answer, sources)

        yield _sse_event(
            {
                "type": "done",
                "search_strategy": search.search_strategy,
                "confidence": search.confidence,
                "chunks_found": len(results),
                "documents_used": documents_used,
                "suggestions": search.suggestions,
            }
        )

    except Exception as e:
        logger.exception(f"Chat stream failed: {e}", extra={"user_id": user_id, "session_id": session_id})
        yield _sse_event({"type": "error", "message": str(e)})


@router.post("/chat")
async def chat(
    body: ChatRequest,
    request: Request,
    auth: Optional[AuthContext] = Depends(optional_auth),
) -> StreamingResponse:
    """
    Answer a question from the knowledge base.

    Checks run in order: rate limit, authentication, question, session
    ownership. The answer then streams as Server-Sent Events.
    """
    user_id = str(auth.user_id) if auth else None
    await asyncio.to_thread(
        chat_rate_limiter.enforce,
        get_identifier(request, user_id),
        auth.role.value if auth else None,
    )

    if not auth:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    question = sanitize_input(body.question)
    if not question:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Question is required")
    if not body.session_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Session ID is required")

    try:
        session_id = str(UUID(body.session_id))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid session")

    session = await asyncio.to_thread(chat_db.get_session, session_id, user_id)
    if not session:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid session")

    return StreamingResponse(
        generate_chat_stream(user_id, session_id, question),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
