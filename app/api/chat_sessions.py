"""Chat session API endpoints."""

import asyncio
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.auth_middleware import AuthContext, require_auth
from app.core.cache import CacheNamespace, CacheTTL, cache
from app.core.input_sanitizer import sanitize_input
from app.core.logging import get_logger
from app.core.schemas_chat import DEFAULT_SESSION_TITLE, SessionCreate, SessionUpdate
from app.db import chat as chat_db

logger = get_logger(__name__)

router = APIRouter(prefix="/chat/sessions", tags=["chat"])


def invalidate_session_list(user_id: str) -> None:
    cache.delete(CacheNamespace.USER_SESSIONS, str(user_id))


@router.get("")
async def list_sessions(auth: AuthContext = Depends(require_auth)) -> dict:
    """The user's active sessions with message counts, cached for 5 minutes."""
    user_id = str(auth.user_id)
    sessions = cache.get(CacheNamespace.USER_SESSIONS, user_id)
    if sessions is None:
        sessions = await asyncio.to_thread(chat_db.list_sessions, user_id)
        cache.set(CacheNamespace.USER_SESSIONS, user_id, sessions, ttl=CacheTTL.SHORT)
    return {"sessions": sessions}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(
    data: SessionCreate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    title = sanitize_input(data.title or "") or DEFAULT_SESSION_TITLE
    session = await asyncio.to_thread(chat_db.create_session, auth.user_id, title)
    invalidate_session_list(str(auth.user_id))
    logger.info("Created chat session", extra={"user_id": str(auth.user_id), "session_id": session["id"]})
    return {"session": session}


@router.get("/{session_id}")
async def get_session(
    session_id: UUID,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """A session and its conversation history, oldest first."""
    session = await asyncio.to_thread(chat_db.get_session, str(session_id), auth.user_id)
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    conversations = await asyncio.to_thread(chat_db.list_conversations, str(session_id))
    return {"session": session, "conversations": conversations}


@router.patch("/{session_id}")
async def rename_session(
    session_id: UUID,
    data: SessionUpdate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    title = sanitize_input(data.title)
    if not title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")

    session = await asyncio.to_thread(chat_db.rename_session, str(session_id), auth.user_id, title)
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    invalidate_session_list(str(auth.user_id))
    return {"session": session}


@router.delete("/{session_id}")
async def delete_session(
    session_id: UUID,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Soft delete: the session and its history stay in the database."""
    if not await asyncio.to_thread(chat_db.soft_delete_session, str(session_id), auth.user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    invalidate_session_list(str(auth.user_id))
    return {"success": True}
