"""Database operations for chat sessions and conversations."""

from collections import Counter
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _now() -> str:
    return datetime.now(UTC).isoformat()


# =============================================================================
# Sessions
# =============================================================================


def list_sessions(user_id: UUID | str) -> list[dict[str, Any]]:
    """Active sessions for a user, most recently used first, with message counts."""
    supabase = get_supabase()
    response = (
        supabase.table("chat_sessions")
        .select("id, title, created_at, updated_at")
        .eq("user_id", str(user_id))
        .is_("deleted_at", "null")
        .order("updated_at", desc=True)
        .execute()
    )
    sessions = response.data or []
    if not sessions:
        return []

    counts = count_messages([s["id"] for s in sessions])
    for session in sessions:
        session["message_count"] = counts.get(session["id"], 0)
    return sessions


def count_messages(session_ids: list[str]) -> dict[str, int]:
    supabase = get_supabase()
    response = (
        supabase.table("conversations")
        .select("session_id")
        .in_("session_id", session_ids)
        .execute()
    )
    return dict(Counter(row["session_id"] for row in response.data or []))


def create_session(user_id: UUID | str, title: str) -> dict[str, Any]:
    supabase = get_supabase()
    response = (
        supabase.table("chat_sessions")
        .insert({"user_id": str(user_id), "title": title})
        .execute()
    )
    if not response.data:
        raise ValueError("Failed to create chat session")
    return response.data[0]


def get_session(session_id: str, user_id: UUID | str) -> dict[str, Any] | None:
    """A session owned by ``user_id`` that has not been deleted."""
    supabase = get_supabase()
    response = (
        supabase.table("chat_sessions")
        .select("id, title, created_at, updated_at")
        .eq("id", session_id)
        .eq("user_id", str(user_id))
        .is_("deleted_at", "null")
        .execute()
    )
    return response.data[0] if response.data else None


def touch_session(session_id: str) -> None:
    supabase = get_supabase()
    supabase.table("chat_sessions").update({"updated_at": _now()}).eq("id", session_id).execute()


def rename_session(session_id: str, user_id: UUID | str, title: str) -> dict[str, Any] | None:
    supabase = get_supabase()
    response = (
        supabase.table("chat_sessions")
        .update({"title": title, "updated_at": _now()})
        .eq("id", session_id)
        .eq("user_id", str(user_id))
        .is_("deleted_at", "null")
        .execute()
    )
    return response.data[0] if response.data else None


def soft_delete_session(session_id: str, user_id: UUID | str) -> bool:
    supabase = get_supabase()
    response = (
        supabase.table("chat_sessions")
        .update({"deleted_at": _now()})
        .eq("id", session_id)
        .eq("user_id", str(user_id))
        .is_("deleted_at", "null")
        .execute()
    )
    return bool(response.data)


def list_user_sessions(user_id: UUID | str) -> list[dict[str, Any]]:
    """Every session a user owns, deleted ones included."""
    supabase = get_supabase()
    response = supabase.table("chat_sessions").select("*").eq("user_id", str(user_id)).execute()
    return response.data or []


def delete_user_sessions(user_id: UUID | str) -> None:
    supabase = get_supabase()
    supabase.table("chat_sessions").delete().eq("user_id", str(user_id)).execute()


# =============================================================================
# Conversations
# =============================================================================


def create_conversation(
    user_id: UUID | str,
    session_id: str,
    question: str,
    answer: str,
    sources: list[dict[str, Any]],
) -> dict[str, Any]:
    supabase = get_supabase()
    response = (
        supabase.table("conversations")
        .insert(
            {
                "user_id": str(user_id),
                "session_id": session_id,
                "question": question,
                "answer": answer,
                "sources": sources,
            }
        )
        .execute()
    )
    if not response.data:
        raise ValueError("Failed to save conversation")
    return response.data[0]


def list_conversations(session_id: str) -> list[dict[str, Any]]:
    supabase = get_supabase()
    response = (
        supabase.table("conversations")
        .select("id, question, answer, sources, created_at")
        .eq("session_id", session_id)
        .order("created_at")
        .execute()
    )
    return response.data or []


def list_user_conversations(user_id: UUID | str) -> list[dict[str, Any]]:
    supabase = get_supabase()
    response = (
        supabase.table("conversations")
        .select("id, session_id, question, answer, sources, created_at")
        .eq("user_id", str(user_id))
        .order("created_at")
        .execute()
    )
    return response.data or []


def delete_user_conversations(user_id: UUID | str) -> None:
    supabase = get_supabase()
    supabase.table("conversations").delete().eq("user_id", str(user_id)).execute()


def count_user_conversations(user_id: UUID | str) -> int:
    supabase = get_supabase()
    response = (
        supabase.table("conversations")
        .select("id", count="exact")
        .eq("user_id", str(user_id))
        .limit(1)
        .execute()
    )
    return response.count or 0


def count_user_sessions(user_id: UUID | str) -> int:
    supabase = get_supabase()
    response = (
        supabase.table("chat_sessions")
        .select("id", count="exact")
        .eq("user_id", str(user_id))
        .is_("deleted_at", "null")
        .limit(1)
        .execute()
    )
    return response.count or 0
