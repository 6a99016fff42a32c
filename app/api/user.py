"""Signed-in user's profile, usage and email preferences."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.auth_middleware import AuthContext, require_auth
from app.core.input_sanitizer import sanitize_input
from app.core.logging import get_logger
from app.core.schemas_auth import EmailPreferences, UserUpdate
from app.db import chat as chat_db
from app.db import documents as documents_db
from app.db import users as users_db
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

router = APIRouter(prefix="/user", tags=["user"])

PROFILE_FIELDS = ("id", "email", "name", "role", "created_at", "deleted_at")


def get_usage_stats(user_id: str) -> dict[str, int]:
    return {
        "sessions": chat_db.count_user_sessions(user_id),
        "conversations": chat_db.count_user_conversations(user_id),
        "documents": documents_db.count_documents(uploaded_by=user_id),
    }


def _profile(row: dict[str, Any]) -> dict[str, Any]:
    return {field: row.get(field) for field in PROFILE_FIELDS}


@router.get("/profile")
def get_profile(auth: AuthContext = Depends(require_auth)) -> dict:
    row = users_db.get_user_by_id(auth.user_id)
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return {"profile": _profile(row)}


@router.patch("/profile")
def update_profile(
    data: UserUpdate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    name = sanitize_input(data.name or "")
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")

    row = users_db.update_user(auth.user_id, {"name": name})
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    logger.info("Profile updated", extra={"user_id": str(auth.user_id)})
    return {"profile": _profile(row)}


@router.get("/stats")
def get_stats(auth: AuthContext = Depends(require_auth)) -> dict:
    return get_usage_stats(str(auth.user_id))


@router.get("/email-preferences", response_model=EmailPreferences)
def get_email_preferences(auth: AuthContext = Depends(require_auth)) -> EmailPreferences:
    result = (
        get_supabase()
        .table("user_preferences")
        .select("email_preferences")
        .eq("user_id", str(auth.user_id))
        .execute()
    )
    stored = result.data[0].get("email_preferences") if result.data else None
    return EmailPreferences(**(stored or {}))


@router.put("/email-preferences", response_model=EmailPreferences)
def update_email_preferences(
    data: EmailPreferences,
    auth: AuthContext = Depends(require_auth),
) -> EmailPreferences:
    get_supabase().table("user_preferences").upsert(
        {"user_id": str(auth.user_id), "email_preferences": data.model_dump()},
        on_conflict="user_id",
    ).execute()
    return data
