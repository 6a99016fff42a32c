"""Database operations for users."""

from typing import Any, Optional
from uuid import UUID

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase as get_client

logger = get_logger(__name__)


def get_user_by_id(user_id: UUID | str) -> Optional[dict[str, Any]]:
    """Get a user by ID."""
    client = get_client()
    result = client.table("users").select("*").eq("id", str(user_id)).execute()
    return result.data[0] if result.data else None


def get_user_by_auth_id(auth_user_id: str) -> Optional[dict[str, Any]]:
    """Get a user by their Supabase Auth user id."""
    client = get_client()
    result = client.table("users").select("*").eq("auth_user_id", auth_user_id).execute()
    return result.data[0] if result.data else None


def get_user_by_email(email: str) -> Optional[dict[str, Any]]:
    """Get a user by email (case-insensitive)."""
    client = get_client()
    result = client.table("users").select("*").eq("email", email.strip().lower()).execute()
    return result.data[0] if result.data else None


def create_user(data: dict[str, Any]) -> dict[str, Any]:
    """Insert a users row.

    Raises:
        ValueError: If the insert returns no row
    """
    client = get_client()
    payload = {**data, "email": data["email"].strip().lower()}
    result = client.table("users").insert(payload).execute()
    if not result.data:
        raise ValueError("Failed to create user")
    logger.info("Created user", extra={"user_id": result.data[0]["id"]})
    return result.data[0]


def update_user(user_id: UUID | str, data: dict[str, Any]) -> Optional[dict[str, Any]]:
    client = get_client()
    result = client.table("users").update(data).eq("id", str(user_id)).execute()
    return result.data[0] if result.data else None


def delete_user(user_id: UUID | str) -> bool:
    client = get_client()
    result = client.table("users").delete().eq("id", str(user_id)).execute()
    return bool(result.data)


def list_users(
    role: Optional[str] = None,
    include_deleted: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """List users, newest first."""
    client = get_client()
    query = client.table("users").select("id, email, name, role, created_at, deleted_at, auth_user_id")

    if role:
        query = query.eq("role", role)
    if not include_deleted:
        query = query.is_("deleted_at", "null")

    result = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
    return result.data or []


def get_user_by_deletion_token(token: str) -> Optional[dict[str, Any]]:
    client = get_client()
    result = (
        client.table("users")
        .select("id, email, name, deleted_at, deletion_token, deletion_token_expires_at")
        .eq("deletion_token", token)
        .execute()
    )
    return result.data[0] if result.data else None


def list_users_due_for_deletion(now_iso: str) -> list[dict[str, Any]]:
    """Users whose scheduled deletion date has passed."""
    client = get_client()
    result = (
        client.table("users")
        .select("id, email, auth_user_id, deleted_at")
        .not_.is_("deleted_at", "null")
        .lte("deleted_at", now_iso)
        .execute()
    )
    return result.data or []


def list_users_pending_deletion() -> list[dict[str, Any]]:
    client = get_client()
    result = (
        client.table("users")
        .select("id, email, deleted_at")
        .not_.is_("deleted_at", "null")
        .order("deleted_at")
        .execute()
    )
    return result.data or []
