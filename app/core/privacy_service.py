"""GDPR tooling: data export, scheduled account deletion and purging.

Deletion is a soft delete: ``users.deleted_at`` holds the date the account
will be purged, ``DELETION_GRACE_DAYS`` from the request. Until then the
user can cancel, either signed in or with the emailed cancellation token.
"""

import asyncio
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

from app.core.config import get_settings
from app.core.email_service import send_deletion_scheduled_email
from app.core.ingest import delete_document_everywhere
from app.core.logging import get_logger
from app.core.schemas_auth import User
from app.db import chat as chat_db
from app.db import documents as documents_db
from app.db import users as users_db
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

EXPORT_INTERVAL = timedelta(hours=1)
EXPORT_FORMAT_VERSION = "1.0"
PRIVATE_PROFILE_FIELDS = ("auth_user_id", "invitation_token", "deletion_token")


class PrivacyError(Exception):
    """Raised when a privacy request is rejected."""


class ExportRateLimited(PrivacyError):
    def __init__(self, retry_after: int):
        super().__init__("Too many export requests. Please try again later.")
        self.retry_after = retry_after


class InvalidDeletionToken(PrivacyError):
    pass


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def log_privacy_action(
    user_id: str,
    action: str,
    details: dict[str, Any],
    auth_user_id: Optional[str] = None,
) -> None:
    """Write a privacy_audit_log row. Failures are logged, not raised."""
    try:
        get_supabase().table("privacy_audit_log").insert(
            {
                "user_id": str(user_id),
                "auth_user_id": auth_user_id,
                "action": action,
                "details": details,
            }
        ).execute()
    except Exception as e:
        logger.error(f"Failed to write privacy audit log {action}: {e}", extra={"user_id": str(user_id)})


# =============================================================================
# Export
# =============================================================================


def check_export_rate_limit(user_id: str, now: Optional[datetime] = None) -> None:
    """
    Allow one export per hour per user.

    Raises:
        ExportRateLimited: With the seconds until the next export is allowed
    """
    now = now or datetime.now(UTC)
    result = (
        get_supabase()
        .table("data_export_requests")
        .select("created_at")
        .eq("user_id", str(user_id))
        .gte("created_at", (now - EXPORT_INTERVAL).isoformat())
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )
    if not result.data:
        return

    last = _parse_ts(result.data[0]["created_at"])
    elapsed = now - last
    if elapsed < EXPORT_INTERVAL:
        raise ExportRateLimited(int((EXPORT_INTERVAL - elapsed).total_seconds()) + 1)


def _sanitize_profile(profile: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in profile.items() if k not in PRIVATE_PROFILE_FIELDS}


def gather_user_data(user_id: str, email: str, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or datetime.now(UTC)
    client = get_supabase()

    profile = users_db.get_user_by_id(user_id)
    conversations = chat_db.list_user_conversations(user_id)
    sessions = chat_db.list_user_sessions(user_id)
    documents = (
        client.table("documents")
        .select("id, title, author, mime_type, file_size, word_count, page_count, created_at")
        .eq("uploaded_by", str(user_id))
        .order("created_at", desc=True)
        .execute()
        .data
        or []
    )
    preferences = client.table("user_preferences").select("*").eq("user_id", str(user_id)).execute().data or []

    return {
        "export_metadata": {
            "user_id": str(user_id),
            "email": email,
            "exported_at": now.isoformat(),
            "format_version": EXPORT_FORMAT_VERSION,
            "export_type": "full_user_data",
        },
        "profile": _sanitize_profile(profile) if profile else None,
        "conversations": conversations,
        "documents": documents,
        "chat_sessions": sessions,
        "preferences": preferences,
        "statistics": {
            "total_conversations": len(conversations),
            "total_chat_sessions": len(sessions),
            "total_documents": len(documents),
            "total_document_size_bytes": sum(d.get("file_size") or 0 for d in documents),
            "account_created_at": profile.get("created_at") if profile else None,
        },
    }


def record_count(export: dict[str, Any]) -> int:
    return (
        (1 if export.get("profile") else 0)
        + len(export["conversations"])
        + len(export["documents"])
        + len(export["chat_sessions"])
        + len(export["preferences"])
    )


def export_user_data(user: User, now: Optional[datetime] = None) -> dict[str, Any]:
    """
    Create an export request and return every record held about the user.

    Raises:
        ExportRateLimited: If the user exported within the last hour
    """
    now = now or datetime.now(UTC)
    user_id = str(user.id)
    check_export_rate_limit(user_id, now)

    request = (
        get_supabase()
        .table("data_export_requests")
        .insert({"user_id": user_id, "status": "completed", "created_at": now.isoformat()})
        .execute()
    )
    export_request_id = request.data[0]["id"] if request.data else None

    data = gather_user_data(user_id, user.email, now)
    total = record_count(data)
    log_privacy_action(
        user_id,
        "DATA_EXPORT_REQUESTED",
        {"export_request_id": export_request_id, "record_count": total},
        user.auth_user_id,
    )
    logger.info(f"Exported {total} records", extra={"user_id": user_id})

    return {
        "export_request_id": export_request_id,
        "data": data,
        "metadata": {"total_records": total, "exported_at": now.isoformat()},
    }


# =============================================================================
# Deletion
# =============================================================================


def _mark_for_deletion(user: User, token: str, deletion_date: datetime, details: dict[str, Any]) -> None:
    updated = users_db.update_user(
        str(user.id),
        {
            "deleted_at": deletion_date.isoformat(),
            "deletion_token": token,
            "deletion_token_expires_at": deletion_date.isoformat(),
        },
    )
    if not updated:
        raise PrivacyError("Failed to schedule account deletion")

    log_privacy_action(str(user.id), "ACCOUNT_DELETION_SCHEDULED", details, user.auth_user_id)


async def schedule_deletion(
    user: User,
    confirmation: str,
    ip_address: str = "unknown",
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Soft delete the account with a grace period and email a cancellation link.

    Raises:
        ValueError: If the confirmation is not exactly ``DELETE``
    """
    if confirmation != "DELETE":
        raise ValueError("Invalid confirmation. Please type DELETE to confirm.")

    settings = get_settings()
    now = now or datetime.now(UTC)
    deletion_date = now + timedelta(days=settings.DELETION_GRACE_DAYS)
    token = str(uuid.uuid4())
    user_id = str(user.id)

    await asyncio.to_thread(
        _mark_for_deletion,
        user,
        token,
        deletion_date,
        {
            "deletion_date": deletion_date.isoformat(),
            "grace_period_days": settings.DELETION_GRACE_DAYS,
            "ip_address": ip_address,
            "reason": reason,
        },
    )

    cancel_url = f"{settings.APP_URL.rstrip('/')}/cancel-deletion/{token}"
    try:
        await send_deletion_scheduled_email(user.email, cancel_url, deletion_date.strftime("%B %d, %Y"))
    except Exception as e:
        logger.error(f"Failed to send deletion email: {e}", extra={"user_id": user_id})

    logger.info(f"Account deletion scheduled for {deletion_date.date()}", extra={"user_id": user_id})
    return {"deletion_date": deletion_date.isoformat()}


def validate_deletion_token(token: str, now: Optional[datetime] = None) -> dict[str, Any]:
    """``{"valid": bool, "email" | "error": str}`` for a cancellation token."""
    if not token:
        return {"valid": False, "error": "Token required"}

    user = users_db.get_user_by_deletion_token(token)
    if not user:
        return {"valid": False, "error": "Invalid token"}

    expires_at = _parse_ts(user.get("deletion_token_expires_at"))
    if expires_at and expires_at < (now or datetime.now(UTC)):
        return {"valid": False, "error": "Token has expired"}
    if not user.get("deleted_at"):
        return {"valid": False, "error": "Deletion has already been cancelled"}

    return {"valid": True, "email": user["email"]}


def cancel_deletion(
    token: Optional[str] = None,
    user: Optional[User] = None,
    ip_address: str = "unknown",
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Cancel a scheduled deletion, by cancellation token or for a signed-in user.

    Raises:
        InvalidDeletionToken: If the token is unknown or expired
        PrivacyError: If no deletion is scheduled
        ValueError: If neither a token nor a user is given
    """
    now = now or datetime.now(UTC)

    if token:
        row = users_db.get_user_by_deletion_token(token)
        if not row:
            raise InvalidDeletionToken("Invalid or expired token")
        expires_at = _parse_ts(row.get("deletion_token_expires_at"))
        if expires_at and expires_at < now:
            raise InvalidDeletionToken("Token has expired")
        if not row.get("deleted_at"):
            raise PrivacyError("Deletion has already been cancelled")
        user_id = str(row["id"])
        auth_user_id = row.get("auth_user_id")
        deletion_date = row["deleted_at"]
        via = "magic_link"
    elif user:
        row = users_db.get_user_by_id(user.id)
        if not row or not row.get("deleted_at"):
            raise PrivacyError("No scheduled deletion found")
        user_id = str(user.id)
        auth_user_id = user.auth_user_id
        deletion_date = row["deleted_at"]
        via = "authenticated_session"
    else:
        raise ValueError("token or authenticated user required")

    users_db.update_user(
        user_id,
        {"deleted_at": None, "deletion_token": None, "deletion_token_expires_at": None},
    )
    log_privacy_action(
        user_id,
        "ACCOUNT_DELETION_CANCELLED",
        {
            "original_deletion_date": deletion_date,
            "cancelled_at": now.isoformat(),
            "cancelled_via": via,
            "ip_address": ip_address,
        },
        auth_user_id,
    )
    logger.info("Account deletion cancelled", extra={"user_id": user_id})
    return {"success": True}


def purge_user(user: dict[str, Any]) -> None:
    """Hard delete one user and everything they own."""
    user_id = str(user["id"])
    for document in documents_db.list_documents(uploaded_by=user_id):
        delete_document_everywhere(document)
    chat_db.delete_user_conversations(user_id)
    chat_db.delete_user_sessions(user_id)

    client = get_supabase()
    client.table("user_preferences").delete().eq("user_id", user_id).execute()
    if user.get("auth_user_id"):
        client.auth.admin.delete_user(user["auth_user_id"])
    users_db.delete_user(user_id)


def purge_expired_accounts(now: Optional[datetime] = None) -> dict[str, Any]:
    """Purge every account whose grace period has ended. One failure does not stop the rest."""
    now = now or datetime.now(UTC)
    due = users_db.list_users_due_for_deletion(now.isoformat())

    purged, failed = [], []
    for user in due:
        try:
            purge_user(user)
        except Exception as e:
            logger.error(f"Failed to purge account: {e}", extra={"user_id": user["id"]})
            failed.append(str(user["id"]))
            continue
        log_privacy_action(
            user["id"],
            "ACCOUNT_PURGED",
            {"scheduled_for": user.get("deleted_at"), "purged_at": now.isoformat()},
        )
        purged.append(str(user["id"]))

    logger.info(f"Purged {len(purged)} expired accounts, {len(failed)} failed")
    return {"purged": purged, "failed": failed}


def get_deletion_stats(now: Optional[datetime] = None) -> dict[str, int]:
    """Scheduled deletions, and how many fall within the next 3 days."""
    now = now or datetime.now(UTC)
    soon = now + timedelta(days=3)
    pending = users_db.list_users_pending_deletion()
    dates = [_parse_ts(u.get("deleted_at")) for u in pending]
    upcoming = sum(1 for d in dates if d and d <= soon)
    return {"scheduled_deletions": len(pending), "upcoming_deletions": upcoming}
