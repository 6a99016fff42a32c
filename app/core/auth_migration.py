"""Lazy migration of user accounts from Clerk to Supabase Auth.

Accounts are pre-created in Supabase Auth and mapped in ``user_migration``
(email, clerk_id, supabase_id, migrated). A user's first login after the
switch sets their password on the pre-created auth user and marks the
mapping migrated. Every failure path records a ``migration_alerts`` row.
"""

import re
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import httpx

from app.core.config import get_settings
from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

CLERK_API_URL = "https://api.clerk.com/v1"

PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "Password must contain an uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain a lowercase letter"),
    (re.compile(r"[0-9]"), "Password must contain a number"),
)


class MigrationError(Exception):
    """Raised when a migration cannot be completed."""


class MigrationRecordNotFound(MigrationError):
    pass


class AccountAlreadyMigrated(MigrationError):
    pass


class InvalidClerkCredentials(MigrationError):
    pass


class PasswordLoginUnavailable(MigrationError):
    pass


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_password(password: str) -> None:
    """Raises ValueError describing the first password rule that fails."""
    if len(password or "") < 8:
        raise ValueError("Password must be at least 8 characters")
    for pattern, message in PASSWORD_RULES:
        if not pattern.search(password):
            raise ValueError(message)


def get_clerk_user(clerk_user_id: str) -> dict[str, Any]:
    """Fetch a user from the Clerk Backend API."""
    settings = get_settings()
    if not settings.CLERK_SECRET_KEY:
        raise MigrationError("CLERK_SECRET_KEY not configured")

    response = httpx.get(
        f"{CLERK_API_URL}/users/{clerk_user_id}",
        headers={"Authorization": f"Bearer {settings.CLERK_SECRET_KEY}"},
        timeout=10,
    )
    response.raise_for_status()
    return response.json()


def find_clerk_user_by_email(email: str) -> Optional[dict[str, Any]]:
    """First Clerk user with this email address, or None."""
    settings = get_settings()
    if not settings.CLERK_SECRET_KEY:
        raise MigrationError("CLERK_SECRET_KEY not configured")

    response = httpx.get(
        f"{CLERK_API_URL}/users",
        params={"email_address": _normalize_email(email)},
        headers={"Authorization": f"Bearer {settings.CLERK_SECRET_KEY}"},
        timeout=10,
    )
    response.raise_for_status()
    users = response.json()
    return users[0] if users else None


def verify_clerk_password(clerk_user_id: str, password: str) -> bool:
    """Check a password against Clerk. Clerk answers 422 for a wrong password."""
    settings = get_settings()
    response = httpx.post(
        f"{CLERK_API_URL}/users/{clerk_user_id}/verify_password",
        json={"password": password},
        headers={"Authorization": f"Bearer {settings.CLERK_SECRET_KEY}"},
        timeout=10,
    )
    if response.status_code in (400, 422):
        return False
    response.raise_for_status()
    return bool(response.json().get("verified"))


def record_alert(email: str, clerk_id: Optional[str], alert_type: str) -> None:
    """Insert a migration_alerts row. Failures are logged only."""
    try:
        get_supabase().table("migration_alerts").insert(
            {"email": email, "clerk_id": clerk_id, "alert_type": alert_type}
        ).execute()
    except Exception as e:
        logger.warning(f"Failed to record migration alert {alert_type}: {e}")


def _get_mapping(column: str, value: str) -> Optional[dict[str, Any]]:
    client = get_supabase()
    result = (
        client.table("user_migration")
        .select("email, clerk_id, supabase_id, migrated")
        .eq(column, value)
        .limit(1)
        .execute()
    )
    return result.data[0] if result.data else None


def _mark_migrated(column: str, value: str) -> None:
    get_supabase().table("user_migration").update(
        {"migrated": True, "migrated_at": datetime.now(UTC).isoformat()}
    ).eq(column, value).execute()


def _log_migration(email: str, clerk_user_id: Optional[str], supabase_user_id: str) -> None:
    try:
        get_supabase().table("migration_log").insert(
            {
                "email": email,
                "clerk_user_id": clerk_user_id,
                "supabase_user_id": supabase_user_id,
            }
        ).execute()
    except Exception as e:
        logger.warning(f"Failed to write migration log for {email}: {e}")


def migrate_user_to_supabase(email: str, password: str, clerk_user_id: str) -> Optional[dict[str, Any]]:
    """
    Migrate a user on their first login after the switch to Supabase Auth.

    Returns:
        ``{"id": supabase_user_id}`` on success, None on any failure
    """
    normalized = _normalize_email(email)
    logger.info(f"Starting migration for {normalized}")

    try:
        clerk_user = get_clerk_user(clerk_user_id)

        mapping = _get_mapping("email", normalized)
        if not mapping or not mapping.get("supabase_id"):
            logger.error(f"No pre-created Supabase user for {normalized}")
            record_alert(normalized, clerk_user_id, "missing_mapping")
            return None

        supabase_id = mapping["supabase_id"]
        if mapping.get("migrated"):
            logger.info(f"User {normalized} already migrated")
            return {"id": supabase_id}

        client = get_supabase()
        try:
            client.auth.admin.update_user_by_id(
                supabase_id,
                {
                    "password": password,
                    "user_metadata": {
                        "clerk_id": clerk_user_id,
                        "first_name": clerk_user.get("first_name"),
                        "last_name": clerk_user.get("last_name"),
                        "migrated": True,
                        "migrated_at": datetime.now(UTC).isoformat(),
                        "clerk_had_mfa": bool(clerk_user.get("two_factor_enabled")),
                    },
                },
            )
        except Exception as e:
            logger.error(f"Failed to set password for {normalized}: {e}")
            record_alert(normalized, clerk_user_id, "auth_update_failed")
            return None

        try:
            client.table("users").update(
                {"auth_user_id": supabase_id, "updated_at": datetime.now(UTC).isoformat()}
            ).eq("email", normalized).execute()
        except Exception as e:
            # Recoverable: the users row is linked by email on the next request
            logger.error(f"Failed to link users row for {normalized}: {e}")
            record_alert(normalized, clerk_user_id, "users_table_link_failed")

        _mark_migrated("email", normalized)
        _log_migration(normalized, clerk_user_id, supabase_id)
        logger.info(f"Migrated {normalized} to Supabase Auth")
        return {"id": supabase_id}

    except Exception as e:
        logger.error(f"Migration failed for {normalized}: {e}")
        record_alert(normalized, clerk_user_id, "migration_error")
        return None


def needs_migration(email: str) -> bool:
    try:
        mapping = _get_mapping("email", _normalize_email(email))
    except Exception as e:
        logger.warning(f"Failed to check migration status: {e}")
        return False
    return bool(mapping) and not mapping.get("migrated")


def login_with_clerk(email: str, password: str) -> dict[str, Any]:
    """
    Sign an unmigrated user in with their Clerk password and migrate them.

    The password is checked against Clerk before it is copied to the
    pre-created Supabase Auth user.

    Raises:
        ValueError: If email or password is missing
        AccountAlreadyMigrated: If there is no pending migration for the email
        InvalidClerkCredentials: If Clerk does not know the user or the password is wrong
        PasswordLoginUnavailable: If the Clerk account has no password
        MigrationError: If Clerk or the migration fails
    """
    if not email or not password:
        raise ValueError("Email and password required")

    normalized = _normalize_email(email)
    if not needs_migration(normalized):
        raise AccountAlreadyMigrated("This account does not need migration. Sign in with your password.")

    try:
        clerk_user = find_clerk_user_by_email(normalized)
        if not clerk_user:
            raise InvalidClerkCredentials("Invalid credentials")
        if not clerk_user.get("password_enabled"):
            raise PasswordLoginUnavailable("This account uses a different sign-in method")
        if not verify_clerk_password(clerk_user["id"], password):
            raise InvalidClerkCredentials("Invalid credentials")
    except httpx.HTTPError as e:
        logger.error(f"Clerk login failed for {normalized}: {e}")
        raise MigrationError("Authentication failed") from e

    migrated = migrate_user_to_supabase(normalized, password, clerk_user["id"])
    if not migrated:
        raise MigrationError("Migration failed. Please try again.")

    return {"success": True, "source": "clerk-migrated", "user_id": migrated["id"]}


def check_migration(email: Optional[str] = None, clerk_user_id: Optional[str] = None) -> dict[str, bool]:
    """Whether a pre-created account exists and whether it has migrated."""
    if clerk_user_id:
        mapping = _get_mapping("clerk_id", clerk_user_id)
    elif email:
        mapping = _get_mapping("email", _normalize_email(email))
    else:
        raise ValueError("email or clerk_user_id is required")

    if not mapping:
        return {"migrated": False, "exists": False}
    return {"migrated": bool(mapping.get("migrated")), "exists": True}


def complete_migration(
    password: str,
    email: Optional[str] = None,
    clerk_user_id: Optional[str] = None,
) -> dict[str, Any]:
    """
    Set the new password for a pre-created account and mark it migrated.

    Raises:
        ValueError: If the password fails the policy or no identifier is given
        MigrationRecordNotFound: If no user_migration row matches
        MigrationError: If Supabase Auth rejects the password update
    """
    validate_password(password)

    if clerk_user_id:
        column, value = "clerk_id", clerk_user_id
    elif email:
        column, value = "email", _normalize_email(email)
    else:
        raise ValueError("Either clerk_user_id or email is required")

    mapping = _get_mapping(column, value)
    if not mapping:
        logger.error(f"Migration record not found for {column}={value}")
        raise MigrationRecordNotFound("Migration record not found. Please contact support.")

    if mapping.get("migrated"):
        return {"success": True, "already_migrated": True}

    supabase_id = mapping["supabase_id"]
    try:
        get_supabase().auth.admin.update_user_by_id(
            supabase_id,
            {
                "password": password,
                "user_metadata": {
                    "migrated": True,
                    "migration_completed_at": datetime.now(UTC).isoformat(),
                },
            },
        )
    except Exception as e:
        record_alert(mapping.get("email") or value, mapping.get("clerk_id"), "auth_update_failed")
        raise MigrationError(f"Failed to update password: {e}") from e

    _mark_migrated(column, value)
    _log_migration(mapping.get("email") or value, mapping.get("clerk_id"), supabase_id)
    logger.info(f"Migration completed for {column}={value}")
    return {"success": True, "already_migrated": False}


def get_migration_stats(now: Optional[datetime] = None) -> dict[str, Any]:
    """Progress counts plus migrations in the last 24 hours, for the admin dashboard."""
    empty = {"total": 0, "migrated": 0, "remaining": 0, "percentage": 0}
    now = now or datetime.now(UTC)
    try:
        client = get_supabase()
        total = client.table("user_migration").select("email", count="exact").limit(1).execute().count or 0
        migrated = (
            client.table("user_migration")
            .select("email", count="exact")
            .eq("migrated", True)
            .limit(1)
            .execute()
            .count
            or 0
        )
        since = (now - timedelta(hours=24)).isoformat()
        recent = (
            client.table("migration_log")
            .select("email, created_at")
            .gte("created_at", since)
            .order("created_at", desc=True)
            .execute()
        )
        alerts = (
            client.table("migration_alerts")
            .select("alert_type, email, created_at")
            .order("created_at", desc=True)
            .limit(50)
            .execute()
        )
    except Exception as e:
        logger.warning(f"Failed to get migration stats: {e}")
        return {"progress": empty, "last_24h": [], "alerts": []}

    return {
        "progress": {
            "total": total,
            "migrated": migrated,
            "remaining": total - migrated,
            "percentage": round(migrated / total * 100, 1) if total else 0,
        },
        "last_24h": recent.data or [],
        "alerts": alerts.data or [],
    }
