"""Invitation flows: user-sent invitations with quotas, admin invitations, acceptance.

Two kinds of invitation share one acceptance path:

- user invitations are pre-created ``users`` rows carrying an
  ``invitation_token``; each one consumes a slot of the sender's quota and is
  tracked in ``user_sent_invitations_log``.
- admin invitations live in ``invitation_tokens`` and carry the role the
  invitee will get.
"""

import asyncio
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

from app.core.config import get_settings
from app.core.email_service import send_invitation_email
from app.core.logging import get_logger
from app.core.schemas_auth import AcceptInvitationRequest, User, UserRole
from app.db import users as users_db
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

UNLIMITED_QUOTA = 999999
CONSENT_VERSION = "1.0"
MIN_PASSWORD_LENGTH = 8


class InvitationError(Exception):
    """Raised when an invitation operation is rejected."""


class InvitationNotFound(InvitationError):
    pass


class InvitationConflict(InvitationError):
    pass


def generate_invitation_token() -> str:
    """64 hex characters from 32 random bytes."""
    return secrets.token_hex(32)


def _expiry(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(UTC)
    return now + timedelta(days=get_settings().INVITATION_EXPIRY_DAYS)


def _invite_url(token: str) -> str:
    return f"{get_settings().APP_URL.rstrip('/')}/invite/{token}"


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _is_expired(expires_at: Any, now: Optional[datetime] = None) -> bool:
    expires = _parse_ts(expires_at)
    return expires is not None and expires < (now or datetime.now(UTC))


# =============================================================================
# User invitations
# =============================================================================


async def create_invitation(
    email: str,
    invited_by: User,
    name: Optional[str] = None,
    role: UserRole = UserRole.USER,
    send_email: bool = True,
    sent_by_admin: bool = False,
) -> dict[str, Any]:
    """
    Pre-create a users row with an invitation token and log the send.

    Returns:
        Dict with user, token and expires_at

    Raises:
        InvitationConflict: If a user with this email already exists
    """
    normalized = email.strip().lower()
    invited_user, token, expires_at = await asyncio.to_thread(
        _store_user_invitation, normalized, invited_by, name, role, sent_by_admin
    )

    email_sent = False
    if send_email:
        try:
            await send_invitation_email(normalized, _invite_url(token), invited_by.name or invited_by.email, name)
            email_sent = True
        except Exception as e:
            logger.error(f"Failed to send invitation email to {normalized}: {e}")

    logger.info(f"Invitation created for {normalized}", extra={"user_id": str(invited_by.id)})
    return {"user": invited_user, "token": token, "expires_at": expires_at.isoformat(), "email_sent": email_sent}


def _store_user_invitation(
    normalized: str,
    invited_by: User,
    name: Optional[str],
    role: UserRole,
    sent_by_admin: bool,
) -> tuple[dict[str, Any], str, datetime]:
    if users_db.get_user_by_email(normalized):
        raise InvitationConflict("User with this email already exists")

    token = generate_invitation_token()
    expires_at = _expiry()

    invited_user = users_db.create_user(
        {
            "email": normalized,
            "name": name,
            "role": role.value,
            "invited_by": str(invited_by.id),
            "invitation_token": token,
            "invitation_expires_at": expires_at.isoformat(),
        }
    )

    get_supabase().table("user_sent_invitations_log").insert(
        {
            "sender_user_id": str(invited_by.id),
            "sender_auth_user_id": invited_by.auth_user_id,
            "invited_user_id": invited_user["id"],
            "invitee_email": normalized,
            "status": "pending",
            "sent_by_admin": sent_by_admin,
            "expires_at": expires_at.isoformat(),
        }
    ).execute()
    return invited_user, token, expires_at


def get_user_quota(user_id: str, is_admin: bool) -> dict[str, Any]:
    """Invitation quota for a user. Admins are unlimited."""
    if is_admin:
        return {
            "total_invites_granted": UNLIMITED_QUOTA,
            "invites_used": 0,
            "invites_remaining": UNLIMITED_QUOTA,
            "is_admin": True,
        }

    result = (
        get_supabase()
        .table("user_invitation_quotas")
        .select("total_invites_granted, invites_used, invites_remaining")
        .eq("user_id", str(user_id))
        .execute()
    )
    quota = result.data[0] if result.data else {
        "total_invites_granted": 0,
        "invites_used": 0,
        "invites_remaining": 0,
    }
    return {**quota, "is_admin": False}


def consume_quota(user_id: str) -> None:
    get_supabase().rpc("increment_invites_used", {"p_user_id": str(user_id)}).execute()


def set_user_quota(user_id: str, total_quota: int) -> dict[str, Any]:
    """Admin override of a user's total invitation allowance."""
    result = (
        get_supabase()
        .table("user_invitation_quotas")
        .upsert(
            {
                "user_id": str(user_id),
                "total_invites_granted": total_quota,
                "updated_at": datetime.now(UTC).isoformat(),
            },
            on_conflict="user_id",
        )
        .execute()
    )
    if not result.data:
        raise InvitationError("Failed to update quota")
    return result.data[0]


def list_quotas() -> list[dict[str, Any]]:
    result = (
        get_supabase()
        .table("user_invitation_quotas")
        .select("user_id, total_invites_granted, invites_used, invites_remaining, users(email, name, role)")
        .order("invites_used", desc=True)
        .execute()
    )
    return result.data or []


def get_user_invitations(user_id: str) -> list[dict[str, Any]]:
    result = (
        get_supabase()
        .table("user_sent_invitations_log")
        .select(
            "id, invitee_email, status, expires_at, created_at, accepted_at, revoked_at, "
            "invited_user:invited_user_id(invitation_token)"
        )
        .eq("sender_user_id", str(user_id))
        .order("created_at", desc=True)
        .execute()
    )
    invitations = []
    for row in result.data or []:
        invited_user = row.get("invited_user") or {}
        invitations.append(
            {
                "id": row["id"],
                "invitee_email": row["invitee_email"],
                "status": row["status"],
                "expires_at": row.get("expires_at"),
                "sent_at": row.get("created_at"),
                "accepted_at": row.get("accepted_at"),
                "revoked_at": row.get("revoked_at"),
                "invitation_token": invited_user.get("invitation_token"),
            }
        )
    return invitations


def revoke_invitation(invitation_id: str, user_id: str) -> bool:
    """Revoke a pending invitation. The quota slot is not refunded."""
    result = (
        get_supabase()
        .table("user_sent_invitations_log")
        .update({"status": "revoked", "revoked_at": datetime.now(UTC).isoformat()})
        .eq("id", invitation_id)
        .eq("sender_user_id", str(user_id))
        .eq("status", "pending")
        .execute()
    )
    return bool(result.data)


def expire_invitations_and_refund() -> dict[str, int]:
    """Expire stale pending invitations and refund their quota slots."""
    result = get_supabase().rpc("expire_invitations_and_refund").execute()
    row = result.data[0] if result.data else {}
    return {
        "expired_count": row.get("expired_count") or 0,
        "refunded_count": row.get("refunded_count") or 0,
    }


# =============================================================================
# Admin invitations
# =============================================================================


async def create_admin_invitation(
    email: str,
    invited_by: User,
    name: Optional[str] = None,
    role: UserRole = UserRole.USER,
    send_email: bool = True,
) -> dict[str, Any]:
    """
    Create an ``invitation_tokens`` row.

    An expired invitation for the same email is replaced; a pending or
    accepted one is a conflict.

    Raises:
        InvitationError: If the role is SUPER_ADMIN
        InvitationConflict: If the user or a live invitation already exists
    """
    if role == UserRole.SUPER_ADMIN:
        raise InvitationError("Invalid role. Must be USER, CONTRIBUTOR, or ADMIN")

    normalized = email.strip().lower()
    invitation, token = await asyncio.to_thread(_store_admin_invitation, normalized, invited_by, name, role)

    email_sent = False
    if send_email:
        try:
            await send_invitation_email(normalized, _invite_url(token), invited_by.name or invited_by.email, name)
            email_sent = True
        except Exception as e:
            logger.error(f"Failed to send invitation email to {normalized}: {e}")

    logger.info(f"Admin invitation created for {normalized} as {role.value}", extra={"user_id": str(invited_by.id)})
    return {"invitation": invitation, "email_sent": email_sent}


def _store_admin_invitation(
    normalized: str, invited_by: User, name: Optional[str], role: UserRole
) -> tuple[dict[str, Any], str]:
    if users_db.get_user_by_email(normalized):
        raise InvitationConflict("User with this email already exists")

    client = get_supabase()
    existing = (
        client.table("invitation_tokens")
        .select("id, expires_at, accepted_at")
        .eq("email", normalized)
        .execute()
    )
    for row in existing.data or []:
        if row.get("accepted_at"):
            raise InvitationConflict("This email has already accepted an invitation")
        if not _is_expired(row.get("expires_at")):
            raise InvitationConflict("An active invitation already exists for this email")
        client.table("invitation_tokens").delete().eq("id", row["id"]).execute()
        logger.info(f"Replaced expired invitation for {normalized}")

    token = generate_invitation_token()
    expires_at = _expiry()
    result = (
        client.table("invitation_tokens")
        .insert(
            {
                "email": normalized,
                "name": name,
                "role": role.value,
                "token": token,
                "expires_at": expires_at.isoformat(),
                "invited_by": str(invited_by.id),
            }
        )
        .execute()
    )
    if not result.data:
        raise InvitationError("Failed to create invitation")
    return result.data[0], token


def list_admin_invitations(now: Optional[datetime] = None) -> list[dict[str, Any]]:
    """All invitation_tokens rows with a derived status."""
    result = (
        get_supabase()
        .table("invitation_tokens")
        .select("id, email, name, role, expires_at, accepted_at, created_at, invited_by")
        .order("created_at", desc=True)
        .execute()
    )
    invitations = []
    for row in result.data or []:
        if row.get("accepted_at"):
            status = "accepted"
        elif _is_expired(row.get("expires_at"), now):
            status = "expired"
        else:
            status = "pending"
        invitations.append({**row, "status": status})
    return invitations


async def resend_admin_invitation(invitation_id: str, invited_by: User) -> dict[str, Any]:
    """
    Issue a fresh token and expiry for a pending invitation and email it again.

    Raises:
        InvitationNotFound: If the invitation does not exist
        InvitationError: If it was already accepted
    """
    invitation, token, expires_at = await asyncio.to_thread(_refresh_admin_invitation, invitation_id)

    await send_invitation_email(
        invitation["email"], _invite_url(token), invited_by.name or invited_by.email, invitation.get("name")
    )
    logger.info(f"Resent invitation to {invitation['email']}")
    return {"id": invitation_id, "email": invitation["email"], "expires_at": expires_at.isoformat()}


def _refresh_admin_invitation(invitation_id: str) -> tuple[dict[str, Any], str, datetime]:
    client = get_supabase()
    result = client.table("invitation_tokens").select("*").eq("id", invitation_id).execute()
    if not result.data:
        raise InvitationNotFound("Invitation not found")
    invitation = result.data[0]
    if invitation.get("accepted_at"):
        raise InvitationError("Invitation has already been accepted")

    token = generate_invitation_token()
    expires_at = _expiry()
    client.table("invitation_tokens").update(
        {"token": token, "expires_at": expires_at.isoformat()}
    ).eq("id", invitation_id).execute()
    return invitation, token, expires_at


def delete_admin_invitation(invitation_id: str) -> bool:
    result = get_supabase().table("invitation_tokens").delete().eq("id", invitation_id).execute()
    return bool(result.data)


def get_invitation_stats(now: Optional[datetime] = None) -> dict[str, int]:
    invitations = list_admin_invitations(now)
    stats = {"total": len(invitations), "pending": 0, "accepted": 0, "expired": 0}
    for invitation in invitations:
        stats[invitation["status"]] += 1
    return stats


# =============================================================================
# Validation and acceptance
# =============================================================================


def _find_invitation(token: str) -> Optional[dict[str, Any]]:
    """
    Look a token up in invitation_tokens, then in pre-created users rows.

    Returns a normalised dict with ``source`` set to ``admin`` or ``user``.
    """
    client = get_supabase()
    result = (
        client.table("invitation_tokens")
        .select("id, email, name, role, expires_at, accepted_at, invited_by")
        .eq("token", token)
        .execute()
    )
    if result.data:
        row = result.data[0]
        return {**row, "source": "admin"}

    result = (
        client.table("users")
        .select("id, email, name, role, invitation_expires_at, auth_user_id, invited_by")
        .eq("invitation_token", token)
        .execute()
    )
    if result.data:
        row = result.data[0]
        return {
            "id": row["id"],
            "email": row["email"],
            "name": row.get("name"),
            "role": row.get("role") or UserRole.USER.value,
            "expires_at": row.get("invitation_expires_at"),
            "accepted_at": "linked" if row.get("auth_user_id") else None,
            "invited_by": row.get("invited_by"),
            "source": "user",
        }
    return None


def validate_invite_token(token: str, now: Optional[datetime] = None) -> dict[str, Any]:
    """
    Public view of an invitation.

    Raises:
        InvitationNotFound: If the token is unknown
        InvitationError: If the invitation was already accepted
    """
    if not token:
        raise InvitationNotFound("Invalid invitation token")
    invitation = _find_invitation(token)
    if not invitation:
        logger.warning("Invalid invitation token attempted")
        raise InvitationNotFound("Invalid invitation link")
    if invitation.get("accepted_at"):
        raise InvitationError("This invitation has already been accepted")

    inviter = None
    if invitation.get("invited_by"):
        inviter_row = users_db.get_user_by_id(invitation["invited_by"])
        if inviter_row:
            inviter = inviter_row.get("name") or inviter_row.get("email")

    return {
        "email": invitation["email"],
        "name": invitation.get("name"),
        "role": invitation.get("role"),
        "invited_by": inviter or "System",
        "expires_at": invitation.get("expires_at"),
        "expired": _is_expired(invitation.get("expires_at"), now),
    }


def _find_auth_user_by_email(email: str) -> Optional[Any]:
    for auth_user in get_supabase().auth.admin.list_users() or []:
        if (getattr(auth_user, "email", None) or "").lower() == email:
            return auth_user
    return None


def accept_invitation(request: AcceptInvitationRequest, now: Optional[datetime] = None) -> dict[str, Any]:
    """
    Create (or update) the Supabase Auth user for an invitation and activate the account.

    A freshly created auth user is deleted again if the users row cannot be
    written.

    Raises:
        ValueError: If fields, consents or the password are invalid
        InvitationNotFound: If the token is unknown
        InvitationError: If the invitation expired or was already accepted
    """
    if not request.token or not request.password:
        raise ValueError("Missing required fields")
    if len(request.password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not (request.age_confirmed and request.terms_accepted and request.privacy_accepted):
        raise ValueError("Required consents must be accepted")

    now = now or datetime.now(UTC)
    invitation = _find_invitation(request.token)
    if not invitation:
        raise InvitationNotFound("Invalid invitation token")
    if _is_expired(invitation.get("expires_at"), now):
        raise InvitationError("Invitation has expired")
    if invitation.get("accepted_at"):
        raise InvitationError("Invitation has already been accepted")

    client = get_supabase()
    email = invitation["email"].lower()
    metadata = {
        "role": invitation["role"],
        "invited_by": invitation.get("invited_by"),
        "invitation_accepted_at": now.isoformat(),
    }

    existing_auth_user = _find_auth_user_by_email(email)
    if existing_auth_user:
        auth_user_id = str(existing_auth_user.id)
        client.auth.admin.update_user_by_id(
            auth_user_id,
            {"password": request.password, "email_confirm": True, "user_metadata": metadata},
        )
    else:
        created = client.auth.admin.create_user(
            {
                "email": email,
                "password": request.password,
                "email_confirm": True,
                "user_metadata": metadata,
            }
        )
        if not created or not created.user:
            raise InvitationError("Failed to create account. Please try again.")
        auth_user_id = str(created.user.id)

    consent_ts = now.isoformat()
    profile = {
        "auth_user_id": auth_user_id,
        "name": request.name or invitation.get("name"),
        "age_confirmed": request.age_confirmed,
        "terms_accepted_at": consent_ts if request.terms_accepted else None,
        "privacy_accepted_at": consent_ts if request.privacy_accepted else None,
        "cookies_accepted_at": consent_ts if request.cookies_accepted else None,
        "consent_version": CONSENT_VERSION,
    }

    try:
        if invitation["source"] == "user":
            user = users_db.update_user(
                invitation["id"], {**profile, "invitation_token": None, "updated_at": consent_ts}
            )
            if not user:
                raise InvitationError("Failed to create user account")
        else:
            user = users_db.create_user(
                {
                    **profile,
                    "email": email,
                    "role": invitation["role"],
                    "invited_by": invitation.get("invited_by"),
                }
            )
    except Exception:
        if not existing_auth_user:
            try:
                client.auth.admin.delete_user(auth_user_id)
            except Exception as e:
                logger.error(f"Failed to roll back auth user {auth_user_id}: {e}")
        raise

    try:
        if invitation["source"] == "admin":
            client.table("invitation_tokens").update({"accepted_at": consent_ts}).eq(
                "id", invitation["id"]
            ).execute()
        else:
            client.table("user_sent_invitations_log").update(
                {"status": "accepted", "accepted_at": consent_ts}
            ).eq("invited_user_id", invitation["id"]).execute()
    except Exception as e:
        # The account exists; only the bookkeeping is stale
        logger.error(f"Failed to mark invitation accepted: {e}")

    logger.info(f"Invitation accepted by {email}", extra={"user_id": user["id"]})
    return {"user": user, "auth_user_id": auth_user_id}
