"""Admin API: users, documents, invitations, system health and account lifecycle."""

import asyncio
from collections import Counter
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.user import get_usage_stats
from app.core.auth_middleware import AuthContext, require_admin, require_super_admin
from app.core.auth_migration import get_migration_stats
from app.core.cache import CacheNamespace, CacheTTL, cache
from app.core.invitation_service import (
    InvitationConflict,
    InvitationError,
    InvitationNotFound,
    create_admin_invitation,
    delete_admin_invitation,
    get_invitation_stats,
    list_admin_invitations,
    list_quotas,
    resend_admin_invitation,
    set_user_quota,
)
from app.core.logging import get_logger
from app.core.privacy_service import get_deletion_stats, purge_expired_accounts
from app.core.rate_limiter import backend_name
from app.core.schemas_auth import RoleUpdate, UserRole
from app.core.schemas_invitations import AdminInvitationCreate, QuotaUpdate
from app.core.vector_store import check_connection, get_index_stats
from app.db import documents as documents_db
from app.db import users as users_db
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================================
# Users
# ============================================================================


@router.get("/users")
def list_users(
    role: Optional[UserRole] = None,
    include_deleted: bool = False,
    limit: int = 100,
    offset: int = 0,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    users = users_db.list_users(
        role=role.value if role else None,
        include_deleted=include_deleted,
        limit=limit,
        offset=offset,
    )
    return {"users": users}


@router.get("/users/{user_id}")
def get_user_detail(
    user_id: str,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    user = users_db.get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    user = {k: v for k, v in user.items() if k not in ("invitation_token", "deletion_token")}
    return {"user": user, "stats": get_usage_stats(user_id)}


@router.patch("/users/{user_id}/role")
def change_role(
    user_id: str,
    data: RoleUpdate,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    """Change a user's role. Granting SUPER_ADMIN needs a super admin; nobody changes their own role."""
    if user_id == str(auth.user_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot change your own role")
    if data.role == UserRole.SUPER_ADMIN and not auth.has_role(UserRole.SUPER_ADMIN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super admin access required")

    target = users_db.get_user_by_id(user_id)
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if target.get("role") == UserRole.SUPER_ADMIN.value and not auth.has_role(UserRole.SUPER_ADMIN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super admin access required")

    updated = users_db.update_user(user_id, {"role": data.role.value})
    logger.info(
        f"Role changed from {target.get('role')} to {data.role.value}",
        extra={"user_id": user_id, "extra_data": {"changed_by": str(auth.user_id)}},
    )
    return {"user": updated}


# ============================================================================
# Documents
# ============================================================================


@router.get("/documents")
def list_documents_with_analytics(auth: AuthContext = Depends(require_admin)) -> dict:
    """All documents plus totals by type and ingest status."""
    documents = documents_db.list_documents()
    by_type = Counter(d.get("mime_type") or "unknown" for d in documents)
    by_status = Counter(d.get("ingest_status") for d in documents)
    return {
        "documents": documents,
        "analytics": {
            "total_documents": len(documents),
            "total_chunks": sum(d.get("chunks_created") or 0 for d in documents),
            "total_words": sum(d.get("word_count") or 0 for d in documents),
            "total_size_bytes": sum(d.get("file_size") or 0 for d in documents),
            "by_type": dict(by_type),
            "by_status": dict(by_status),
        },
    }


# ============================================================================
# System health
# ============================================================================


def _check_supabase() -> dict:
    try:
        get_supabase().table("users").select("id").limit(1).execute()
        return {"status": "healthy"}
    except Exception as e:
        logger.warning(f"Supabase health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}


def _check_pinecone() -> dict:
    if not check_connection():
        return {"status": "unhealthy"}
    try:
        return {"status": "healthy", **get_index_stats()}
    except Exception as e:
        return {"status": "degraded", "error": str(e)}


@router.get("/system-health")
async def system_health(auth: AuthContext = Depends(require_admin)) -> dict:
    """Status of Supabase, Pinecone, the cache and the rate limiter. Cached for 30 seconds."""
    cached = cache.get(CacheNamespace.SYSTEM_HEALTH, "status")
    if cached is not None:
        return cached

    supabase_status, pinecone_status = await asyncio.gather(
        asyncio.to_thread(_check_supabase),
        asyncio.to_thread(_check_pinecone),
    )
    healthy = supabase_status["status"] == "healthy" and pinecone_status["status"] == "healthy"
    health = {
        "status": "healthy" if healthy else "degraded",
        "services": {"supabase": supabase_status, "pinecone": pinecone_status},
        "cache": cache.stats().to_dict(),
        "rate_limiter": {"backend": backend_name()},
    }
    cache.set(CacheNamespace.SYSTEM_HEALTH, "status", health, ttl=CacheTTL.VERY_SHORT)
    return health


# ============================================================================
# Invitations
# ============================================================================


@router.get("/invitation-quotas")
def get_invitation_quotas(auth: AuthContext = Depends(require_admin)) -> dict:
    return {"quotas": list_quotas()}


@router.put("/invitation-quotas")
def update_invitation_quota(
    data: QuotaUpdate,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    try:
        quota = set_user_quota(str(data.user_id), data.total_quota)
    except InvitationError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return {"quota": quota}


@router.get("/invitations")
def get_invitations(auth: AuthContext = Depends(require_admin)) -> dict:
    return {"invitations": list_admin_invitations()}


@router.get("/invitation-stats")
def invitation_stats(auth: AuthContext = Depends(require_admin)) -> dict:
    return get_invitation_stats()


@router.post("/invitations", status_code=status.HTTP_201_CREATED)
async def invite_user(
    data: AdminInvitationCreate,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    try:
        result = await create_admin_invitation(
            email=data.email,
            invited_by=auth.user,
            name=data.name,
            role=data.role,
            send_email=data.send_email,
        )
    except InvitationConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvitationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    invitation = result["invitation"]
    return {
        "success": True,
        "email_sent": result["email_sent"],
        "invitation": {
            "id": invitation["id"],
            "email": invitation["email"],
            "role": invitation["role"],
            "expires_at": invitation["expires_at"],
        },
    }


@router.post("/invitations/{invitation_id}/resend")
async def resend_invitation(
    invitation_id: str,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    try:
        result = await resend_admin_invitation(invitation_id, auth.user)
    except InvitationNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvitationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"success": True, **result}


@router.delete("/invitations/{invitation_id}")
def delete_invitation(
    invitation_id: str,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    if not delete_admin_invitation(invitation_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found")
    return {"success": True}


# ============================================================================
# Account lifecycle
# ============================================================================


@router.get("/deletion-stats")
def deletion_stats(auth: AuthContext = Depends(require_admin)) -> dict:
    return get_deletion_stats()


@router.get("/migration-stats")
def migration_stats(auth: AuthContext = Depends(require_admin)) -> dict:
    return get_migration_stats()


@router.post("/purge-expired-accounts")
async def purge_accounts(auth: AuthContext = Depends(require_super_admin)) -> dict:
    """Hard delete every account whose deletion grace period has ended."""
    result = await asyncio.to_thread(purge_expired_accounts)
    return {"success": True, **result}
