"""Invitation API: token validation and user-sent invitations."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.core.auth_middleware import AuthContext, require_auth
from app.core.invitation_service import (
    InvitationConflict,
    InvitationError,
    InvitationNotFound,
    consume_quota,
    create_invitation,
    expire_invitations_and_refund,
    get_user_invitations,
    get_user_quota,
    revoke_invitation,
    validate_invite_token,
)
from app.core.logging import get_logger
from app.core.rate_limiter import get_identifier, invitation_rate_limiter
from app.core.schemas_invitations import InvitationCreate

logger = get_logger(__name__)

router = APIRouter(tags=["invitations"])


@router.get("/invite/{token}")
async def validate_invitation(token: str) -> dict:
    """Public details of an invitation so the signup page can show who invited whom."""
    try:
        invitation = await asyncio.to_thread(validate_invite_token, token)
    except InvitationNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvitationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"success": True, "invitation": invitation}


@router.get("/user/invitations")
async def list_invitations(auth: AuthContext = Depends(require_auth)) -> dict:
    """The user's sent invitations. Stale ones are expired (and refunded) first."""
    try:
        expired = await asyncio.to_thread(expire_invitations_and_refund)
    except Exception as e:
        logger.warning(f"Failed to expire invitations: {e}")
        expired = {"expired_count": 0, "refunded_count": 0}

    invitations = await asyncio.to_thread(get_user_invitations, str(auth.user_id))
    return {"invitations": invitations, **expired}


@router.get("/user/invitations/quota")
async def get_quota(auth: AuthContext = Depends(require_auth)) -> dict:
    return await asyncio.to_thread(get_user_quota, str(auth.user_id), auth.is_admin())


@router.post("/user/invitations", status_code=status.HTTP_201_CREATED)
async def send_invitation(
    data: InvitationCreate,
    request: Request,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Invite someone as a USER. Non-admins spend one quota slot per invitation."""
    user_id = str(auth.user_id)
    is_admin = auth.is_admin()

    if not is_admin:
        await asyncio.to_thread(invitation_rate_limiter.enforce, get_identifier(request, user_id))
        quota = await asyncio.to_thread(get_user_quota, user_id, False)
        if (quota.get("invites_remaining") or 0) <= 0:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No invitations remaining. Contact an administrator for more.",
            )

    try:
        invitation = await create_invitation(
            email=data.email,
            invited_by=auth.user,
            name=data.name,
            send_email=data.send_email,
            sent_by_admin=is_admin,
        )
    except InvitationConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if not is_admin:
        await asyncio.to_thread(consume_quota, user_id)

    logger.info(f"Invitation sent to {data.email}", extra={"user_id": user_id})
    return {
        "success": True,
        "invitation": {
            "id": invitation["user"]["id"],
            "email": invitation["user"]["email"],
            "token": invitation["token"],
            "expires_at": invitation["expires_at"],
            "email_sent": invitation["email_sent"],
        },
    }


@router.delete("/user/invitations/{invitation_id}")
async def revoke(invitation_id: str, auth: AuthContext = Depends(require_auth)) -> dict:
    """Revoke a pending invitation. The quota slot is not refunded."""
    if not await asyncio.to_thread(revoke_invitation, invitation_id, str(auth.user_id)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pending invitation not found")
    return {"success": True}
