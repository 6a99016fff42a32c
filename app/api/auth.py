"""Authentication API: Clerk migration and invitation acceptance."""

import asyncio

from fastapi import APIRouter, HTTPException, status

from app.core import auth_migration
from app.core.auth_migration import (
    AccountAlreadyMigrated,
    InvalidClerkCredentials,
    MigrationError,
    MigrationRecordNotFound,
    PasswordLoginUnavailable,
)
from app.core.invitation_service import InvitationError, InvitationNotFound, accept_invitation
from app.core.logging import get_logger
from app.core.schemas_auth import (
    AcceptInvitationRequest,
    CheckMigrationRequest,
    CheckMigrationResponse,
    ClerkLoginRequest,
    CompleteMigrationRequest,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/check-migration", response_model=CheckMigrationResponse)
async def check_migration(data: CheckMigrationRequest) -> CheckMigrationResponse:
    """Tell the login form whether this account has moved to Supabase Auth."""
    result = await asyncio.to_thread(
        auth_migration.check_migration, email=data.email, clerk_user_id=data.clerk_user_id
    )
    return CheckMigrationResponse(**result)


@router.post("/login-clerk")
async def login_clerk(data: ClerkLoginRequest) -> dict:
    """Sign in an account that still lives in Clerk and migrate it on the way."""
    try:
        return await asyncio.to_thread(auth_migration.login_with_clerk, data.email, data.password)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except InvalidClerkCredentials as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except PasswordLoginUnavailable as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AccountAlreadyMigrated as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except MigrationError as e:
        logger.error(f"Clerk login failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/complete-migration")
async def complete_migration(data: CompleteMigrationRequest) -> dict:
    """Set the new password on a pre-created account and mark it migrated."""
    try:
        result = await asyncio.to_thread(
            auth_migration.complete_migration,
            data.password,
            data.email,
            data.clerk_user_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except MigrationRecordNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except MigrationError as e:
        logger.error(f"Complete migration failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return {"success": True, "already_migrated": result["already_migrated"]}


@router.post("/accept-invitation")
async def accept_invitation_route(data: AcceptInvitationRequest) -> dict:
    """Create the account for an invitation and record the signup consents."""
    try:
        result = await asyncio.to_thread(accept_invitation, data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except InvitationNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvitationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"Invitation acceptance failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create user account",
        )

    user = result["user"]
    return {
        "success": True,
        "user": {"id": user["id"], "email": user["email"], "role": user.get("role")},
    }
