"""Privacy API: GDPR data export and account deletion."""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.core.auth_middleware import AuthContext, optional_auth, require_auth
from app.core.logging import get_logger
from app.core.privacy_service import (
    ExportRateLimited,
    InvalidDeletionToken,
    PrivacyError,
    cancel_deletion,
    export_user_data,
    schedule_deletion,
    validate_deletion_token,
)
from app.core.rate_limiter import get_client_ip
from app.core.schemas_privacy import CancelDeletionRequest, DeleteAccountRequest

logger = get_logger(__name__)

router = APIRouter(prefix="/privacy", tags=["privacy"])


@router.get("/export")
async def export_data(auth: AuthContext = Depends(require_auth)):
    """Everything held about the user as JSON. One export per hour."""
    try:
        export = await asyncio.to_thread(export_user_data, auth.user)
    except ExportRateLimited as e:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": str(e), "retry_after": e.retry_after},
            headers={"Retry-After": str(e.retry_after)},
        )
    return {"success": True, "message": "Data export created successfully", **export}


@router.post("/delete")
async def delete_account(
    data: DeleteAccountRequest,
    request: Request,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Schedule the account for deletion after the grace period."""
    try:
        result = await schedule_deletion(
            auth.user,
            data.confirmation,
            ip_address=get_client_ip(request),
            reason=data.reason,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PrivacyError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return {"success": True, "message": "Account deletion scheduled", **result}


@router.post("/cancel-deletion")
async def cancel_account_deletion(
    request: Request,
    data: Optional[CancelDeletionRequest] = None,
    auth: Optional[AuthContext] = Depends(optional_auth),
) -> dict:
    """Cancel a scheduled deletion with the emailed token, or while signed in."""
    token = data.token if data else None
    if not token and not auth:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        await asyncio.to_thread(
            cancel_deletion,
            token=token,
            user=None if token else auth.user,
            ip_address=get_client_ip(request),
        )
    except InvalidDeletionToken as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except PrivacyError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"success": True, "message": "Account deletion cancelled successfully"}


@router.get("/validate-deletion-token/{token}")
def validate_token(token: str) -> dict:
    return validate_deletion_token(token)
