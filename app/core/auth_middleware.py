"""Authentication middleware for FastAPI."""

import asyncio
from datetime import UTC, datetime
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.schemas_auth import User, UserRole
from app.db import users as users_db
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)

# System user for API key auth
SYSTEM_USER = User(
    id=UUID("00000000-0000-0000-0000-000000000001"),
    email="system@localhost",
    name="System",
    role=UserRole.SUPER_ADMIN,
    created_at=datetime.now(UTC),
    updated_at=datetime.now(UTC),
)


class AuthContext:
    """Context object containing authenticated user info."""

    def __init__(self, user: User, token: str):
        self.user = user
        self.token = token
        self.user_id = user.id

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def is_system(self) -> bool:
        return self.user.id == SYSTEM_USER.id

    def has_role(self, role: UserRole) -> bool:
        return self.role.at_least(role)

    def is_admin(self) -> bool:
        return self.has_role(UserRole.ADMIN)


def _resolve_user(token: str) -> Optional[User]:
    """Verify a Supabase JWT and load the matching users row."""
    client = get_supabase()
    auth_response = client.auth.get_user(token)
    if not auth_response or not auth_response.user:
        return None

    auth_user = auth_response.user
    row = users_db.get_user_by_auth_id(str(auth_user.id))
    if not row and auth_user.email:
        # Rows created before the auth account existed are matched by email
        row = users_db.get_user_by_email(auth_user.email)
        if row and not row.get("auth_user_id"):
            users_db.update_user(row["id"], {"auth_user_id": str(auth_user.id)})
            logger.info(f"Linked users row to auth user {auth_user.id}", extra={"user_id": row["id"]})

    if not row:
        logger.warning(f"Auth user {auth_user.id} has no users row")
        return None
    return User(**row)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[AuthContext]:
    """
    Extract and validate the current user from the request.

    Supports two authentication methods:
    1. Supabase JWT tokens (Bearer auth)
    2. Admin API key (X-API-Key header) for internal tools

    Users whose account is pending deletion still authenticate so they can
    cancel the deletion. Returns None if no valid auth is present.
    """
    admin_key = get_settings().ADMIN_API_KEY
    if x_api_key and admin_key and x_api_key == admin_key:
        logger.debug("Authenticated via admin API key")
        return AuthContext(user=SYSTEM_USER, token="api-key")

    if not credentials:
        return None

    token = credentials.credentials
    try:
        user = await asyncio.to_thread(_resolve_user, token)
    except Exception as e:
        logger.warning(f"Auth error: {e}")
        return None

    if not user:
        return None
    return AuthContext(user=user, token=token)


async def require_auth(
    auth: Optional[AuthContext] = Depends(get_current_user),
) -> AuthContext:
    """Require authentication. Raises 401 if not authenticated."""
    if not auth:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth


class RoleChecker:
    """Dependency class requiring a minimum role."""

    def __init__(self, minimum: UserRole, detail: str):
        self.minimum = minimum
        self.detail = detail

    async def __call__(self, auth: AuthContext = Depends(require_auth)) -> AuthContext:
        if not auth.has_role(self.minimum):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=self.detail,
            )
        return auth


require_contributor = RoleChecker(UserRole.CONTRIBUTOR, "Contributor access required")
require_admin = RoleChecker(UserRole.ADMIN, "Admin access required")
require_super_admin = RoleChecker(UserRole.SUPER_ADMIN, "Super admin access required")


async def optional_auth(
    auth: Optional[AuthContext] = Depends(get_current_user),
) -> Optional[AuthContext]:
    """Optional authentication - returns None if not authenticated."""
    return auth
