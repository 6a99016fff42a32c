"""Pydantic schemas for authentication, users and account migration."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class UserRole(str, Enum):
    """User role enumeration, lowest privilege first."""
    USER = "USER"
    CONTRIBUTOR = "CONTRIBUTOR"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"

    @property
    def rank(self) -> int:
        return list(UserRole).index(self)

    def at_least(self, other: "UserRole") -> bool:
        return self.rank >= other.rank


# ============================================================================
# User Schemas
# ============================================================================


class User(BaseModel):
    """A row of the ``users`` table."""
    model_config = ConfigDict(extra="ignore", from_attributes=True)

    id: UUID
    email: str
    name: Optional[str] = None
    role: UserRole = UserRole.USER
    auth_user_id: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_pending_deletion(self) -> bool:
        return self.deleted_at is not None


class UserUpdate(BaseModel):
    """Schema for a user editing their own profile."""
    name: Optional[str] = Field(None, max_length=200)


class RoleUpdate(BaseModel):
    role: UserRole


class EmailPreferences(BaseModel):
    product_updates: bool = True
    weekly_digest: bool = False
    security_alerts: bool = True


# ============================================================================
# Migration Schemas
# ============================================================================


class CheckMigrationRequest(BaseModel):
    email: Optional[EmailStr] = None
    clerk_user_id: Optional[str] = None

    @model_validator(mode="after")
    def _require_identifier(self):
        if not self.email and not self.clerk_user_id:
            raise ValueError("email or clerk_user_id is required")
        return self


class CheckMigrationResponse(BaseModel):
    migrated: bool
    exists: bool


class ClerkLoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class CompleteMigrationRequest(BaseModel):
    password: str
    email: Optional[EmailStr] = None
    clerk_user_id: Optional[str] = None

    @model_validator(mode="after")
    def _require_identifier(self):
        if not self.email and not self.clerk_user_id:
            raise ValueError("email or clerk_user_id is required")
        return self


# ============================================================================
# Invitation acceptance
# ============================================================================


class AcceptInvitationRequest(BaseModel):
    token: str = ""
    password: str = ""
    name: Optional[str] = None
    age_confirmed: bool = False
    terms_accepted: bool = False
    privacy_accepted: bool = False
    cookies_accepted: bool = False
