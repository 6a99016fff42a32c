"""Pydantic schemas for invitations and invitation quotas."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.core.schemas_auth import UserRole


class InvitationCreate(BaseModel):
    """A user inviting someone from their own quota."""
    email: EmailStr
    name: Optional[str] = Field(None, max_length=200)
    send_email: bool = True


class AdminInvitationCreate(BaseModel):
    """An admin inviting someone with a chosen role."""
    email: EmailStr
    name: Optional[str] = Field(None, max_length=200)
    role: UserRole = UserRole.USER
    send_email: bool = True


class QuotaUpdate(BaseModel):
    user_id: UUID
    total_quota: int = Field(..., ge=0, le=10_000)
