"""Pydantic schemas for GDPR export and account deletion."""

from typing import Optional

from pydantic import BaseModel


class DeleteAccountRequest(BaseModel):
    confirmation: str = ""
    reason: Optional[str] = None


class CancelDeletionRequest(BaseModel):
    token: Optional[str] = None
