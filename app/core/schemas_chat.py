"""Pydantic schemas for chat and chat sessions."""

from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_SESSION_TITLE = "New Chat"


class ChatRequest(BaseModel):
    question: str = ""
    session_id: Optional[str] = None


class SessionCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)


class SessionUpdate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
