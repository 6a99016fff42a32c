"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import admin, auth, chat, chat_sessions, documents, invitations, privacy, upload, user

router = APIRouter()

# Chat: streaming answers and session management
router.include_router(chat.router, tags=["chat"])
router.include_router(chat_sessions.router, tags=["chat"])

# Knowledge base: upload, listing, download, re-ingest
router.include_router(upload.router, tags=["documents"])
router.include_router(documents.router, tags=["documents"])

# Accounts: migration, invitations, profile, privacy
router.include_router(auth.router, tags=["auth"])
router.include_router(invitations.router, tags=["invitations"])
router.include_router(user.router, tags=["user"])
router.include_router(privacy.router, tags=["privacy"])

# Admin console
router.include_router(admin.router, tags=["admin"])
