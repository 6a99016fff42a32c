"""Tests for request authentication and role checks."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from app.core import auth_middleware
from app.core.auth_middleware import (
    SYSTEM_USER,
    _resolve_user,
    get_current_user,
    require_admin,
    require_auth,
    require_contributor,
)
from app.core.schemas_auth import UserRole
from tests.fixtures import make_auth

AUTH_ID = str(uuid4())
ROW_ID = str(uuid4())


def _supabase_with_auth_user(email="ada@example.com"):
    sb = MagicMock()
    sb.auth.get_user.return_value = SimpleNamespace(user=SimpleNamespace(id=AUTH_ID, email=email))
    return sb


def _row(**overrides):
    return {"id": ROW_ID, "email": "ada@example.com", "role": "CONTRIBUTOR", **overrides}


class TestResolveUser:
    def test_loads_row_by_auth_id(self):
        with (
            patch.object(auth_middleware, "get_supabase", return_value=_supabase_with_auth_user()),
            patch("app.db.users.get_user_by_auth_id", return_value=_row(auth_user_id=AUTH_ID)),
        ):
            user = _resolve_user("jwt")

        assert str(user.id) == ROW_ID
        assert user.role == UserRole.CONTRIBUTOR

    def test_links_row_found_by_email(self):
        with (
            patch.object(auth_middleware, "get_supabase", return_value=_supabase_with_auth_user()),
            patch("app.db.users.get_user_by_auth_id", return_value=None),
            patch("app.db.users.get_user_by_email", return_value=_row(auth_user_id=None)),
            patch("app.db.users.update_user") as update,
        ):
            user = _resolve_user("jwt")

        assert user is not None
        update.assert_called_once_with(ROW_ID, {"auth_user_id": AUTH_ID})

    def test_unknown_user(self):
        with (
            patch.object(auth_middleware, "get_supabase", return_value=_supabase_with_auth_user()),
            patch("app.db.users.get_user_by_auth_id", return_value=None),
            patch("app.db.users.get_user_by_email", return_value=None),
        ):
            assert _resolve_user("jwt") is None

    def test_pending_deletion_still_resolves(self):
        row = _row(auth_user_id=AUTH_ID, deleted_at="2026-06-01T00:00:00+00:00")
        with (
            patch.object(auth_middleware, "get_supabase", return_value=_supabase_with_auth_user()),
            patch("app.db.users.get_user_by_auth_id", return_value=row),
        ):
            user = _resolve_user("jwt")

        assert user.is_pending_deletion


class TestGetCurrentUser:
    @pytest.mark.asyncio
    async def test_admin_api_key(self):
        auth = await get_current_user(credentials=None, x_api_key="test-admin-key")
        assert auth.user is SYSTEM_USER
        assert auth.is_system

    @pytest.mark.asyncio
    async def test_wrong_api_key_falls_through(self):
        assert await get_current_user(credentials=None, x_api_key="nope") is None

    @pytest.mark.asyncio
    async def test_verification_error_is_anonymous(self):
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials="jwt")
        with patch.object(auth_middleware, "_resolve_user", side_effect=RuntimeError("jwt expired")):
            assert await get_current_user(credentials=creds, x_api_key=None) is None

    @pytest.mark.asyncio
    async def test_bearer_token(self):
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials="jwt")
        user = make_auth().user
        with patch.object(auth_middleware, "_resolve_user", return_value=user):
            auth = await get_current_user(credentials=creds, x_api_key=None)

        assert auth.user is user
        assert auth.token == "jwt"


class TestRoles:
    def test_role_ordering(self):
        assert UserRole.SUPER_ADMIN.at_least(UserRole.ADMIN)
        assert UserRole.CONTRIBUTOR.at_least(UserRole.USER)
        assert not UserRole.CONTRIBUTOR.at_least(UserRole.ADMIN)

    @pytest.mark.asyncio
    async def test_require_auth_rejects_anonymous(self):
        with pytest.raises(HTTPException) as exc:
            await require_auth(None)
        assert exc.value.status_code == 401

    @pytest.mark.asyncio
    async def test_role_checker(self):
        contributor = make_auth(UserRole.CONTRIBUTOR)
        assert await require_contributor(contributor) is contributor
        with pytest.raises(HTTPException) as exc:
            await require_admin(contributor)
        assert exc.value.status_code == 403
        assert exc.value.detail == "Admin access required"

    def test_api_key_over_http(self, client):
        resp = client.get("/v1/admin/deletion-stats", headers={"X-API-Key": "wrong"})
        assert resp.status_code == 401
