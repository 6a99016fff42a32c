"""Tests for the signed-in user's profile, stats and email preferences."""

from unittest.mock import MagicMock, patch

import pytest

from tests.fixtures import login_as, make_auth, mock_supabase


@pytest.fixture
def auth():
    return login_as(make_auth(email="ada@example.com", name="Ada"))


def _row(auth, **overrides):
    return {
        "id": str(auth.user_id),
        "email": "ada@example.com",
        "name": "Ada",
        "role": "USER",
        "created_at": "2026-01-01T00:00:00+00:00",
        "deleted_at": None,
        "auth_user_id": "secret",
        "deletion_token": "secret",
        **overrides,
    }


class TestProfile:
    def test_get_profile_exposes_public_fields_only(self, client, auth):
        with patch("app.db.users.get_user_by_id", return_value=_row(auth)):
            profile = client.get("/v1/user/profile").json()["profile"]

        assert set(profile) == {"id", "email", "name", "role", "created_at", "deleted_at"}

    def test_update_sanitizes_name(self, client, auth):
        with patch("app.db.users.update_user", return_value=_row(auth, name="Ada L")) as update:
            resp = client.patch("/v1/user/profile", json={"name": "  Ada <b>L</b> "})

        assert resp.status_code == 200
        update.assert_called_once_with(auth.user_id, {"name": "Ada L"})

    def test_empty_name_rejected(self, client, auth):
        with patch("app.db.users.update_user") as update:
            resp = client.patch("/v1/user/profile", json={"name": "   "})
        assert resp.status_code == 400
        update.assert_not_called()

    def test_requires_auth(self, client):
        login_as(None)
        assert client.get("/v1/user/profile").status_code == 401


def test_usage_stats(client, auth):
    with (
        patch("app.db.chat.count_user_sessions", return_value=2),
        patch("app.db.chat.count_user_conversations", return_value=9),
        patch("app.db.documents.count_documents", return_value=0) as count_documents,
    ):
        resp = client.get("/v1/user/stats")

    assert resp.json() == {"sessions": 2, "conversations": 9, "documents": 0}
    count_documents.assert_called_once_with(uploaded_by=str(auth.user_id))


class TestEmailPreferences:
    def test_defaults_when_nothing_stored(self, client, auth):
        with patch("app.api.user.get_supabase", return_value=mock_supabase()):
            resp = client.get("/v1/user/email-preferences")

        assert resp.json() == {"product_updates": True, "weekly_digest": False, "security_alerts": True}

    def test_stored_preferences_override_defaults(self, client, auth):
        stored = MagicMock(data=[{"email_preferences": {"weekly_digest": True}}])
        with patch("app.api.user.get_supabase", return_value=mock_supabase(execute_results=[stored])):
            resp = client.get("/v1/user/email-preferences")

        assert resp.json()["weekly_digest"] is True
        assert resp.json()["product_updates"] is True

    def test_update_upserts_by_user(self, client, auth):
        sb = mock_supabase()
        body = {"product_updates": False, "weekly_digest": True, "security_alerts": True}
        with patch("app.api.user.get_supabase", return_value=sb):
            resp = client.put("/v1/user/email-preferences", json=body)

        assert resp.json() == body
        row = sb.table.return_value.upsert.call_args.args[0]
        assert row == {"user_id": str(auth.user_id), "email_preferences": body}
        assert sb.table.return_value.upsert.call_args.kwargs == {"on_conflict": "user_id"}
