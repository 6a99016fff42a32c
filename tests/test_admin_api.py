"""Tests for the admin API."""

from unittest.mock import patch

import pytest

from app.core.schemas_auth import UserRole
from tests.fixtures import login_as, make_auth, mock_supabase

TARGET_ID = "7d4e1a52-0000-4000-8000-00000000beef"


@pytest.fixture
def admin():
    return login_as(make_auth(UserRole.ADMIN))


@pytest.fixture
def super_admin():
    return login_as(make_auth(UserRole.SUPER_ADMIN))


class TestAccess:
    @pytest.mark.parametrize("role", [UserRole.USER, UserRole.CONTRIBUTOR])
    def test_non_admins_are_forbidden(self, client, role):
        login_as(make_auth(role))
        resp = client.get("/v1/admin/users")
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Admin access required"

    def test_anonymous_is_unauthorized(self, client):
        login_as(None)
        assert client.get("/v1/admin/users").status_code == 401

    def test_purge_needs_super_admin(self, client, admin):
        with patch("app.api.admin.purge_expired_accounts") as purge:
            resp = client.post("/v1/admin/purge-expired-accounts")
        assert resp.status_code == 403
        purge.assert_not_called()

    def test_super_admin_can_purge(self, client, super_admin):
        with patch("app.api.admin.purge_expired_accounts", return_value={"purged": ["u1"], "failed": []}):
            resp = client.post("/v1/admin/purge-expired-accounts")
        assert resp.json() == {"success": True, "purged": ["u1"], "failed": []}


class TestUsers:
    def test_list_passes_filters(self, client, admin):
        with patch("app.db.users.list_users", return_value=[{"id": TARGET_ID}]) as list_users:
            resp = client.get("/v1/admin/users?role=CONTRIBUTOR&limit=10")

        assert resp.json() == {"users": [{"id": TARGET_ID}]}
        list_users.assert_called_once_with(role="CONTRIBUTOR", include_deleted=False, limit=10, offset=0)

    def test_detail_hides_tokens_and_adds_stats(self, client, admin):
        row = {"id": TARGET_ID, "email": "ada@example.com", "invitation_token": "x", "deletion_token": "y"}
        with (
            patch("app.db.users.get_user_by_id", return_value=row),
            patch("app.db.chat.count_user_sessions", return_value=3),
            patch("app.db.chat.count_user_conversations", return_value=12),
            patch("app.db.documents.count_documents", return_value=2),
        ):
            resp = client.get(f"/v1/admin/users/{TARGET_ID}")

        body = resp.json()
        assert body["user"] == {"id": TARGET_ID, "email": "ada@example.com"}
        assert body["stats"] == {"sessions": 3, "conversations": 12, "documents": 2}

    def test_detail_not_found(self, client, admin):
        with patch("app.db.users.get_user_by_id", return_value=None):
            assert client.get(f"/v1/admin/users/{TARGET_ID}").status_code == 404


class TestRoleChange:
    def _patch(self, client, role, target_role="USER"):
        with (
            patch("app.db.users.get_user_by_id", return_value={"id": TARGET_ID, "role": target_role}),
            patch("app.db.users.update_user", return_value={"id": TARGET_ID, "role": role}) as update,
        ):
            resp = client.patch(f"/v1/admin/users/{TARGET_ID}/role", json={"role": role})
        return resp, update

    def test_admin_promotes_to_contributor(self, client, admin):
        resp, update = self._patch(client, "CONTRIBUTOR")
        assert resp.status_code == 200
        update.assert_called_once_with(TARGET_ID, {"role": "CONTRIBUTOR"})

    def test_cannot_change_own_role(self, client, admin):
        resp = client.patch(f"/v1/admin/users/{admin.user_id}/role", json={"role": "USER"})
        assert resp.status_code == 400

    def test_admin_cannot_grant_super_admin(self, client, admin):
        resp, update = self._patch(client, "SUPER_ADMIN")
        assert resp.status_code == 403
        update.assert_not_called()

    def test_admin_cannot_demote_super_admin(self, client, admin):
        resp, update = self._patch(client, "USER", target_role="SUPER_ADMIN")
        assert resp.status_code == 403
        update.assert_not_called()

    def test_super_admin_can_grant_super_admin(self, client, super_admin):
        resp, update = self._patch(client, "SUPER_ADMIN")
        assert resp.status_code == 200
        update.assert_called_once()

    def test_unknown_role_is_rejected(self, client, admin):
        resp = client.patch(f"/v1/admin/users/{TARGET_ID}/role", json={"role": "OWNER"})
        assert resp.status_code == 422


def test_document_analytics(client, admin):
    documents = [
        {"id": "d1", "mime_type": "application/pdf", "ingest_status": "completed",
         "chunks_created": 10, "word_count": 4000, "file_size": 1000},
        {"id": "d2", "mime_type": "application/pdf", "ingest_status": "failed",
         "chunks_created": None, "word_count": 50, "file_size": 200},
        {"id": "d3", "mime_type": "text/plain", "ingest_status": "completed",
         "chunks_created": 2, "word_count": 300, "file_size": 30},
    ]
    with patch("app.db.documents.list_documents", return_value=documents):
        analytics = client.get("/v1/admin/documents").json()["analytics"]

    assert analytics == {
        "total_documents": 3,
        "total_chunks": 12,
        "total_words": 4350,
        "total_size_bytes": 1230,
        "by_type": {"application/pdf": 2, "text/plain": 1},
        "by_status": {"completed": 2, "failed": 1},
    }


class TestSystemHealth:
    def test_reports_services_and_is_cached(self, client, admin):
        with (
            patch("app.api.admin.get_supabase", return_value=mock_supabase()),
            patch("app.api.admin.check_connection", return_value=True) as check,
            patch("app.api.admin.get_index_stats", return_value={"total_vector_count": 42}),
        ):
            first = client.get("/v1/admin/system-health").json()
            second = client.get("/v1/admin/system-health").json()

        assert first["status"] == "healthy"
        assert first["services"]["pinecone"] == {"status": "healthy", "total_vector_count": 42}
        assert first["rate_limiter"] == {"backend": "memory"}
        assert second == first
        check.assert_called_once()

    def test_degraded_when_a_service_is_down(self, client, admin):
        sb = mock_supabase()
        sb.table.side_effect = RuntimeError("connection refused")
        with (
            patch("app.api.admin.get_supabase", return_value=sb),
            patch("app.api.admin.check_connection", return_value=False),
        ):
            body = client.get("/v1/admin/system-health").json()

        assert body["status"] == "degraded"
        assert body["services"]["supabase"]["status"] == "unhealthy"
        assert body["services"]["pinecone"] == {"status": "unhealthy"}


class TestAdminInvitations:
    def test_delete_missing_invitation(self, client, admin):
        with patch("app.api.admin.delete_admin_invitation", return_value=False):
            assert client.delete("/v1/admin/invitations/inv-1").status_code == 404

    def test_stats_passthrough(self, client, admin):
        stats = {"total": 4, "pending": 1, "accepted": 2, "expired": 1}
        with patch("app.api.admin.get_invitation_stats", return_value=stats):
            assert client.get("/v1/admin/invitation-stats").json() == stats

    def test_deletion_and_migration_stats(self, client, admin):
        with (
            patch("app.api.admin.get_deletion_stats", return_value={"scheduled_deletions": 1, "upcoming_deletions": 0}),
            patch("app.api.admin.get_migration_stats", return_value={"progress": {"total": 0}}),
        ):
            assert client.get("/v1/admin/deletion-stats").json()["scheduled_deletions"] == 1
            assert client.get("/v1/admin/migration-stats").json() == {"progress": {"total": 0}}
