"""Tests for chat session queries with a mocked Supabase client."""

from unittest.mock import MagicMock, patch

from app.db import chat as chat_db
from tests.fixtures import mock_supabase

SESSION_ID = "6d1f0e8a-2a4b-4c1e-9f3d-1b2c3d4e5f60"
USER_ID = "user-1"


def test_rename_skips_deleted_sessions():
    sb = mock_supabase([MagicMock(data=[])])
    with patch("app.db.chat.get_supabase", return_value=sb):
        assert chat_db.rename_session(SESSION_ID, USER_ID, "Renamed") is None

    chain = sb.table.return_value
    sb.table.assert_called_with("chat_sessions")
    chain.is_.assert_called_once_with("deleted_at", "null")
    chain.eq.assert_any_call("id", SESSION_ID)
    chain.eq.assert_any_call("user_id", USER_ID)


def test_rename_returns_updated_row():
    sb = mock_supabase([MagicMock(data=[{"id": SESSION_ID, "title": "Renamed"}])])
    with patch("app.db.chat.get_supabase", return_value=sb):
        assert chat_db.rename_session(SESSION_ID, USER_ID, "Renamed") == {"id": SESSION_ID, "title": "Renamed"}


def test_soft_delete_is_not_repeated_on_deleted_sessions():
    sb = mock_supabase([MagicMock(data=[])])
    with patch("app.db.chat.get_supabase", return_value=sb):
        assert chat_db.soft_delete_session(SESSION_ID, USER_ID) is False

    sb.table.return_value.is_.assert_called_once_with("deleted_at", "null")
