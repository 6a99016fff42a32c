"""Shared builders for API and service tests."""

import json
from datetime import UTC, datetime
from unittest.mock import MagicMock
from uuid import UUID, uuid4

from app.core.auth_middleware import AuthContext, get_current_user, optional_auth, require_auth
from app.core.schemas_auth import User, UserRole
from app.main import app


def make_user(role: UserRole = UserRole.USER, user_id: UUID | None = None, **overrides) -> User:
    return User(
        id=user_id or uuid4(),
        email=overrides.pop("email", "user@example.com"),
        name=overrides.pop("name", "Test User"),
        role=role,
        auth_user_id=overrides.pop("auth_user_id", str(uuid4())),
        created_at=datetime.now(UTC),
        **overrides,
    )


def make_auth(role: UserRole = UserRole.USER, **overrides) -> AuthContext:
    return AuthContext(user=make_user(role, **overrides), token="test-token")


def login_as(auth: AuthContext | None) -> AuthContext | None:
    """Route every auth dependency to ``auth`` (None means anonymous)."""
    app.dependency_overrides[get_current_user] = lambda: auth
    app.dependency_overrides[optional_auth] = lambda: auth
    if auth is not None:
        app.dependency_overrides[require_auth] = lambda: auth
    else:
        app.dependency_overrides.pop(require_auth, None)
    return auth


def mock_supabase(execute_results=None):
    """Supabase mock with chained query builder.

    Args:
        execute_results: Optional list of return values for successive
            .execute() calls (uses side_effect). When not provided,
            every .execute() returns ``MagicMock(data=[], count=0)``.
    """
    sb = MagicMock()
    chain = MagicMock()
    if execute_results is not None:
        chain.execute.side_effect = execute_results
    else:
        chain.execute.return_value = MagicMock(data=[], count=0)
    for method in (
        "select", "insert", "update", "upsert", "delete", "eq", "neq", "in_", "is_",
        "gte", "lte", "lt", "gt", "order", "limit", "range", "single", "text_search",
    ):
        getattr(chain, method).return_value = chain
    chain.not_ = chain
    sb.table.return_value = chain
    sb.rpc.return_value = chain
    return sb


def parse_sse_events(text: str) -> list[dict]:
    """Parse SSE response body into a list of event dicts."""
    events = []
    for line in text.strip().split("\n"):
        line = line.strip()
        if line.startswith("data: "):
            events.append(json.loads(line[6:]))
    return events
