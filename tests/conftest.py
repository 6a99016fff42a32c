"""Pytest configuration and fixtures."""

import os

import pytest


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["APP_ENV"] = "test"
    os.environ["REDIS_URL"] = ""
    os.environ["ADMIN_API_KEY"] = "test-admin-key"

    from app.core.config import get_settings
    from app.core.rate_limiter import get_redis

    get_settings.cache_clear()
    get_redis.cache_clear()


@pytest.fixture(autouse=True)
def reset_process_state(monkeypatch):
    """Fresh cache and rate limit windows for every test."""
    from app.core import rate_limiter
    from app.core.cache import cache

    cache.clear()
    for limiter in (
        rate_limiter.chat_rate_limiter,
        rate_limiter.upload_rate_limiter,
        rate_limiter.general_rate_limiter,
        rate_limiter.invitation_rate_limiter,
    ):
        monkeypatch.setattr(limiter, "memory", rate_limiter.InMemoryWindow())
    yield
    cache.clear()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from app.main import app

    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
