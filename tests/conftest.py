"""Pytest configuration and fixtures."""

import os

import pytest

# Settings are read at import time by some modules; make sure they resolve
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["TOKEN_ENCRYPTION_KEY"] = "test-encryption-secret"
    os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
    os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
    os.environ["CBC_TASK_TIMEZONE"] = "UTC"
    os.environ["TRACKER_ENV"] = "test"

    from tracker.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
