"""Pytest configuration and fixtures."""

import os
from unittest.mock import patch

import pytest

from tests.fakes.fake_supabase import FakeSupabase

# Every module that resolves the Supabase client at call time
_SUPABASE_CONSUMERS = (
    "docsync.db.conversations",
    "docsync.db.messages",
    "docsync.db.documents",
    "docsync.db.document_versions",
    "docsync.db.profiles",
    "docsync.db.templates",
    "docsync.core.llm_usage",
)


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
    os.environ["DOCSYNC_ENV"] = "test"
    os.environ["TOKEN_FLUSH_DELAY_SECONDS"] = "0.01"

    from docsync.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def fake_supabase():
    """Fresh in-memory store per test, wired into every db module."""
    fake = FakeSupabase()
    patchers = [patch(f"{module}.get_supabase", return_value=fake) for module in _SUPABASE_CONSUMERS]
    for patcher in patchers:
        patcher.start()
    yield fake
    for patcher in patchers:
        patcher.stop()
