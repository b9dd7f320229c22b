"""Shared test fixtures and configuration."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from chat_server.agent import get_agent
from chat_server.api import get_store
from chat_server.config import Settings, get_settings
from chat_server.main import create_app
from chat_server.store import InMemoryChatStore
from tests.helpers import USER_ID, ScriptedAgent, model_stream


@pytest.fixture
def mock_settings():
    """Create mock settings for testing."""
    settings = MagicMock()
    settings.google_api_key = None
    settings.google_books_api_key = None
    settings.web_search_max_results = 5
    settings.tool_http_timeout = 15.0
    settings.transcript_max_chars = 12000
    settings.history_max_messages = 10
    settings.system_prompt = None
    settings.firebase_service_account_key = None
    return settings


@pytest.fixture
def test_settings():
    """Real settings wired for local auth and the in-memory store."""
    return Settings(
        google_api_key=None,
        store_backend="memory",
        auth_backend="header",
        stream_high_water_mark=64,
    )


@pytest.fixture
def memory_store():
    return InMemoryChatStore()


@pytest.fixture
def owned_chat(memory_store):
    """A chat owned by USER_ID."""
    return asyncio.run(memory_store.create_chat(USER_ID))


@pytest.fixture
def scripted_agent():
    return ScriptedAgent([model_stream("Hello"), model_stream(" there")])


@pytest.fixture
def app(test_settings, memory_store, scripted_agent):
    application = create_app(test_settings)
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_store] = lambda: memory_store
    application.dependency_overrides[get_agent] = lambda: scripted_agent
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return {"X-User-Id": USER_ID}
