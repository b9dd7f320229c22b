"""
Real-API integration test for the Gemini-backed agent.
Uses .env from the project root when present. Skips when GOOGLE_API_KEY is not set.
Run: python -m pytest tests/test_gemini_integration.py -v
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")
GOOGLE_API_KEY = os.environ.get("GOOGLE_API_KEY", "").strip()


@pytest.mark.skipif(not GOOGLE_API_KEY, reason="GOOGLE_API_KEY not set")
@pytest.mark.asyncio
async def test_agent_streams_tokens_real_api():
    """Stream one turn through the real model and check tokens arrive."""
    from chat_server.agent import ChatAgent, create_graph
    from chat_server.config import get_settings
    from chat_server.envelopes import Token
    from chat_server.relay import envelope_for_event

    agent = ChatAgent(create_graph(get_settings()))

    text = ""
    async for event in agent.stream_events([], "Reply with the single word: pong", "integration-test"):
        envelope = envelope_for_event(event)
        if isinstance(envelope, Token):
            text += envelope.text

    assert "pong" in text.lower()


@pytest.mark.skipif(not GOOGLE_API_KEY, reason="GOOGLE_API_KEY not set")
def test_model_settings_from_config():
    """Config exposes the model id and sampling settings."""
    from chat_server.config import get_settings

    settings = get_settings()
    assert settings.gemini_model
    assert settings.llm_max_output_tokens > 0
