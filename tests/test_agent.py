"""Tests for the agent graph and its event stream."""

from __future__ import annotations

from datetime import date

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage

from chat_server.agent import ChatAgent, _format_tool_error, as_langchain_messages, build_model, create_graph
from chat_server.config import Settings
from chat_server.envelopes import TOOL_ERROR_MARKER, Token
from chat_server.prompts import PROMPT_SECTION_ORDER, build_system_prompt, get_system_prompt, load_section
from chat_server.relay import envelope_for_event
from chat_server.schemas import MessageEnvelope
from chat_server.tools import get_registered_tools, get_tools_by_name


class FakeToolCallingModel(GenericFakeChatModel):
    """Fake chat model that accepts tool binding and streams canned replies."""

    def bind_tools(self, tools, **kwargs):
        return self


class TestAsLangchainMessages:
    def test_maps_roles_and_appends_new_message(self):
        history = [
            MessageEnvelope(role="user", content="Hi"),
            MessageEnvelope(role="assistant", content="Hello!"),
        ]

        messages = as_langchain_messages(history, "What's new?")

        assert messages == [HumanMessage(content="Hi"), AIMessage(content="Hello!"), HumanMessage(content="What's new?")]

    def test_empty_history(self):
        assert as_langchain_messages([], "Hi") == [HumanMessage(content="Hi")]


class TestToolErrors:
    def test_tool_errors_carry_marker(self):
        assert _format_tool_error(ValueError("bad input")) == f"{TOOL_ERROR_MARKER} bad input"


class TestRegistry:
    def test_registered_tools(self):
        names = [tool.name for tool in get_registered_tools()]
        assert names == ["search_web", "search_books", "get_video_transcript", "get_current_time"]
        assert set(get_tools_by_name()) == set(names)


class TestPrompts:
    def test_sections_are_composed(self):
        prompt = build_system_prompt()

        assert prompt
        assert all(load_section(name) in prompt for name in PROMPT_SECTION_ORDER)

    def test_unknown_section_is_skipped(self):
        assert build_system_prompt(("base", "no_such_section")) == load_section("base")

    def test_date_line(self):
        prompt = get_system_prompt(today=date(2025, 3, 14))
        assert prompt.endswith("Today's date (UTC) is 2025-03-14.")

    def test_override(self):
        today = date(2025, 3, 14)

        assert get_system_prompt(override="  Be brief.  ", today=today) == "Be brief.\n\nToday's date (UTC) is 2025-03-14."
        assert get_system_prompt(override="   ", today=today).startswith(build_system_prompt())


class TestBuildModel:
    def test_requires_api_key(self):
        with pytest.raises(RuntimeError):
            build_model(Settings(google_api_key=None))


class TestChatAgent:
    """Runs the compiled graph with a fake model."""

    @pytest.mark.asyncio
    async def test_streams_model_tokens(self):
        model = FakeToolCallingModel(messages=iter([AIMessage(content="Hello from the agent")]))
        graph = create_graph(Settings(google_api_key=None), model=model)
        agent = ChatAgent(graph)

        envelopes = []
        async for event in agent.stream_events([MessageEnvelope(role="user", content="Hi")], "Hello?", "chat-1"):
            envelope = envelope_for_event(event)
            if envelope is not None:
                envelopes.append(envelope)

        assert envelopes
        assert all(isinstance(envelope, Token) for envelope in envelopes)
        assert "".join(envelope.text for envelope in envelopes) == "Hello from the agent"
