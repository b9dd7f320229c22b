"""Shared test helpers (scripted agents, event builders, stream collection)."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from types import SimpleNamespace
from typing import Any

from chat_server.envelopes import Envelope
from chat_server.sse import SSEParser

USER_ID = "user-123"
OTHER_USER_ID = "user-456"


def model_stream(text: Any) -> dict:
    """A LangGraph ``on_chat_model_stream`` event whose chunk content is ``text``."""
    return {"event": "on_chat_model_stream", "name": "ChatGoogleGenerativeAI", "data": {"chunk": SimpleNamespace(content=text)}}


def tool_start(name: str, tool_input: Any = None) -> dict:
    return {"event": "on_tool_start", "name": name, "data": {"input": tool_input}}


def tool_end(name: str, output: Any = None) -> dict:
    return {"event": "on_tool_end", "name": name, "data": {"output": output}}


class ScriptedAgent:
    """Event source that replays a fixed list of agent events.

    When ``fail_with`` is set the exception is raised after the scripted
    events have been yielded.
    """

    def __init__(self, events: Iterable[dict] = (), fail_with: Exception | None = None, delay: float = 0.0):
        self.events = list(events)
        self.fail_with = fail_with
        self.delay = delay
        self.calls: list[dict] = []
        self.closed = False

    async def stream_events(self, history, new_message: str, chat_id: str) -> AsyncIterator[dict]:
        self.calls.append({"history": list(history), "new_message": new_message, "chat_id": chat_id})
        try:
            for event in self.events:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield event
            if self.fail_with is not None:
                raise self.fail_with
        finally:
            self.closed = True


def decode_body(body: bytes | str) -> list[Envelope]:
    """Decode a complete SSE body into envelopes."""
    parser = SSEParser()
    return parser.parse(body) + parser.flush()


def split_every(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


async def achunks(chunks: Iterable[bytes | str]) -> AsyncIterator[bytes | str]:
    for chunk in chunks:
        yield chunk
