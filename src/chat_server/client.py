"""Python client for the chat server.

``ChatStreamConsumer`` turns the raw SSE byte stream of one turn into
incremental state updates and commits the assembled answer once ``done``
arrives. ``ChatSession`` adds the transcript view on top of it, including the
optimistic user message that is rolled back when a turn fails.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .envelopes import (
    TOOL_ERROR_MARKER,
    Envelope,
    Error,
    Token,
    ToolEnd,
    ToolStart,
    is_terminal,
)
from .schemas import Chat, ChatSearchResult, Message, MessageEnvelope, MessageRole
from .sse import SSEParser

logger = logging.getLogger(__name__)


class ChatApiError(Exception):
    """The server answered with a non-success status."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class StreamError(Exception):
    """The turn ended without a ``done`` envelope."""


class TurnInProgressError(Exception):
    """A second message was sent while the previous turn is still streaming."""


@dataclass
class ActiveTool:
    name: str
    input: Any = None


@dataclass
class TurnState:
    response: str = ""
    current_tool: Optional[ActiveTool] = None
    error: Optional[str] = None
    in_progress: bool = False


def tool_completion_note(envelope: ToolEnd) -> str:
    """Text appended to the answer when a tool finishes."""
    output = envelope.output
    if isinstance(output, str) and TOOL_ERROR_MARKER in output:
        return f"\n\n{output}\n"
    return f"\n\n🔧 {envelope.name} search completed successfully.\n"


def format_turn_error(exc: BaseException) -> str:
    return f"❌ Error: Failed to process message\n\nDetails: {exc or exc.__class__.__name__}"


class ChatStreamConsumer:
    """Drive an ``SSEParser`` over one turn's byte stream."""

    def __init__(
        self,
        commit: Callable[[str], Awaitable[Any]],
        *,
        state: TurnState | None = None,
        on_update: Callable[[TurnState], None] | None = None,
    ) -> None:
        self._commit = commit
        self._committed = False
        self.state = state or TurnState()
        self._on_update = on_update

    def _publish(self) -> None:
        if self._on_update is not None:
            self._on_update(self.state)

    async def consume(self, chunks: AsyncIterable[bytes | str]) -> str:
        """Read the stream until ``done`` and return the committed answer.

        Raises ``StreamError`` when an ``error`` envelope arrives or the stream
        ends before ``done``; nothing is committed in that case.
        """
        parser = SSEParser()
        async for chunk in chunks:
            for envelope in parser.parse(chunk):
                if is_terminal(envelope):
                    return await self._finish(envelope)
                self._handle(envelope)
        for envelope in parser.flush():
            if is_terminal(envelope):
                return await self._finish(envelope)
            self._handle(envelope)
        raise StreamError("Stream ended before the response was complete")

    def _handle(self, envelope: Envelope) -> None:
        state = self.state
        if isinstance(envelope, Token):
            state.response += envelope.text
        elif isinstance(envelope, ToolStart):
            state.current_tool = ActiveTool(name=envelope.name, input=envelope.input)
        elif isinstance(envelope, ToolEnd):
            if envelope.output not in (None, ""):
                state.response += tool_completion_note(envelope)
            state.current_tool = None
        else:
            return
        self._publish()

    async def _finish(self, envelope: Envelope) -> str:
        if isinstance(envelope, Error):
            raise StreamError(envelope.message)
        final = self.state.response
        await self._commit_once(final)
        self.state.response = ""
        self._publish()
        return final

    async def _commit_once(self, content: str) -> None:
        if self._committed:
            return
        self._committed = True
        try:
            await self._commit(content)
        except Exception:
            # The answer is still shown even if saving it failed
            logger.exception("Error saving assistant message")


class ChatApiClient:
    """HTTP client for the chat server routes."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        user_id: str | None = None,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        headers: dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if user_id:
            headers["X-User-Id"] = user_id
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = await self._http.request(method, url, headers=self._headers, **kwargs)
        if response.is_error:
            raise ChatApiError(response.status_code, response.text or response.reason_phrase)
        return response

    async def stream_chat(
        self, history: list[MessageEnvelope], new_message: str, chat_id: str
    ) -> AsyncIterator[bytes]:
        body = {
            "messages": [m.model_dump() for m in history],
            "newMessage": new_message,
            "chatId": chat_id,
        }
        headers = {**self._headers, "Accept": "text/event-stream"}
        async with self._http.stream("POST", "/chat/stream", json=body, headers=headers) as response:
            if response.status_code != 200:
                text = (await response.aread()).decode("utf-8", errors="replace")
                raise ChatApiError(response.status_code, text or response.reason_phrase)
            async for chunk in response.aiter_bytes():
                yield chunk

    async def create_chat(self, title: str = "New Chat") -> Chat:
        response = await self._request("POST", "/chats", json={"title": title})
        return Chat.model_validate(response.json())

    async def list_chats(self) -> list[Chat]:
        response = await self._request("GET", "/chats")
        return [Chat.model_validate(item) for item in response.json()]

    async def search_chats(self, query: str) -> list[ChatSearchResult]:
        response = await self._request("GET", "/chats/search", params={"q": query})
        return [ChatSearchResult.model_validate(item) for item in response.json()]

    async def delete_chat(self, chat_id: str) -> None:
        await self._request("DELETE", f"/chats/{chat_id}")

    async def update_chat_title(self, chat_id: str, first_message: str) -> Chat:
        response = await self._request("PATCH", f"/chats/{chat_id}/title", json={"firstMessage": first_message})
        return Chat.model_validate(response.json())

    async def list_messages(self, chat_id: str) -> list[Message]:
        response = await self._request("GET", f"/chats/{chat_id}/messages")
        return [Message.model_validate(item) for item in response.json()]

    async def store_message(self, chat_id: str, content: str, role: MessageRole = "assistant") -> str:
        response = await self._request(
            "POST", f"/chats/{chat_id}/messages", json={"content": content, "role": role}
        )
        return response.json()["messageId"]

    async def get_last_message(self, chat_id: str) -> Message | None:
        response = await self._request("GET", f"/chats/{chat_id}/messages/last")
        payload = response.json()
        return Message.model_validate(payload) if payload else None


class ChatSession:
    """Client-side view of one chat: transcript plus the turn in flight."""

    def __init__(
        self,
        client: ChatApiClient,
        chat_id: str,
        messages: list[Message] | None = None,
        on_update: Callable[[TurnState], None] | None = None,
    ) -> None:
        self._client = client
        self.chat_id = chat_id
        self.messages: list[Message] = list(messages or [])
        self.state = TurnState()
        self.on_update = on_update

    def _local_message(self, prefix: str, role: MessageRole, content: str) -> Message:
        return Message(
            id=f"{prefix}_{uuid.uuid4().hex}",
            chat_id=self.chat_id,
            role=role,
            content=content,
            created_at=int(time.time() * 1000),
        )

    def _publish(self) -> None:
        if self.on_update is not None:
            self.on_update(self.state)

    async def send(self, text: str) -> Message | None:
        """Run one turn. Returns the assistant message, or None when the turn failed."""
        text = text.strip()
        if not text:
            return None
        if self.state.in_progress:
            raise TurnInProgressError("Wait for the current response to finish")

        self.state.response = ""
        self.state.current_tool = None
        self.state.error = None
        self.state.in_progress = True

        history = [MessageEnvelope(role=m.role, content=m.content) for m in self.messages]
        optimistic = self._local_message("temp", "user", text)
        self.messages.append(optimistic)
        self._publish()

        async def commit(content: str) -> None:
            await self._client.store_message(self.chat_id, content, "assistant")

        consumer = ChatStreamConsumer(commit, state=self.state, on_update=self.on_update)
        try:
            stream = self._client.stream_chat(history, text, self.chat_id)
            async with aclosing(stream):
                final = await consumer.consume(stream)
        except (ChatApiError, StreamError, httpx.HTTPError) as exc:
            logger.warning("Turn failed in chat %s: %s", self.chat_id, exc)
            self.messages = [m for m in self.messages if m.id != optimistic.id]
            self.state.error = format_turn_error(exc)
            self.state.response = ""
            return None
        finally:
            self.state.in_progress = False
            self.state.current_tool = None
            self._publish()

        assistant = self._local_message("temp_assistant", "assistant", final)
        self.messages.append(assistant)
        self._publish()
        return assistant


__all__ = [
    "ActiveTool",
    "ChatApiClient",
    "ChatApiError",
    "ChatSession",
    "ChatStreamConsumer",
    "StreamError",
    "TurnInProgressError",
    "TurnState",
    "format_turn_error",
    "tool_completion_note",
]
