"""Relay agent events to a client as an SSE byte stream.

A relay owns one output channel for one request. The channel's read side is
handed to the HTTP response straight away; the relay keeps writing into it
from a background task until the agent finishes or fails, then closes it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import aclosing
from typing import Any, Protocol

from .envelopes import Connected, Done, Envelope, Error, Token, ToolEnd, ToolStart
from .schemas import ChatRequestBody, MessageEnvelope
from .sse import encode_envelope
from .store import ChatStore

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    # Disable nginx response buffering, SSE needs each frame flushed
    "X-Accel-Buffering": "no",
}


class ChannelClosedError(Exception):
    """Raised when writing to a channel whose reader or writer side is closed."""


class EventSource(Protocol):
    def stream_events(
        self, history: list[MessageEnvelope], new_message: str, chat_id: str
    ) -> AsyncIterator[Mapping[str, Any]]:
        ...


class OutputChannel:
    """Bounded in-memory byte pipe between a relay and the HTTP response.

    ``write`` suspends while ``high_water_mark`` frames are waiting, so a slow
    client slows the relay down instead of growing the buffer. ``close`` never
    waits: frames already queued are still delivered, then the reader stops.
    """

    def __init__(self, high_water_mark: int = 1024) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=high_water_mark)
        self._writer_closed = False
        self._reader_gone = False

    @property
    def closed(self) -> bool:
        return self._writer_closed or self._reader_gone

    async def write(self, data: bytes) -> None:
        if self._reader_gone:
            raise ChannelClosedError("client disconnected")
        if self._writer_closed:
            raise ChannelClosedError("channel already closed")
        await self._queue.put(data)

    def close(self) -> None:
        if self._writer_closed:
            return
        self._writer_closed = True
        if self._reader_gone:
            return
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # The reader stops once it has drained the queue
            pass

    async def reader(self, on_open: Callable[[], None] | None = None) -> AsyncIterator[bytes]:
        """Yield queued frames until the writer closes the channel.

        ``on_open`` runs on the first iteration, so a writer started from it
        never runs for a response body that is dropped before being read.
        """
        try:
            if on_open is not None:
                on_open()
            while True:
                if self._writer_closed and self._queue.empty():
                    return
                item = await self._queue.get()
                if item is None:
                    return
                yield item
        finally:
            self._reader_gone = True
            # Unblock a writer waiting on a full queue
            while not self._queue.empty():
                self._queue.get_nowait()


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def extract_token_text(chunk: Any) -> str | None:
    """Pull the text out of a streamed model chunk.

    Accepted shapes, first match wins: ``content`` is a string; ``content`` is
    a list of parts with a ``text`` field; the chunk itself has ``text``.
    """
    if chunk is None:
        return None
    if isinstance(chunk, str):
        return chunk

    content = _field(chunk, "content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [_field(part, "text") for part in content]
        texts = [text for text in texts if isinstance(text, str)]
        if texts:
            return "".join(texts)

    text = _field(chunk, "text")
    if isinstance(text, str):
        return text
    return None


def _tool_output(output: Any) -> Any:
    # ToolNode reports a ToolMessage; the client only needs its content
    if output is not None and not isinstance(output, (str, list, Mapping)):
        content = getattr(output, "content", None)
        if content is not None:
            return _jsonable(content)
    return _jsonable(output)


def envelope_for_event(event: Mapping[str, Any]) -> Envelope | None:
    """Map one agent event to the envelope it produces, if any."""
    kind = event.get("event")
    data = event.get("data") or {}

    if kind == "on_chat_model_stream":
        text = extract_token_text(data.get("chunk"))
        if text:
            return Token(text=text)
        return None

    if kind == "on_tool_start":
        return ToolStart(name=event.get("name") or "tool", input=_jsonable(data.get("input")))

    if kind == "on_tool_end":
        return ToolEnd(name=event.get("name") or "tool", output=_tool_output(data.get("output")))

    return None


class StreamRelay:
    """Run one chat turn and stream its envelopes into ``channel``."""

    def __init__(self, *, store: ChatStore, agent: EventSource, channel: OutputChannel) -> None:
        self._store = store
        self._agent = agent
        self._channel = channel
        self._closed = False
        self.sent: int = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def _send(self, envelope: Envelope) -> None:
        if self._closed:
            return
        try:
            await self._channel.write(encode_envelope(envelope))
        except ChannelClosedError:
            logger.info("Stream closed by client; dropping %s and any later envelopes", envelope.type)
            self._closed = True
            return
        self.sent += 1

    def _close(self) -> None:
        self._closed = True
        self._channel.close()

    async def _persist_user_message(self, chat_id: str, content: str) -> None:
        try:
            await self._store.send_message(chat_id, content)
        except Exception:
            # The turn goes on even if the durable copy is missing
            logger.exception("Failed to persist user message for chat %s", chat_id)

    async def run(self, body: ChatRequestBody) -> None:
        chat_id = body.chat_id
        logger.info("Stream started for chat %s (%d prior messages)", chat_id, len(body.messages))
        try:
            await self._send(Connected())
            await self._persist_user_message(chat_id, body.new_message)

            events = self._agent.stream_events(body.messages, body.new_message, chat_id)
            async with aclosing(events):
                async for event in events:
                    envelope = envelope_for_event(event)
                    if envelope is not None:
                        await self._send(envelope)
                    if self._closed:
                        break

            await self._send(Done())
        except asyncio.CancelledError:
            logger.warning("Stream for chat %s cancelled", chat_id)
            raise
        except Exception as exc:
            logger.exception("Agent failed while streaming chat %s", chat_id)
            await self._send(Error(message=str(exc) or exc.__class__.__name__))
        finally:
            self._close()
            logger.info("Stream finished for chat %s (%d envelopes)", chat_id, self.sent)


__all__ = [
    "ChannelClosedError",
    "OutputChannel",
    "SSE_HEADERS",
    "StreamRelay",
    "envelope_for_event",
    "extract_token_text",
]
