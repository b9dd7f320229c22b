"""Typed messages exchanged over the chat stream.

Every frame on the wire carries one envelope. All envelopes except ``Done``
are JSON objects tagged by ``type``; ``Done`` is the literal ``[DONE]``
sentinel so clients can detect the end of a stream with a plain string
comparison.

Wire keys keep the names the web client has always read (``token``, ``tool``,
``error``); Python code uses the descriptive attribute names.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

SSE_DATA_PREFIX = "data: "
SSE_DONE_MESSAGE = "[DONE]"
SSE_LINE_DELIMITER = "\n\n"

# Tools prefix failure observations with this marker instead of raising.
TOOL_ERROR_MARKER = "❌ Tool Error:"


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Connected(_Envelope):
    type: Literal["connected"] = "connected"


class Token(_Envelope):
    type: Literal["token"] = "token"
    text: str = Field(alias="token")


class ToolStart(_Envelope):
    type: Literal["tool_start"] = "tool_start"
    name: str = Field(alias="tool")
    input: Any = None


class ToolEnd(_Envelope):
    type: Literal["tool_end"] = "tool_end"
    name: str = Field(alias="tool")
    output: Any = None


class Error(_Envelope):
    type: Literal["error"] = "error"
    message: str = Field(alias="error")


class Done(_Envelope):
    type: Literal["done"] = "done"


Envelope = Annotated[
    Union[Connected, Token, ToolStart, ToolEnd, Error, Done],
    Field(discriminator="type"),
]

ENVELOPE_TYPES = frozenset({"connected", "token", "tool_start", "tool_end", "error", "done"})

envelope_adapter: TypeAdapter[Envelope] = TypeAdapter(Envelope)


def is_terminal(envelope: Envelope) -> bool:
    return isinstance(envelope, (Done, Error))


__all__ = [
    "Connected",
    "Done",
    "ENVELOPE_TYPES",
    "Envelope",
    "Error",
    "SSE_DATA_PREFIX",
    "SSE_DONE_MESSAGE",
    "SSE_LINE_DELIMITER",
    "TOOL_ERROR_MARKER",
    "Token",
    "ToolEnd",
    "ToolStart",
    "envelope_adapter",
    "is_terminal",
]
