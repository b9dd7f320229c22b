"""Tool registry for the chat agent."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Dict

from langchain_core.tools import BaseTool

from .books_tool import search_books
from .time_tool import get_current_time
from .transcript_tool import get_video_transcript
from .web_search_tool import search_web


def get_registered_tools() -> Sequence[BaseTool]:
    """Return all tools available to the agent."""

    return (
        search_web,
        search_books,
        get_video_transcript,
        get_current_time,
    )


def get_tools_by_name() -> Dict[str, BaseTool]:
    """Convenience mapping for tool lookup by name."""

    return {tool.name: tool for tool in get_registered_tools()}


__all__ = [
    "get_registered_tools",
    "get_tools_by_name",
]
