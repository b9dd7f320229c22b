from __future__ import annotations

import logging

from duckduckgo_search import DDGS
from langchain_core.tools import tool

from ..config import get_settings
from ..envelopes import TOOL_ERROR_MARKER

logger = logging.getLogger(__name__)


@tool
def search_web(query: str) -> dict | str:
    """Search the live web with DuckDuckGo.

    Use this for current events, facts you are unsure about, or anything the
    user wants looked up online. Returns titles, links and short snippets.
    """

    if not query or not query.strip():
        return f"{TOOL_ERROR_MARKER} A search query is required."

    settings = get_settings()
    try:
        with DDGS(timeout=int(settings.tool_http_timeout)) as ddgs:
            hits = list(ddgs.text(query.strip(), max_results=settings.web_search_max_results))
    except Exception as exc:
        logger.warning("Web search failed for %r: %s", query, exc)
        return f"{TOOL_ERROR_MARKER} Web search failed: {exc}"

    results = [
        {
            "title": hit.get("title", "Untitled"),
            "url": hit.get("href", ""),
            "snippet": hit.get("body", ""),
        }
        for hit in hits
        if hit.get("href")
    ]
    return {"query": query, "results": results}
