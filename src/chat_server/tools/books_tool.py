from __future__ import annotations

import logging

import httpx
from langchain_core.tools import tool

from ..config import get_settings
from ..envelopes import TOOL_ERROR_MARKER

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"


def _summarize_volume(item: dict) -> dict:
    info = item.get("volumeInfo") or {}
    description = info.get("description") or ""
    if len(description) > 500:
        description = description[:500].rstrip() + "..."
    return {
        "title": info.get("title", "Untitled"),
        "authors": info.get("authors", []),
        "published_date": info.get("publishedDate"),
        "description": description,
        "link": info.get("infoLink") or info.get("canonicalVolumeLink"),
    }


@tool
def search_books(query: str, max_results: int = 5) -> dict | str:
    """Search Google Books for titles, authors or subjects.

    Use this when the user asks for book recommendations, who wrote a book,
    or what a book is about.

    Args:
        query: Free text such as a title, an author name or a topic.
        max_results: Number of volumes to return (1-20).
    """

    if not query or not query.strip():
        return f"{TOOL_ERROR_MARKER} A search query is required."

    settings = get_settings()
    params: dict[str, str | int] = {
        "q": query.strip(),
        "maxResults": max(1, min(max_results, 20)),
        "printType": "books",
    }
    if settings.google_books_api_key:
        params["key"] = settings.google_books_api_key

    try:
        response = httpx.get(GOOGLE_BOOKS_URL, params=params, timeout=settings.tool_http_timeout)
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPError as exc:
        logger.warning("Google Books request failed: %s", exc)
        return f"{TOOL_ERROR_MARKER} Could not reach Google Books: {exc}"
    except ValueError as exc:
        return f"{TOOL_ERROR_MARKER} Invalid response from Google Books: {exc}"

    items = payload.get("items") or []
    return {
        "query": query,
        "total": payload.get("totalItems", len(items)),
        "books": [_summarize_volume(item) for item in items],
    }
