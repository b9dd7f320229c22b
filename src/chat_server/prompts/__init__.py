"""System prompt for the chat agent.

The prompt is assembled from the ``.txt`` sections in this directory, in
``PROMPT_SECTION_ORDER``, followed by a line with today's date. A non-empty
SYSTEM_PROMPT setting replaces the sections entirely.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

PROMPT_SECTION_ORDER = ("base", "tools", "formatting")

_PROMPTS_DIR = Path(__file__).resolve().parent


@lru_cache
def load_section(name: str) -> str:
    path = _PROMPTS_DIR / f"{name}.txt"
    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        logger.warning("Prompt section not found: %s", path)
    except OSError as exc:
        logger.warning("Failed to read prompt section %s: %s", name, exc)
    return ""


def build_system_prompt(sections: tuple[str, ...] = PROMPT_SECTION_ORDER) -> str:
    """Join the non-empty sections with blank lines."""
    return "\n\n".join(text for text in map(load_section, sections) if text)


def get_system_prompt(override: str | None = None, today: date | None = None) -> str:
    base = override.strip() if override and override.strip() else build_system_prompt()
    today = today or datetime.now(timezone.utc).date()
    return f"{base}\n\nToday's date (UTC) is {today.isoformat()}."


__all__ = [
    "PROMPT_SECTION_ORDER",
    "build_system_prompt",
    "get_system_prompt",
    "load_section",
]
