from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from langchain_core.tools import tool

from ..envelopes import TOOL_ERROR_MARKER


@tool
def get_current_time(tz: str = "UTC") -> str:
    """Return the current date and time as an ISO8601 timestamp.

    Args:
        tz: IANA time zone name such as "Europe/Paris"; defaults to UTC.
    """

    name = (tz or "UTC").strip()
    if name.upper() in ("UTC", "Z", "GMT"):
        return datetime.now(timezone.utc).isoformat()
    try:
        zone = ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return f"{TOOL_ERROR_MARKER} Unknown time zone '{name}'. Use an IANA name like 'America/New_York'."
    return datetime.now(zone).isoformat()
