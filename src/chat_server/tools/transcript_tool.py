from __future__ import annotations

import logging
import re
from urllib.parse import parse_qs, urlparse

from langchain_core.tools import tool
from youtube_transcript_api import CouldNotRetrieveTranscript, YouTubeTranscriptApi

from ..config import get_settings
from ..envelopes import TOOL_ERROR_MARKER

logger = logging.getLogger(__name__)

_VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")


def parse_video_id(video: str) -> str | None:
    """Extract a YouTube video id from a URL or return a bare id unchanged."""
    candidate = video.strip()
    if _VIDEO_ID_PATTERN.match(candidate):
        return candidate

    parsed = urlparse(candidate if "//" in candidate else f"https://{candidate}")
    host = (parsed.hostname or "").lower()
    if host.endswith("youtu.be"):
        video_id = parsed.path.lstrip("/").split("/")[0]
    elif host.endswith("youtube.com"):
        query_id = parse_qs(parsed.query).get("v", [""])[0]
        if query_id:
            video_id = query_id
        else:
            # /shorts/<id>, /embed/<id>, /live/<id>
            segments = [s for s in parsed.path.split("/") if s]
            video_id = segments[1] if len(segments) >= 2 else ""
    else:
        return None
    return video_id if _VIDEO_ID_PATTERN.match(video_id) else None


@tool
def get_video_transcript(video: str, language: str = "en") -> dict | str:
    """Fetch the transcript of a YouTube video.

    Args:
        video: A YouTube URL (watch, youtu.be, shorts, embed) or an 11-character video id.
        language: Preferred transcript language code; English is used as fallback.
    """

    video_id = parse_video_id(video)
    if not video_id:
        return f"{TOOL_ERROR_MARKER} '{video}' is not a YouTube video URL or id."

    languages = [language] if language == "en" else [language, "en"]
    try:
        fetched = YouTubeTranscriptApi().fetch(video_id, languages=languages)
    except CouldNotRetrieveTranscript as exc:
        logger.info("No transcript for %s: %s", video_id, exc.__class__.__name__)
        return f"{TOOL_ERROR_MARKER} No transcript available for video {video_id}."
    except Exception as exc:
        logger.warning("Transcript request failed for %s: %s", video_id, exc)
        return f"{TOOL_ERROR_MARKER} Could not fetch transcript: {exc}"

    text = " ".join(snippet.text.strip() for snippet in fetched if snippet.text.strip())
    max_chars = get_settings().transcript_max_chars
    truncated = len(text) > max_chars
    return {
        "video_id": video_id,
        "language": getattr(fetched, "language_code", language),
        "transcript": text[:max_chars],
        "truncated": truncated,
    }
