"""Server-Sent Events framing for chat envelopes.

Frames are ``data: <payload>\\n\\n`` where the payload is the envelope's JSON,
or the ``[DONE]`` sentinel. No ``id``, ``event`` or ``retry`` fields are used.
"""

from __future__ import annotations

import codecs
import json
import logging

from pydantic import ValidationError

from .envelopes import (
    ENVELOPE_TYPES,
    SSE_DATA_PREFIX,
    SSE_DONE_MESSAGE,
    SSE_LINE_DELIMITER,
    Done,
    Envelope,
    Error,
    envelope_adapter,
)

logger = logging.getLogger(__name__)

PARSE_ERROR_MESSAGE = "Failed to parse SSE message"


def encode_envelope(envelope: Envelope) -> bytes:
    """Serialize one envelope into its wire frame."""
    if isinstance(envelope, Done):
        payload = SSE_DONE_MESSAGE
    else:
        payload = json.dumps(
            envelope.model_dump(by_alias=True),
            ensure_ascii=False,
            separators=(",", ":"),
            default=str,
        )
    return f"{SSE_DATA_PREFIX}{payload}{SSE_LINE_DELIMITER}".encode("utf-8")


class SSEParser:
    """Incremental decoder for a stream of envelope frames.

    Chunks may split or merge frames anywhere, including inside a multi-byte
    UTF-8 character. ``parse`` never raises: frames that cannot be decoded
    come back as ``Error`` envelopes and parsing continues with the next one.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def parse(self, chunk: str | bytes) -> list[Envelope]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        frames = self._buffer.split(SSE_LINE_DELIMITER)
        # Last fragment is either empty or an incomplete frame
        self._buffer = frames.pop()

        envelopes: list[Envelope] = []
        for frame in frames:
            envelope = self._decode_frame(frame)
            if envelope is not None:
                envelopes.append(envelope)
        return envelopes

    def flush(self) -> list[Envelope]:
        """Decode whatever is left once the underlying stream has ended."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        envelope = self._decode_frame(tail)
        return [envelope] if envelope is not None else []

    def _decode_frame(self, frame: str) -> Envelope | None:
        trimmed = frame.strip()
        if not trimmed or not trimmed.startswith(SSE_DATA_PREFIX):
            return None

        data = trimmed[len(SSE_DATA_PREFIX):]
        if data == SSE_DONE_MESSAGE:
            return Done()

        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Malformed SSE frame: %r", data[:200])
            return Error(message=PARSE_ERROR_MESSAGE)

        if not isinstance(parsed, dict) or parsed.get("type") not in ENVELOPE_TYPES:
            return None

        try:
            return envelope_adapter.validate_python(parsed)
        except ValidationError:
            logger.debug("Invalid %s envelope: %r", parsed.get("type"), data[:200])
            return Error(message=PARSE_ERROR_MESSAGE)


__all__ = ["PARSE_ERROR_MESSAGE", "SSEParser", "encode_envelope"]
