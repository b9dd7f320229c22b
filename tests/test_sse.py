"""Tests for envelope framing and the incremental SSE parser."""

from __future__ import annotations

import json

import pytest

from chat_server.envelopes import (
    Connected,
    Done,
    Error,
    Token,
    ToolEnd,
    ToolStart,
    envelope_adapter,
    is_terminal,
)
from chat_server.sse import PARSE_ERROR_MESSAGE, SSEParser, encode_envelope
from tests.helpers import decode_body, split_every


class TestEncodeEnvelope:
    """Tests for encode_envelope."""

    def test_done_is_sentinel(self):
        """Done should be the literal [DONE] frame, not JSON."""
        assert encode_envelope(Done()) == b"data: [DONE]\n\n"

    def test_connected_frame(self):
        assert encode_envelope(Connected()) == b'data: {"type":"connected"}\n\n'

    def test_token_uses_wire_key(self):
        """Token text should be carried under the 'token' key."""
        assert encode_envelope(Token(text="Hi")) == b'data: {"type":"token","token":"Hi"}\n\n'

    def test_tool_start_frame(self):
        frame = encode_envelope(ToolStart(name="search_web", input={"query": "weather"}))

        assert frame.startswith(b"data: ")
        assert frame.endswith(b"\n\n")
        payload = json.loads(frame[len(b"data: "):-2])
        assert payload == {"type": "tool_start", "tool": "search_web", "input": {"query": "weather"}}

    def test_error_frame(self):
        frame = encode_envelope(Error(message="model unavailable"))
        assert frame == b'data: {"type":"error","error":"model unavailable"}\n\n'

    def test_non_ascii_is_utf8(self):
        """Non-ASCII text should be written as raw UTF-8, not \\u escapes."""
        frame = encode_envelope(Token(text="héllo 👋"))
        assert "héllo 👋".encode("utf-8") in frame

    def test_unserializable_tool_output_is_stringified(self):
        class Opaque:
            def __str__(self):
                return "opaque-value"

        frame = encode_envelope(ToolEnd(name="tool", output={"value": Opaque()}))
        assert b"opaque-value" in frame


class TestEnvelopeModels:
    """Tests for the envelope union."""

    def test_validates_by_wire_key(self):
        envelope = envelope_adapter.validate_python({"type": "token", "token": "abc"})
        assert envelope == Token(text="abc")

    def test_terminal_envelopes(self):
        assert is_terminal(Done())
        assert is_terminal(Error(message="x"))
        assert not is_terminal(Token(text="x"))
        assert not is_terminal(Connected())


class TestSSEParser:
    """Tests for SSEParser."""

    def _stream(self) -> bytes:
        return b"".join(
            [
                encode_envelope(Connected()),
                encode_envelope(Token(text="Hi ")),
                encode_envelope(Token(text="wörld 🌍")),
                encode_envelope(ToolStart(name="search_books", input={"query": "dune"})),
                encode_envelope(ToolEnd(name="search_books", output="done")),
                encode_envelope(Done()),
            ]
        )

    def test_decodes_whole_stream(self):
        envelopes = decode_body(self._stream())

        assert envelopes == [
            Connected(),
            Token(text="Hi "),
            Token(text="wörld 🌍"),
            ToolStart(name="search_books", input={"query": "dune"}),
            ToolEnd(name="search_books", output="done"),
            Done(),
        ]

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 64])
    def test_chunk_boundaries_do_not_matter(self, size):
        """Splitting anywhere, including inside multi-byte characters, yields the same envelopes."""
        expected = decode_body(self._stream())
        parser = SSEParser()

        envelopes = []
        for chunk in split_every(self._stream(), size):
            envelopes.extend(parser.parse(chunk))
        envelopes.extend(parser.flush())

        assert envelopes == expected

    def test_incomplete_frame_is_held_back(self):
        parser = SSEParser()

        assert parser.parse(b'data: {"type":"tok') == []
        assert parser.parse(b'en","token":"a"}\n') == []
        assert parser.parse(b"\n") == [Token(text="a")]

    def test_accepts_str_chunks(self):
        parser = SSEParser()
        assert parser.parse('data: {"type":"token","token":"x"}\n\ndata: [DONE]\n\n') == [Token(text="x"), Done()]

    def test_malformed_json_becomes_error_and_parsing_continues(self):
        body = b'data: {not json}\n\ndata: {"type":"token","token":"ok"}\n\n'

        envelopes = decode_body(body)

        assert envelopes == [Error(message=PARSE_ERROR_MESSAGE), Token(text="ok")]

    def test_invalid_fields_become_error(self):
        """A known type with missing fields should be reported, not raised."""
        envelopes = decode_body(b'data: {"type":"token"}\n\n')
        assert envelopes == [Error(message=PARSE_ERROR_MESSAGE)]

    def test_unknown_type_is_dropped(self):
        body = b'data: {"type":"heartbeat"}\n\ndata: {"type":"token","token":"a"}\n\n'
        assert decode_body(body) == [Token(text="a")]

    def test_non_data_lines_are_ignored(self):
        body = b": keep-alive\n\nevent: ping\n\ndata: [DONE]\n\n"
        assert decode_body(body) == [Done()]

    def test_flush_decodes_trailing_frame(self):
        parser = SSEParser()

        assert parser.parse(b"data: [DONE]") == []
        assert parser.flush() == [Done()]

    def test_flush_on_empty_buffer(self):
        parser = SSEParser()
        parser.parse(encode_envelope(Connected()))
        assert parser.flush() == []

    def test_error_envelope_round_trips_message(self):
        envelopes = decode_body(encode_envelope(Error(message="boom")))
        assert envelopes == [Error(message="boom")]
