"""Tests for the time tool."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from chat_server.envelopes import TOOL_ERROR_MARKER
from chat_server.tools.time_tool import get_current_time


class TestGetCurrentTime:
    """Tests for get_current_time tool."""

    def test_defaults_to_utc(self):
        """Without arguments the timestamp should be in UTC."""
        parsed = datetime.fromisoformat(get_current_time.invoke({}))

        assert parsed.utcoffset() == timedelta(0)

    def test_returns_recent_time(self):
        before = datetime.now(timezone.utc)
        parsed = datetime.fromisoformat(get_current_time.invoke({}))
        after = datetime.now(timezone.utc)

        assert before <= parsed <= after

    @pytest.mark.parametrize("alias", ["utc", "Z", " GMT "])
    def test_utc_aliases(self, alias):
        parsed = datetime.fromisoformat(get_current_time.invoke({"tz": alias}))
        assert parsed.utcoffset() == timedelta(0)

    def test_named_zone(self):
        """A fixed-offset zone should carry its offset."""
        parsed = datetime.fromisoformat(get_current_time.invoke({"tz": "Asia/Kolkata"}))
        assert parsed.utcoffset() == timedelta(hours=5, minutes=30)

    def test_unknown_zone(self):
        result = get_current_time.invoke({"tz": "Mars/Olympus_Mons"})

        assert result.startswith(TOOL_ERROR_MARKER)
        assert "Mars/Olympus_Mons" in result
