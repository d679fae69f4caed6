"""
Unit tests for the recent-errors log.
"""

import json

from langchain_core.messages import AIMessage, ToolMessage

from vibesAgent.context.error_log import RECENT_ERRORS_HEADER, ErrorLog, is_error_message


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestErrorLog:
    """Tests for deduplication, retention and prompt formatting."""

    def test_repeat_within_window_is_counted(self):
        clock = FakeClock()
        log = ErrorLog(clock=clock)

        log.record("read", "file not found")
        clock.now = 30.0
        log.record("read", "file not found")

        assert len(log.entries) == 1
        assert log.entries[0].occurrences == 2

    def test_repeat_after_window_is_new_entry(self):
        clock = FakeClock()
        log = ErrorLog(clock=clock)

        log.record("read", "file not found")
        clock.now = 61.0
        log.record("read", "file not found")

        assert len(log.entries) == 2

    def test_only_latest_entries_are_kept(self):
        log = ErrorLog(max_entries=3)

        for i in range(5):
            log.record("run", f"error {i}")

        assert [e.error for e in log.entries] == ["error 2", "error 3", "error 4"]

    def test_recent_orders_by_frequency_then_recency(self):
        clock = FakeClock()
        log = ErrorLog(clock=clock)
        log.record("a", "first")
        clock.now = 1.0
        log.record("b", "second")
        clock.now = 2.0
        log.record("a", "first")

        assert [e.tool_name for e in log.recent()] == ["a", "b"]

    def test_format_recent(self):
        clock = FakeClock()
        log = ErrorLog(clock=clock)
        log.record("write", "disk full", context="Tool result")
        log.record("write", "disk full", context="Tool result")

        section = log.format_recent()

        assert section.startswith(RECENT_ERRORS_HEADER)
        assert "### write (x2)" in section
        assert "```\ndisk full\n```" in section
        assert "**Context**: Tool result" in section
        assert section.endswith("---")

    def test_decorate(self):
        log = ErrorLog()

        assert log.decorate("You are helpful.") == "You are helpful."
        log.record(None, "boom")
        decorated = log.decorate("You are helpful.")
        assert decorated.startswith("You are helpful.\n\n" + RECENT_ERRORS_HEADER)
        assert "### Unknown" in decorated

    def test_message_recorded_once_per_call(self):
        log = ErrorLog()
        message = ToolMessage(content="Error: boom", tool_call_id="c1", name="run", status="error")

        assert log.record_message(message)
        assert not log.record_message(message)
        assert log.entries[0].occurrences == 1

    def test_clear(self):
        log = ErrorLog()
        log.record("run", "boom")

        log.clear()

        assert log.entries == []
        assert log.format_recent() == ""


class TestIsErrorMessage:
    def test_error_status(self):
        assert is_error_message(ToolMessage(content="Error: x", tool_call_id="c1", status="error"))

    def test_failed_payload(self):
        content = json.dumps({"success": False, "error": "Tool call rejected"})

        assert is_error_message(ToolMessage(content=content, tool_call_id="c1"))

    def test_successful_results(self):
        assert not is_error_message(ToolMessage(content='{"success": true}', tool_call_id="c1"))
        assert not is_error_message(ToolMessage(content="{not json", tool_call_id="c1"))
        assert not is_error_message(AIMessage(content="Error: not a tool result"))
