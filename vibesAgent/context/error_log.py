"""Recent tool errors kept outside the conversation and shown in the system prompt."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from langchain_core.messages import BaseMessage, ToolMessage

from vibesAgent.graph.message_utils import message_text

LOGGER = logging.getLogger(__name__)

RECENT_ERRORS_HEADER = "## Recent Errors (Do NOT Repeat These)"


@dataclass
class ErrorEntry:
    tool_name: Optional[str]
    error: str
    context: Optional[str] = None
    occurrences: int = 1
    last_seen: float = 0.0


def is_error_message(message: BaseMessage) -> bool:
    """Tool results that report a failure, either by status or a ``success: false`` payload."""
    if not isinstance(message, ToolMessage):
        return False
    if getattr(message, "status", None) == "error":
        return True
    text = message_text(message)
    if not text.startswith("{"):
        return False
    try:
        payload = json.loads(text)
    except ValueError:
        return False
    return isinstance(payload, dict) and payload.get("success") is False


class ErrorLog:
    """Deduplicated log of recent errors.

    The same (tool, error) pair seen again within ``dedupe_window`` seconds
    bumps the occurrence count instead of adding an entry. Only the last
    ``max_entries`` entries are kept.
    """

    def __init__(
        self,
        max_entries: int = 20,
        max_recent: int = 5,
        dedupe_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.max_recent = max_recent
        self.dedupe_window = dedupe_window
        self.clock = clock
        self.entries: List[ErrorEntry] = []
        self._seen_calls = set()

    def record(self, tool_name: Optional[str], error: str, context: Optional[str] = None) -> ErrorEntry:
        now = self.clock()
        for entry in self.entries:
            if entry.tool_name == tool_name and entry.error == error and now - entry.last_seen < self.dedupe_window:
                entry.occurrences += 1
                entry.last_seen = now
                return entry

        entry = ErrorEntry(tool_name=tool_name, error=error, context=context, last_seen=now)
        self.entries.append(entry)
        self.entries = self.entries[-self.max_entries:]
        LOGGER.debug(f"Error logged for {tool_name or 'unknown'}: {error[:200]}")
        return entry

    def record_message(self, message: ToolMessage, context: Optional[str] = None) -> bool:
        """Record an error tool result once per tool call id."""
        key = message.tool_call_id or message.id
        if key and key in self._seen_calls:
            return False
        if key:
            self._seen_calls.add(key)
        self.record(message.name, message_text(message), context)
        return True

    def recent(self) -> List[ErrorEntry]:
        """Most recent entries, most frequent first, then newest first."""
        window = self.entries[-self.max_recent:] if self.max_recent > 0 else []
        return sorted(window, key=lambda e: (-e.occurrences, -e.last_seen))

    def format_recent(self) -> str:
        errors = self.recent()
        if not errors:
            return ""
        lines = [
            RECENT_ERRORS_HEADER,
            "",
            "The following errors occurred recently. Learn from them and avoid making the same mistakes.",
            "",
        ]
        for entry in errors:
            count = f" (x{entry.occurrences})" if entry.occurrences > 1 else ""
            lines.append(f"### {entry.tool_name or 'Unknown'}{count}")
            lines.append(f"```\n{entry.error}\n```")
            if entry.context:
                lines.append(f"**Context**: {entry.context}")
            lines.append("")
        lines.append("---")
        return "\n".join(lines)

    def decorate(self, system_prompt: str) -> str:
        """Append the recent-errors section to ``system_prompt`` when there is one."""
        section = self.format_recent()
        return f"{system_prompt}\n\n{section}" if section else system_prompt

    def clear(self) -> None:
        self.entries.clear()
        self._seen_calls.clear()
