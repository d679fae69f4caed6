"""Typed data events for an optional UI stream channel."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

LOGGER = logging.getLogger(__name__)

StreamSink = Callable[[Dict[str, Any]], Any]


class DataStreamWriter:
    """Write ``{"type": ..., "data": ...}`` events to a sink.

    A writer without a sink accepts every call and drops the event, so
    callers never need to check whether a UI is attached.
    """

    def __init__(self, sink: Optional[StreamSink] = None):
        self.sink = sink

    @property
    def attached(self) -> bool:
        return self.sink is not None

    def write(self, event_type: str, data: Dict[str, Any], transient: bool = False) -> None:
        if self.sink is None:
            return
        event = {"type": event_type, "data": data}
        if transient:
            event["transient"] = True
        try:
            self.sink(event)
        except Exception as e:
            # Sink failures are logged, never raised into the run.
            LOGGER.warning(f"Stream sink rejected {event_type} event: {e}")

    def status(self, message: str, step: Optional[int] = None) -> None:
        self.write("status", {"message": message, "step": step}, transient=True)

    def notification(self, message: str, level: str = "info") -> None:
        self.write("notification", {"message": message, "level": level}, transient=True)

    def task_update(self, task_id: str, status: str, title: str) -> None:
        self.write("task_update", {"id": task_id, "status": status, "title": title})

    def summarization(
        self,
        stage: str,
        message_count: int,
        keeping_count: int,
        error: Optional[str] = None,
    ) -> None:
        data = {"stage": stage, "messageCount": message_count, "keepingCount": keeping_count}
        if error:
            data["error"] = error
        self.write("summarization", data)

    def delegation(self, agent_name: str, task: str, status: str, result: Optional[str] = None) -> None:
        data = {"agentName": agent_name, "task": task, "status": status}
        if result is not None:
            data["result"] = result
        self.write("delegation", data)
