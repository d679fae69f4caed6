"""Middleware: pluggable capability modules for the orchestration loop."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from langchain_core.tools import BaseTool

from vibesAgent.utils.stream_writer import DataStreamWriter

if TYPE_CHECKING:
    from vibesAgent.graph.state import StepInfo
    from vibesAgent.persistence.state import AgentState


class Middleware:
    """Base class whose hooks all default to no-ops.

    Subclasses override only what they need. Agents call hooks in the order
    the middleware was registered.

    ``inheritable`` is False for modules whose tools are bound to the
    session that created them; sub-agents never receive those tools.
    """

    name: str = "middleware"
    inheritable: bool = True

    def __init__(self):
        self.writer: DataStreamWriter = DataStreamWriter()

    @property
    def tools(self) -> Dict[str, BaseTool]:
        return {}

    async def wait_ready(self) -> None:
        return None

    def on_attach(self, agent: Any) -> None:
        """Called once when the middleware is added to an agent."""
        return None

    def modify_system_prompt(self, prompt: str) -> str:
        return prompt

    async def before_model(self, state: "AgentState") -> None:
        return None

    async def after_model(self, state: "AgentState", result: Any) -> None:
        return None

    def on_step_finish(self, step: "StepInfo") -> None:
        return None

    def on_input_available(self, tool_name: str, args: Dict[str, Any]) -> None:
        return None

    def on_stream_ready(self, writer: Optional[DataStreamWriter]) -> None:
        self.writer = writer or DataStreamWriter()

    async def on_stream_finish(self, result: Any) -> None:
        return None
