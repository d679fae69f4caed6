"""State definitions for one run of the orchestration loop."""

from __future__ import annotations

import asyncio
import operator
from dataclasses import dataclass, field
from typing import Any, Annotated, Callable, Dict, List, Optional, TypedDict

from langchain_core.messages import BaseMessage, ToolMessage
from langchain_core.tools import BaseTool
from langgraph.graph import add_messages

from vibesAgent.models.capability import add_usage
from vibesAgent.utils.stream_writer import DataStreamWriter


@dataclass
class ToolError:
    """A tool call that ended in an error during the run."""

    tool_name: str
    tool_call_id: str
    error: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StepInfo:
    """Summary of one finished step, passed to step-finish hooks."""

    step_number: int
    text: str
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    tool_results: List[ToolMessage] = field(default_factory=list)
    finish_reason: str = "stop"  # stop | tool-calls
    usage: Dict[str, int] = field(default_factory=dict)


class LoopState(TypedDict, total=False):
    """Graph state of a single invocation.

    ``messages`` is the working conversation; ``new_messages`` collects only
    what this invocation produced so it can be appended to the session.
    ``model_error`` is set when a model call failed and ended the run.
    """

    messages: Annotated[List[BaseMessage], add_messages]
    new_messages: Annotated[List[BaseMessage], operator.add]
    tool_errors: Annotated[List[ToolError], operator.add]
    usage: Annotated[Dict[str, int], add_usage]
    steps: int
    max_steps: int
    model_error: Optional[str]


@dataclass
class LoopContext:
    """Collaborators the loop nodes share for one invocation."""

    model: Any
    system_prompt: str
    tools: Dict[str, BaseTool]
    compressor: Any
    approval_policy: Any
    approval_handler: Optional[Callable] = None
    middleware: List[Any] = field(default_factory=list)
    step_callbacks: List[Callable[[StepInfo], Any]] = field(default_factory=list)
    writer: DataStreamWriter = field(default_factory=DataStreamWriter)
    abort_event: Optional[asyncio.Event] = None
    stream_text: bool = False
