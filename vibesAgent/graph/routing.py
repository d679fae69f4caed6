"""Conditional routing for the agent/tools loop."""

from __future__ import annotations

import logging
from typing import Literal

from langgraph.graph import END

from vibesAgent.utils.logging_utils import log_routing_decision

from .message_utils import tool_calls_of
from .state import LoopState

LOGGER = logging.getLogger(__name__)


def agent_route(state: LoopState) -> Literal["tools", "__end__"]:
    """Execute requested tool calls, or finish when the model gave a final answer."""
    messages = state.get("messages", [])
    if messages and tool_calls_of(messages[-1]):
        decision = "tools"
        reason = f"LLM requested {len(tool_calls_of(messages[-1]))} tool call(s)"
    else:
        decision = END
        reason = "No tool calls, LLM decided to finish"
    log_routing_decision(LOGGER, "agent", decision, reason)
    return decision


def tools_route(state: LoopState) -> Literal["agent", "__end__"]:
    """Return to the model unless the step budget is spent."""
    steps = state.get("steps", 0)
    max_steps = state.get("max_steps", 20)
    if steps >= max_steps:
        decision = END
        reason = f"Step budget reached ({steps}/{max_steps})"
    else:
        decision = "agent"
        reason = f"Step {steps}/{max_steps} done"
    log_routing_decision(LOGGER, "tools", decision, reason)
    return decision
