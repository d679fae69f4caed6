"""Graph node builders."""

from .agent import build_agent_node, call_model, finish_step
from .tools import build_tools_node, execute_tool_call

__all__ = [
    "build_agent_node",
    "build_tools_node",
    "call_model",
    "execute_tool_call",
    "finish_step",
]
