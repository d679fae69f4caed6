"""Factory for assembling the LangGraph state machine of one agent run."""

from __future__ import annotations

import logging

from langgraph.graph import END, START, StateGraph

from vibesAgent.graph.nodes import build_agent_node, build_tools_node
from vibesAgent.graph.routing import agent_route, tools_route
from vibesAgent.graph.state import LoopContext, LoopState

LOGGER = logging.getLogger(__name__)


def build_loop_graph(ctx: LoopContext):
    """Compose the step-bounded agent loop.

        START → agent ⇄ tools → END
                  ↓
                 END

    The agent node calls the model; the tools node runs the requested calls
    and counts toward the step budget checked in ``tools_route``.
    """
    graph = StateGraph(LoopState)
    graph.add_node("agent", build_agent_node(ctx))
    graph.add_node("tools", build_tools_node(ctx))

    graph.add_edge(START, "agent")
    graph.add_conditional_edges("agent", agent_route, {"tools": "tools", END: END})
    graph.add_conditional_edges("tools", tools_route, {"agent": "agent", END: END})

    LOGGER.debug(f"Built loop graph with {len(ctx.tools)} tool(s)")
    return graph.compile()


def recursion_limit_for(max_steps: int) -> int:
    """LangGraph super-step limit that never cuts a run short of ``max_steps``."""
    return max_steps * 2 + 5
