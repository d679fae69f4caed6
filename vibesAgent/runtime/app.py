"""Runtime assembly of a task-aware agent with optional sub-agents."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from vibesAgent.middleware import Middleware, SubAgent, SubAgentMiddleware, TasksMiddleware
from vibesAgent.persistence.backend import StateBackend
from vibesAgent.persistence.results import FileResultStore

from .agent import AgentConfig, VibeAgent, as_model_capability

LOGGER = logging.getLogger(__name__)


def create_agent(
    model: Any,
    backend: StateBackend,
    *,
    sub_agents: Optional[Iterable[SubAgent]] = None,
    result_store=None,
    middleware: Optional[List[Middleware]] = None,
    with_tasks: bool = True,
    **config_kwargs,
) -> VibeAgent:
    """Build a VibeAgent wired with the tasks and sub-agent middleware.

    Args:
        model: LangChain chat model or any object providing ``generate``
        backend: Session store the agent reads and writes
        sub_agents: Specialists reachable through ``delegate``
        result_store: Where delegated output is written (default: FileResultStore)
        middleware: Extra middleware appended after the built-in ones
        with_tasks: Register the task graph tools
        **config_kwargs: Remaining AgentConfig fields
    """
    capability = as_model_capability(model)
    stack: List[Middleware] = []
    if with_tasks:
        stack.append(TasksMiddleware(backend, model=capability))

    agent = VibeAgent(AgentConfig(model=capability, middleware=stack, **config_kwargs), backend)

    sub_agents = list(sub_agents or [])
    if sub_agents:
        # Attaching binds the parent's tools and caps the child budget below the parent's.
        agent.add_middleware(SubAgentMiddleware(
            sub_agents,
            model=capability,
            result_store=result_store or FileResultStore(),
        ))
    if middleware:
        agent.add_middleware(middleware)

    LOGGER.info(
        f"Agent ready for session {backend.session_id}: "
        f"{len(agent.middleware)} middleware, {len(sub_agents)} sub-agent(s)"
    )
    return agent
