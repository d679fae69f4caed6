"""Unified error handling for vibesAgent nodes and tools."""

from __future__ import annotations

import functools
import logging
from typing import Callable

from langchain_core.messages import AIMessage

LOGGER = logging.getLogger(__name__)


class VibesAgentError(Exception):
    """Base exception for vibesAgent errors."""

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class ModelInvocationError(VibesAgentError):
    """Error during model invocation."""
    pass


class SummarizationError(VibesAgentError):
    """Context summarization failed."""
    pass


class DelegationError(VibesAgentError):
    """Sub-agent delegation failed."""
    pass


class SubAgentNotFoundError(DelegationError):
    """Delegation named a sub-agent that is not registered."""

    def __init__(self, agent_name: str):
        super().__init__(f"Sub-agent not found: {agent_name}")
        self.agent_name = agent_name


class AgentAborted(VibesAgentError):
    """The caller aborted a running invocation."""
    pass


def with_error_boundary(node_name: str):
    """Decorator to add an error boundary to async graph nodes.

    Model failures end the run with an assistant message instead of an
    exception, and the failure is recorded under ``model_error`` so callers
    can tell the run apart from a normal finish. Aborts always propagate.

    Example:
        @with_error_boundary("agent")
        async def agent_node(state: LoopState) -> dict:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(state):
            try:
                return await func(state)
            except AgentAborted:
                raise
            except ModelInvocationError as e:
                LOGGER.error(f"{node_name} model error: {e}")
                message = AIMessage(content=f"Model call failed: {e.user_message}")
                return {"messages": [message], "new_messages": [message], "model_error": str(e)}

        return async_wrapper

    return decorator
