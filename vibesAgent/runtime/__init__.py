"""Agent runtime."""

from .agent import DEFAULT_INSTRUCTIONS, AgentConfig, AgentRunResult, VibeAgent, as_model_capability
from .app import create_agent

__all__ = [
    "AgentConfig",
    "AgentRunResult",
    "DEFAULT_INSTRUCTIONS",
    "VibeAgent",
    "as_model_capability",
    "create_agent",
]
