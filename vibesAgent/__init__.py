"""vibesAgent: task-graph aware agent orchestration on LangGraph."""

from vibesAgent.runtime import AgentConfig, AgentRunResult, VibeAgent, create_agent

__all__ = ["AgentConfig", "AgentRunResult", "VibeAgent", "create_agent"]
