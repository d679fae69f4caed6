"""Capability modules contributing tools, prompt text and lifecycle hooks."""

from .base import Middleware
from .subagent import DelegationCache, DelegationOutcome, SubAgent, SubAgentMiddleware
from .tasks import TasksMiddleware

__all__ = [
    "DelegationCache",
    "DelegationOutcome",
    "Middleware",
    "SubAgent",
    "SubAgentMiddleware",
    "TasksMiddleware",
]
