"""Shared utilities."""

from .error_handler import (
    AgentAborted,
    DelegationError,
    ModelInvocationError,
    SubAgentNotFoundError,
    SummarizationError,
    VibesAgentError,
    with_error_boundary,
)
from .result import Err, Ok, Result, not_found

__all__ = [
    "AgentAborted",
    "DelegationError",
    "Err",
    "ModelInvocationError",
    "Ok",
    "Result",
    "SubAgentNotFoundError",
    "SummarizationError",
    "VibesAgentError",
    "not_found",
    "with_error_boundary",
]
