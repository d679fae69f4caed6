"""Human-in-the-loop tool approval."""

from .approval import (
    ApprovalConfig,
    ApprovalDecision,
    ApprovalHandler,
    ApprovalPolicy,
    ApprovalRequest,
    ask_for_approval,
)

__all__ = [
    "ApprovalConfig",
    "ApprovalDecision",
    "ApprovalHandler",
    "ApprovalPolicy",
    "ApprovalRequest",
    "ask_for_approval",
]
