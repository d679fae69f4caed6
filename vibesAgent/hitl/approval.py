"""Tool approval policy.

A policy is built from either a list of tool names (those tools always need
approval) or a mapping from tool name to a boolean or a predicate that is
evaluated against the call arguments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Union

import yaml

from vibesAgent.utils.async_utils import maybe_await

LOGGER = logging.getLogger(__name__)

ApprovalPredicate = Callable[[dict], Union[bool, Awaitable[bool]]]
ApprovalRule = Union[bool, ApprovalPredicate]
ApprovalConfig = Union[Sequence[str], Mapping[str, ApprovalRule]]


@dataclass
class ApprovalDecision:
    """Whether a tool call has to be confirmed before it runs."""

    needs_approval: bool
    reason: str = ""


@dataclass
class ApprovalRequest:
    """Handed to the approval handler for one pending tool call."""

    tool_name: str
    args: Dict[str, Any]
    tool_call_id: str
    reason: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


ApprovalHandler = Callable[[ApprovalRequest], Union[bool, Awaitable[bool]]]


class ApprovalPolicy:
    """Resolve the approval requirement of each tool call."""

    def __init__(self, config: Optional[ApprovalConfig] = None):
        self.rules: Dict[str, ApprovalRule] = {}
        if config is None:
            return
        if isinstance(config, Mapping):
            for name, rule in config.items():
                self.register(name, rule)
        elif isinstance(config, str):
            raise TypeError("approval config must be a list of names or a mapping, not a string")
        else:
            for name in config:
                self.rules[name] = True

    @classmethod
    def from_yaml(cls, path: Union[Path, str]) -> "ApprovalPolicy":
        """Load ``require_approval`` names and ``tools`` boolean rules from YAML."""
        config_path = Path(path)
        if not config_path.exists():
            LOGGER.warning(f"Approval rules file not found: {config_path}")
            return cls()
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        policy = cls(list(data.get("require_approval") or []))
        for name, rule in (data.get("tools") or {}).items():
            if not isinstance(rule, bool):
                raise ValueError(f"Approval rule for {name} must be true or false in {config_path}")
            policy.register(name, rule)
        LOGGER.info(f"Loaded {len(policy.rules)} approval rule(s) from {config_path}")
        return policy

    def register(self, tool_name: str, rule: ApprovalRule) -> None:
        if not isinstance(rule, bool) and not callable(rule):
            raise TypeError(f"Approval rule for {tool_name} must be a bool or a callable")
        self.rules[tool_name] = rule

    def merge(self, other: Optional["ApprovalPolicy"]) -> "ApprovalPolicy":
        """Return a policy with ``other``'s rules layered over this one."""
        merged = ApprovalPolicy()
        merged.rules = {**self.rules, **(other.rules if other else {})}
        return merged

    def has_rule(self, tool_name: str) -> bool:
        return tool_name in self.rules

    async def check(self, tool_name: str, args: dict) -> ApprovalDecision:
        rule = self.rules.get(tool_name)
        if rule is None or rule is False:
            return ApprovalDecision(needs_approval=False)
        if rule is True:
            return ApprovalDecision(needs_approval=True, reason=f"{tool_name} always requires approval")
        needed = bool(await maybe_await(rule(args)))
        return ApprovalDecision(
            needs_approval=needed,
            reason=f"{tool_name} arguments matched its approval rule" if needed else "",
        )


async def ask_for_approval(handler: Optional[ApprovalHandler], request: ApprovalRequest) -> bool:
    """Ask ``handler`` to confirm a call; without a handler the call is denied."""
    if handler is None:
        LOGGER.warning(f"No approval handler configured, denying {request.tool_name}")
        return False
    approved = bool(await maybe_await(handler(request)))
    LOGGER.info(f"Approval for {request.tool_name}: {'granted' if approved else 'denied'}")
    return approved
