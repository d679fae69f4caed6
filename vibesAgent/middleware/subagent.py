"""Sub-agent delegation: run a task in an isolated child agent and offload its output."""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from langchain_core.messages import HumanMessage
from langchain_core.tools import BaseTool, tool
from pydantic import BaseModel, Field

from vibesAgent.config import get_settings
from vibesAgent.hitl.approval import ApprovalConfig, ApprovalHandler
from vibesAgent.persistence.backend import StateBackend
from vibesAgent.utils.async_utils import maybe_await
from vibesAgent.utils.error_handler import SubAgentNotFoundError
from vibesAgent.utils.result import Err, Ok, Result

from .base import Middleware

LOGGER = logging.getLogger(__name__)

DELEGATE_TOOL_NAME = "delegate"
READ_RESULT_TOOL_NAME = "read_subagent_result"
COMPLETION_TOOL_NAME = "task_completion"

COMPLETION_PROTOCOL = f"""## Task Completion Protocol

You have been assigned a specific task. When you finish, call the `{COMPLETION_TOOL_NAME}` tool
with a short summary of what you did and the files you created or modified.
After calling it your work is complete: do not make further tool calls."""

COMPLETION_REMINDER = f"When you complete this task, you MUST call the {COMPLETION_TOOL_NAME} tool to report your results."

_SUMMARY_BLOCK = re.compile(r"```SUMMARY\n(.+?)```", re.DOTALL)
_FILES_SECTION = re.compile(r"Files:\n(.+?)(?=\n\n|$)", re.DOTALL)
_FILE_PATH = re.compile(r"`([A-Za-z0-9_\-./]+\.[A-Za-z0-9]+)`")


@dataclass
class SubAgent:
    """A named specialist the parent can delegate to.

    ``tools`` is either a list of inherited tool names (an allow-list) or a
    literal name-to-tool map. ``None`` inherits every inheritable parent tool.
    Approval for the child's tool calls comes only from
    ``tools_requiring_approval`` and ``approval_handler``.
    """

    name: str
    description: str
    system_prompt: str
    tools: Union[List[str], Dict[str, BaseTool], None] = None
    blocked_tools: List[str] = field(default_factory=list)
    model: Any = None
    middleware: Optional[List[Middleware]] = None
    tools_requiring_approval: Optional[ApprovalConfig] = None
    approval_handler: Optional[ApprovalHandler] = None


@dataclass
class CompletionReport:
    summary: str
    files: List[str] = field(default_factory=list)


@dataclass
class DelegationOutcome:
    agent_name: str
    summary: str
    path: Optional[str]
    steps: int = 0
    tool_errors: int = 0
    warning: Optional[str] = None
    files: List[str] = field(default_factory=list)
    completion_confirmed: bool = False
    completed_at: str = ""
    cached: bool = False


class DelegateInput(BaseModel):
    agent_name: str = Field(description="Name of the sub-agent to run")
    task: str = Field(description="Self-contained task description; the sub-agent sees nothing else")


class ReadResultInput(BaseModel):
    path: str = Field(description="Location returned by a previous delegation")


class TaskCompletionInput(BaseModel):
    summary: str = Field(description="A brief description of what you accomplished")
    files: List[str] = Field(default_factory=list, description="Files you created or modified, if any")


class DelegationCache:
    """Remember delegation outcomes per (agent, task) for ``ttl`` seconds."""

    def __init__(self, ttl: int, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[Tuple[str, str], Tuple[float, DelegationOutcome]] = {}

    def get(self, agent_name: str, task: str) -> Optional[DelegationOutcome]:
        if self.ttl <= 0:
            return None
        entry = self._entries.get((agent_name, task))
        if entry is None:
            return None
        stored_at, outcome = entry
        if self.clock() - stored_at > self.ttl:
            del self._entries[(agent_name, task)]
            return None
        return outcome

    def put(self, agent_name: str, task: str, outcome: DelegationOutcome) -> None:
        if self.ttl > 0:
            self._entries[(agent_name, task)] = (self.clock(), outcome)

    def clear(self) -> None:
        self._entries.clear()


def build_completion_tool(reports: List[CompletionReport]) -> BaseTool:
    """A ``task_completion`` tool that appends each report to ``reports``."""

    @tool(COMPLETION_TOOL_NAME, args_schema=TaskCompletionInput)
    def task_completion(summary: str, files: Optional[List[str]] = None) -> dict:
        """Formally report that your assigned task is finished.

        You MUST call this when you are done. Give a brief summary of what
        you accomplished and list the files you created or modified.
        """
        reports.append(CompletionReport(summary=summary or "Task completed", files=list(files or [])))
        return {"status": "completed", "message": "Task completion recorded. Your work has been saved."}

    return task_completion


def extract_completion(text: str, reports: List[CompletionReport]) -> Tuple[Optional[str], List[str], bool]:
    """Summary, files and whether completion was reported through the tool.

    Falls back to a SUMMARY code block in the final text, then to file
    paths quoted in backticks with no summary.
    """
    if reports:
        report = reports[-1]
        return report.summary, report.files, True

    block = _SUMMARY_BLOCK.search(text or "")
    if block:
        content = block.group(1)
        files = []
        section = _FILES_SECTION.search(content)
        if section:
            for line in section.group(1).split("\n"):
                entry = re.sub(r"^[-*]\s*", "", line).strip()
                if entry and entry != "none" and not entry.startswith("["):
                    files.append(entry)
        return content.strip(), files, False

    files = []
    for match in _FILE_PATH.findall(text or ""):
        if match not in files:
            files.append(match)
    return None, files, False


def format_result_document(
    agent_name: str,
    task: str,
    text: str,
    timestamp: str,
    summary: str = "",
    files: Iterable[str] = (),
    confirmed: bool = False,
) -> str:
    files = list(files)
    status = "Confirmed (reported via task_completion)" if confirmed else "Inferred from the final output"
    file_lines = "\n".join(f"- `{f}`" for f in files) if files else "No files listed"
    return (
        f"# Sub-agent result: {agent_name}\n\n"
        f"- Completed: {timestamp}\n"
        f"- Completion: {status}\n\n"
        f"## Task\n\n{task}\n\n"
        f"## What Was Done\n\n{summary}\n\n"
        f"## Files Created/Modified\n\n{file_lines}\n\n"
        f"## Result\n\n{text}\n"
    )


class SubAgentMiddleware(Middleware):
    """Expose ``delegate`` so the model can hand work to registered sub-agents.

    The child's step budget is the configured ``max_steps`` capped one below
    the budget of the agent this middleware is attached to.
    """

    name = "subagents"
    inheritable = False

    def __init__(
        self,
        sub_agents: Iterable[SubAgent],
        model: Any,
        result_store,
        parent_tools: Optional[Callable[[], Union[Dict[str, BaseTool], Awaitable[Dict[str, BaseTool]]]]] = None,
        max_steps: Optional[int] = None,
        cache_ttl: Optional[int] = None,
        parent_max_steps: Optional[int] = None,
    ):
        super().__init__()
        settings = get_settings()
        self.sub_agents: Dict[str, SubAgent] = {}
        for sub_agent in sub_agents:
            self.register(sub_agent)
        self.model = model
        self.result_store = result_store
        self.parent_tools = parent_tools
        self.max_steps = max_steps or settings.agent.subagent_max_steps
        self.parent_max_steps = parent_max_steps
        self.results_dir = settings.workspace.results_dir
        ttl = settings.agent.delegation_cache_ttl if cache_ttl is None else cache_ttl
        self.cache = DelegationCache(ttl)
        self._tools = self._build_tools()

    def register(self, sub_agent: SubAgent) -> None:
        self.sub_agents[sub_agent.name] = sub_agent

    def on_attach(self, agent) -> None:
        self.parent_max_steps = agent.max_steps
        if self.parent_tools is None:
            self.parent_tools = agent.get_inheritable_tools

    def child_budget(self) -> int:
        """Steps a child may take; 0 when the parent has none to spare."""
        if self.parent_max_steps is None:
            return self.max_steps
        return max(min(self.max_steps, self.parent_max_steps - 1), 0)

    @property
    def tools(self) -> Dict[str, BaseTool]:
        return dict(self._tools)

    def modify_system_prompt(self, prompt: str) -> str:
        if not self.sub_agents:
            return prompt
        roster = "\n".join(f"- **{s.name}**: {s.description}" for s in self.sub_agents.values())
        return (
            f"{prompt}\n\n## Sub-agents\n\n"
            f"Use `{DELEGATE_TOOL_NAME}` to hand a self-contained task to a specialist. "
            f"It works in isolation and returns a short summary plus the location of its full "
            f"output, which `{READ_RESULT_TOOL_NAME}` can read. "
            f"Repeating a delegation returns the cached result.\n\n{roster}"
        )

    async def _resolve_tools(self, sub_agent: SubAgent) -> Dict[str, BaseTool]:
        if isinstance(sub_agent.tools, dict):
            tools = dict(sub_agent.tools)
        else:
            inherited = await maybe_await(self.parent_tools()) if self.parent_tools else {}
            tools = dict(inherited)
            if sub_agent.tools is not None:
                allowed = set(sub_agent.tools)
                tools = {name: t for name, t in tools.items() if name in allowed}
        for name in [DELEGATE_TOOL_NAME, READ_RESULT_TOOL_NAME, *sub_agent.blocked_tools]:
            tools.pop(name, None)
        return tools

    def _cached(self, agent_name: str, task: str) -> Optional[DelegationOutcome]:
        cached = self.cache.get(agent_name, task)
        if cached is None:
            return None
        note = f"[CACHED] This task was already delegated to {agent_name} at {cached.completed_at}."
        LOGGER.info(f"Reusing cached delegation result for {agent_name}")
        self.writer.status(f"{note} Returning the cached result.")
        return replace(cached, summary=f"{note} {cached.summary}", cached=True)

    async def run_delegation(self, agent_name: str, task: str) -> Result:
        """Run ``task`` on a fresh child agent.

        Returns Ok(DelegationOutcome) or Err with kind ``unknown_agent``,
        ``budget_exhausted`` or ``generation_failed``.
        """
        from vibesAgent.runtime.agent import AgentConfig, VibeAgent

        sub_agent = self.sub_agents.get(agent_name)
        if sub_agent is None:
            return Err(reason=f"Sub-agent not found: {agent_name}", kind="unknown_agent")

        cached = self._cached(agent_name, task)
        if cached is not None:
            return Ok(cached)

        budget = self.child_budget()
        if budget < 1:
            LOGGER.warning(f"Refusing delegation to {agent_name}: parent budget of {self.parent_max_steps} step(s)")
            return Err(
                reason=f"Cannot delegate to {agent_name}: the step budget leaves no room for a sub-agent",
                kind="budget_exhausted",
            )

        run_id = uuid.uuid4().hex[:8]
        context_id = f"subagent-{run_id}"
        self.writer.delegation(agent_name, task, "starting")
        LOGGER.info(f"[{context_id}] delegating to {agent_name} ({budget} step(s)): {task[:100]}")

        reports: List[CompletionReport] = []
        tools = await self._resolve_tools(sub_agent)
        tools[COMPLETION_TOOL_NAME] = build_completion_tool(reports)
        child = VibeAgent(
            AgentConfig(
                model=sub_agent.model or self.model,
                instructions=f"{sub_agent.system_prompt}\n\n{COMPLETION_PROTOCOL}",
                name=f"{agent_name}:{context_id}",
                tools=tools,
                middleware=list(sub_agent.middleware or []),
                max_steps=budget,
                tools_requiring_approval=sub_agent.tools_requiring_approval,
                approval_handler=sub_agent.approval_handler,
                load_approval_rules=False,
            ),
            backend=StateBackend(session_id=context_id),
        )
        self.writer.delegation(agent_name, task, "in_progress")
        try:
            run = await child.invoke(messages=[HumanMessage(content=f"{task}\n\n{COMPLETION_REMINDER}")])
        except Exception as e:
            return self._failed(context_id, agent_name, task, str(e))
        if run.model_error:
            return self._failed(context_id, agent_name, task, run.model_error)

        summary, files, confirmed = extract_completion(run.text, reports)
        if summary is None:
            summary = f"Task completed by {agent_name} in {run.steps} step(s) without a completion report."

        now = datetime.now(timezone.utc)
        path = f"{self.results_dir}/{agent_name}_{int(now.timestamp() * 1000)}_{run_id}.md"
        written = self.result_store.write(
            path,
            format_result_document(agent_name, task, run.text, now.isoformat(), summary, files, confirmed),
        )

        outcome = DelegationOutcome(
            agent_name=agent_name,
            summary=summary,
            path=path if written.ok else None,
            steps=run.steps,
            tool_errors=len(run.tool_errors),
            files=files,
            completion_confirmed=confirmed,
            completed_at=now.isoformat(),
        )
        if not written.ok:
            outcome.warning = f"Result could not be saved: {written.reason}"
            LOGGER.warning(f"[{context_id}] {outcome.warning}")
            self.writer.notification(outcome.warning, level="warning")

        self.cache.put(agent_name, task, outcome)
        self.writer.delegation(
            agent_name, task, "complete",
            result=f"{'Confirmed' if confirmed else 'Inferred'} completion: {summary[:200]}",
        )
        return Ok(outcome)

    def _failed(self, context_id: str, agent_name: str, task: str, error: str) -> Result:
        LOGGER.error(f"[{context_id}] sub-agent {agent_name} failed: {error}")
        self.writer.delegation(agent_name, task, "failed", result=error)
        return Err(reason=f"Sub-agent {agent_name} failed: {error}", kind="generation_failed")

    def _build_tools(self) -> Dict[str, BaseTool]:

        @tool(DELEGATE_TOOL_NAME, args_schema=DelegateInput)
        async def delegate(agent_name: str, task: str) -> dict:
            """Delegate a self-contained task to a named sub-agent.

            The sub-agent runs in isolation with its own tools and sees only
            the task text. You get back a short summary and the location of
            the full result. A task already delegated returns the cached result.
            """
            result = await self.run_delegation(agent_name, task)
            if not result.ok:
                if result.kind == "unknown_agent":
                    raise SubAgentNotFoundError(agent_name)
                return {"status": "failed", "error": result.reason}
            outcome = result.value
            response = {
                "status": "cached" if outcome.cached else "completed",
                "summary": outcome.summary,
                "saved_to": outcome.path,
                "cached": outcome.cached,
                "completion_confirmed": outcome.completion_confirmed,
            }
            if outcome.files:
                response["files_created"] = outcome.files
            if outcome.tool_errors:
                response["tool_errors"] = outcome.tool_errors
            if outcome.warning:
                response["warning"] = outcome.warning
            return response

        @tool(READ_RESULT_TOOL_NAME, args_schema=ReadResultInput)
        async def read_subagent_result(path: str) -> dict:
            """Read the full output a sub-agent saved during delegation."""
            result = self.result_store.read(path)
            if not result.ok:
                return {"success": False, "error": result.reason}
            return {"success": True, "content": result.value}

        return {t.name: t for t in (delegate, read_subagent_result)}
