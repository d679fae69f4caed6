"""The orchestration loop: composes middleware, runs the step-bounded graph and persists results."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.tools import BaseTool

from vibesAgent.config import get_settings
from vibesAgent.context.compressor import ContextCompressor
from vibesAgent.graph.builder import build_loop_graph, recursion_limit_for
from vibesAgent.graph.message_utils import message_text, resolve_messages
from vibesAgent.graph.state import LoopContext, StepInfo, ToolError
from vibesAgent.hitl.approval import ApprovalConfig, ApprovalHandler, ApprovalPolicy
from vibesAgent.middleware.base import Middleware
from vibesAgent.models.capability import ChatModelAdapter
from vibesAgent.persistence.backend import StateBackend
from vibesAgent.persistence.state import AgentState
from vibesAgent.utils.async_utils import maybe_await
from vibesAgent.utils.error_handler import AgentAborted
from vibesAgent.utils.stream_writer import DataStreamWriter, StreamSink

LOGGER = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = """You are a capable autonomous agent.
Work step by step, use the available tools when they help, and report results clearly.
When a tool returns an error, read it and adapt instead of repeating the same call."""

_RUN_DONE = object()


@dataclass
class AgentConfig:
    """Construction parameters of a VibeAgent.

    ``max_steps`` and ``max_context_messages`` fall back to settings when unset.
    ``load_approval_rules`` layers the rules file named in settings under
    ``tools_requiring_approval``.
    """

    model: Any
    instructions: str = DEFAULT_INSTRUCTIONS
    name: str = "vibes"
    system_prompt: Optional[str] = None
    tools: Dict[str, BaseTool] = field(default_factory=dict)
    middleware: List[Middleware] = field(default_factory=list)
    max_steps: Optional[int] = None
    max_context_messages: Optional[int] = None
    tools_requiring_approval: Optional[ApprovalConfig] = None
    approval_handler: Optional[ApprovalHandler] = None
    load_approval_rules: bool = True
    allowed_tools: Optional[List[str]] = None
    blocked_tools: Optional[List[str]] = None
    on_step_finish: Optional[Callable[[StepInfo], Any]] = None


@dataclass
class AgentRunResult:
    text: str
    state: AgentState
    usage: Dict[str, int] = field(default_factory=dict)
    tool_errors: List[ToolError] = field(default_factory=list)
    response_messages: List[BaseMessage] = field(default_factory=list)
    steps: int = 0
    warnings: List[str] = field(default_factory=list)
    model_error: Optional[str] = None


def as_model_capability(model: Any):
    """Wrap LangChain chat models; pass anything with ``generate`` through."""
    if isinstance(model, BaseChatModel):
        return ChatModelAdapter(model)
    if not callable(getattr(model, "generate", None)):
        raise TypeError(f"model must be a chat model or provide generate(), got {type(model).__name__}")
    return model


def _final_text(messages: Sequence[BaseMessage]) -> str:
    for message in reversed(messages):
        if isinstance(message, AIMessage):
            return message_text(message)
    return ""


class VibeAgent:
    """One agent session: middleware, tools, approval policy and an injected state backend."""

    def __init__(self, config: AgentConfig, backend: StateBackend):
        settings = get_settings()
        self.config = config
        self.backend = backend
        self.model = as_model_capability(config.model)
        self.max_steps = config.max_steps or settings.agent.max_steps
        self.max_context_messages = config.max_context_messages or settings.agent.max_context_messages
        self.middleware: List[Middleware] = []
        self.add_middleware(config.middleware)

        policy = ApprovalPolicy(config.tools_requiring_approval)
        rules_path = settings.workspace.approval_rules_path
        if rules_path and config.load_approval_rules:
            policy = ApprovalPolicy.from_yaml(rules_path).merge(policy)
        self.approval_policy = policy
        self.compressor = ContextCompressor(self.model, self.backend, self.max_context_messages)

    # ========== Composition ==========

    def add_middleware(self, middleware: Union[Middleware, Iterable[Middleware]]) -> None:
        """Append middleware; order decides tool precedence and prompt chaining."""
        items = [middleware] if isinstance(middleware, Middleware) else list(middleware)
        self.middleware.extend(items)
        for item in items:
            item.on_attach(self)
            LOGGER.debug(f"[{self.config.name}] middleware added: {item.name}")

    def _filter(self, tools: Dict[str, BaseTool]) -> Dict[str, BaseTool]:
        if self.config.allowed_tools is not None:
            allowed = set(self.config.allowed_tools)
            tools = {name: t for name, t in tools.items() if name in allowed}
        if self.config.blocked_tools:
            blocked = set(self.config.blocked_tools)
            tools = {name: t for name, t in tools.items() if name not in blocked}
        return tools

    async def get_all_tools(self) -> Dict[str, BaseTool]:
        """Middleware tools in registration order, then caller tools, filtered by allow/block lists."""
        for middleware in self.middleware:
            await middleware.wait_ready()
        tools: Dict[str, BaseTool] = {}
        for middleware in self.middleware:
            tools.update(middleware.tools)
        tools.update(self.config.tools)
        return self._filter(tools)

    async def get_inheritable_tools(self) -> Dict[str, BaseTool]:
        """Tools a sub-agent may receive: those not bound to this session's state."""
        for middleware in self.middleware:
            await middleware.wait_ready()
        tools: Dict[str, BaseTool] = {}
        for middleware in self.middleware:
            if middleware.inheritable:
                tools.update(middleware.tools)
        tools.update(self.config.tools)
        return self._filter(tools)

    def build_system_prompt(self) -> str:
        prompt = self.config.instructions
        for middleware in self.middleware:
            prompt = middleware.modify_system_prompt(prompt)
        if self.config.system_prompt:
            prompt = f"{prompt}\n\n## Custom Instructions\n{self.config.system_prompt}"
        return prompt

    # ========== State ==========

    def get_state(self) -> AgentState:
        return self.backend.get_state()

    def export_state(self) -> AgentState:
        return self.backend.get_state()

    def import_state(self, state: Union[AgentState, Mapping[str, Any]]) -> None:
        if not isinstance(state, AgentState):
            state = AgentState.model_validate(dict(state))
        self.backend.replace_state(state)

    # ========== Running ==========

    async def _prepare(self, messages, state) -> AgentState:
        if state:
            result = self.backend.update_state(**dict(state))
            if not result.ok:
                raise ValueError(f"Invalid state: {result.reason}")
        if messages is not None:
            result = self.backend.update_state(messages=resolve_messages(messages))
            if not result.ok:
                raise ValueError(f"Invalid messages: {result.reason}")

        current = self.backend.get_state()
        for middleware in self.middleware:
            await middleware.before_model(current)
        return self.backend.get_state()

    async def _context(
        self,
        writer: DataStreamWriter,
        abort_event: Optional[asyncio.Event],
        stream_text: bool,
    ) -> LoopContext:
        callbacks = [m.on_step_finish for m in self.middleware]
        if self.config.on_step_finish:
            callbacks.append(self.config.on_step_finish)
        return LoopContext(
            model=self.model,
            system_prompt=self.build_system_prompt(),
            tools=await self.get_all_tools(),
            compressor=self.compressor,
            approval_policy=self.approval_policy,
            approval_handler=self.config.approval_handler,
            middleware=list(self.middleware),
            step_callbacks=callbacks,
            writer=writer,
            abort_event=abort_event,
            stream_text=stream_text,
        )

    async def _run_graph(self, ctx: LoopContext, history: List[BaseMessage]) -> dict:
        app = build_loop_graph(ctx)
        initial = {
            "messages": history,
            "new_messages": [],
            "tool_errors": [],
            "usage": {},
            "steps": 0,
            "max_steps": self.max_steps,
            "model_error": None,
        }
        LOGGER.info(f"[{self.config.name}] run started: {len(history)} message(s), {len(ctx.tools)} tool(s)")
        return await app.ainvoke(initial, config={"recursion_limit": recursion_limit_for(self.max_steps)})

    def _finish(self, final: dict, writer: DataStreamWriter) -> AgentRunResult:
        new_messages = list(final.get("new_messages", []))
        warnings = []
        persisted = self.backend.append_messages(new_messages)
        if not persisted.ok:
            warning = f"Conversation could not be saved: {persisted.reason}"
            LOGGER.warning(f"[{self.config.name}] {warning}")
            writer.notification(warning, level="warning")
            warnings.append(warning)

        tool_errors = list(final.get("tool_errors", []))
        model_error = final.get("model_error")
        if model_error:
            LOGGER.warning(f"[{self.config.name}] run ended by a model failure: {model_error}")
        if tool_errors:
            LOGGER.warning(f"[{self.config.name}] {len(tool_errors)} tool error(s) during run")
        steps = final.get("steps", 0)
        LOGGER.info(f"[{self.config.name}] run finished after {steps} step(s)")
        return AgentRunResult(
            text=_final_text(new_messages),
            state=self.backend.get_state(),
            usage=dict(final.get("usage") or {}),
            tool_errors=tool_errors,
            response_messages=new_messages,
            steps=steps,
            warnings=warnings,
            model_error=model_error,
        )

    async def invoke(
        self,
        messages: Optional[Sequence[Any]] = None,
        state: Optional[Mapping[str, Any]] = None,
    ) -> AgentRunResult:
        """Run the loop to completion.

        ``messages`` replaces the session conversation when given (UI clients
        send the whole history); otherwise the stored conversation continues.
        Response messages are appended to the stored conversation afterwards.
        """
        history = (await self._prepare(messages, state)).messages
        writer = DataStreamWriter()
        ctx = await self._context(writer, abort_event=None, stream_text=False)
        final = await self._run_graph(ctx, history)
        result = self._finish(final, writer)
        for middleware in self.middleware:
            await middleware.after_model(result.state, result)
        return result

    async def stream(
        self,
        messages: Optional[Sequence[Any]] = None,
        state: Optional[Mapping[str, Any]] = None,
        sink: Optional[StreamSink] = None,
        abort_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Run the loop and yield events as they happen.

        Events are text deltas, tool calls and results, step boundaries and
        middleware data events, then ``finish`` (with the AgentRunResult) or
        ``abort``. Setting ``abort_event`` cancels the in-flight model call;
        an aborted run is not persisted.
        """
        queue: asyncio.Queue = asyncio.Queue()

        def forward(event: Dict[str, Any]) -> None:
            queue.put_nowait(event)
            if sink is not None:
                sink(event)

        writer = DataStreamWriter(forward)
        for middleware in self.middleware:
            middleware.on_stream_ready(writer)

        task = None
        try:
            history = (await self._prepare(messages, state)).messages
            ctx = await self._context(writer, abort_event=abort_event, stream_text=True)
            task = asyncio.ensure_future(self._run_graph(ctx, history))
            task.add_done_callback(lambda _: queue.put_nowait(_RUN_DONE))

            while True:
                event = await queue.get()
                if event is _RUN_DONE:
                    break
                yield event

            try:
                final = task.result()
            except AgentAborted:
                LOGGER.info(f"[{self.config.name}] run aborted")
                yield {"type": "abort"}
                return

            result = self._finish(final, writer)
            while not queue.empty():
                yield queue.get_nowait()
            for middleware in self.middleware:
                await maybe_await(middleware.on_stream_finish(result))
            yield {
                "type": "finish",
                "text": result.text,
                "usage": result.usage,
                "steps": result.steps,
                "result": result,
            }
        finally:
            if task is not None and not task.done():
                task.cancel()
            for middleware in self.middleware:
                middleware.on_stream_ready(None)
