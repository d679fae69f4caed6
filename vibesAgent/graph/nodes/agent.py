"""Model-call node of the orchestration loop."""

from __future__ import annotations

import logging
from typing import List, Sequence

from langchain_core.messages import BaseMessage

from vibesAgent.graph.message_utils import message_text, tool_calls_of
from vibesAgent.graph.state import LoopContext, LoopState, StepInfo
from vibesAgent.models.capability import ModelTurn, merge_chunks, usage_of
from vibesAgent.utils.async_utils import maybe_await, run_abortable
from vibesAgent.utils.error_handler import with_error_boundary

LOGGER = logging.getLogger(__name__)


def step_system_prompt(ctx: LoopContext) -> str:
    """The run's system prompt plus any recent errors the model should not repeat."""
    error_log = getattr(ctx.compressor, "error_log", None)
    return error_log.decorate(ctx.system_prompt) if error_log is not None else ctx.system_prompt


async def call_model(ctx: LoopContext, messages: Sequence[BaseMessage]) -> ModelTurn:
    """Run one model turn, streaming text deltas when the model and caller support it."""
    tools = list(ctx.tools.values())
    stream = getattr(ctx.model, "stream", None)
    system_prompt = step_system_prompt(ctx)

    if not (ctx.stream_text and callable(stream)):
        return await run_abortable(ctx.model.generate(system_prompt, messages, tools), ctx.abort_event)

    async def consume() -> ModelTurn:
        chunks = []
        async for chunk in stream(system_prompt, messages, tools):
            chunks.append(chunk)
            delta = message_text(chunk)
            if delta:
                ctx.writer.write("text-delta", {"delta": delta})
        message = merge_chunks(chunks)
        return ModelTurn(message=message, usage=usage_of(message))

    return await run_abortable(consume(), ctx.abort_event)


async def finish_step(ctx: LoopContext, info: StepInfo) -> None:
    ctx.writer.status(f"Step {info.step_number} finished ({info.finish_reason})", step=info.step_number)
    ctx.writer.write("step-finish", {"step": info.step_number, "finishReason": info.finish_reason})
    for callback in ctx.step_callbacks:
        await maybe_await(callback(info))


def build_agent_node(ctx: LoopContext):
    """Build the node that compresses context and asks the model for the next step."""

    @with_error_boundary("agent")
    async def agent_node(state: LoopState) -> dict:
        step = state.get("steps", 0) + 1
        messages: List[BaseMessage] = list(state.get("messages", []))
        LOGGER.info(f"Agent step {step}/{state.get('max_steps')} with {len(messages)} message(s)")
        ctx.writer.status(f"Thinking (step {step})", step=step)

        compression = await ctx.compressor.prune_messages(messages, ctx.writer)
        if compression.strategy != "none":
            LOGGER.info(
                f"Context compressed via {compression.strategy}: "
                f"{compression.before_count} → {compression.after_count} messages"
            )

        turn = await call_model(ctx, compression.messages)
        message = turn.message
        calls = tool_calls_of(message)
        for call in calls:
            ctx.writer.write("tool-call", {"toolCallId": call.get("id"), "toolName": call["name"], "input": call.get("args", {})})

        if not calls:
            await finish_step(ctx, StepInfo(
                step_number=step,
                text=message_text(message),
                finish_reason="stop",
                usage=turn.usage,
            ))

        return {
            "messages": [message],
            "new_messages": [message],
            "steps": step,
            "usage": turn.usage,
        }

    return agent_node
