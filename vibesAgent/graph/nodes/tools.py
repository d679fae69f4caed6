"""Tool execution node with approval gating."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from langchain_core.messages import ToolMessage

from vibesAgent.graph.message_utils import message_text, tool_calls_of
from vibesAgent.graph.state import LoopContext, LoopState, StepInfo, ToolError
from vibesAgent.hitl.approval import ApprovalRequest, ask_for_approval
from vibesAgent.utils.async_utils import maybe_await
from vibesAgent.utils.error_handler import AgentAborted
from vibesAgent.utils.logging_utils import log_error, log_tool_call, log_tool_result

from .agent import finish_step

LOGGER = logging.getLogger(__name__)


def _render_output(output: Any) -> str:
    if isinstance(output, str):
        return output
    if isinstance(output, ToolMessage):
        return message_text(output)
    return json.dumps(output, ensure_ascii=False, default=str)


async def execute_tool_call(ctx: LoopContext, call: Dict[str, Any]) -> Tuple[ToolMessage, Optional[ToolError]]:
    """Run one tool call and return its result message and, on failure, the error record."""
    name = call["name"]
    args = dict(call.get("args") or {})
    call_id = call.get("id") or ""

    tool = ctx.tools.get(name)
    if tool is None:
        error = f"Tool not found: {name}"
        LOGGER.warning(error)
        return (
            ToolMessage(content=f"Error: {error}", tool_call_id=call_id, name=name, status="error"),
            ToolError(tool_name=name, tool_call_id=call_id, error=error, args=args),
        )

    # Approval checks and input hooks fail the call like the tool itself would.
    try:
        decision = await ctx.approval_policy.check(name, args)
        if decision.needs_approval:
            approved = await ask_for_approval(
                ctx.approval_handler,
                ApprovalRequest(tool_name=name, args=args, tool_call_id=call_id, reason=decision.reason),
            )
            ctx.writer.write("tool-approval", {"toolCallId": call_id, "toolName": name, "approved": approved})
            if not approved:
                content = json.dumps({"success": False, "error": f"Tool call rejected: {decision.reason}"})
                return ToolMessage(content=content, tool_call_id=call_id, name=name), None

        for middleware in ctx.middleware:
            await maybe_await(middleware.on_input_available(name, args))

        log_tool_call(LOGGER, name, args)
        output = await tool.ainvoke(args)
    except AgentAborted:
        raise
    except Exception as e:
        log_error(LOGGER, e, context=f"tool {name}")
        log_tool_result(LOGGER, name, e, success=False)
        ctx.writer.write("tool-result", {"toolCallId": call_id, "toolName": name, "error": str(e)})
        return (
            ToolMessage(content=f"Error: {e}", tool_call_id=call_id, name=name, status="error"),
            ToolError(tool_name=name, tool_call_id=call_id, error=str(e), args=args),
        )

    content = _render_output(output)
    log_tool_result(LOGGER, name, content)
    ctx.writer.write("tool-result", {"toolCallId": call_id, "toolName": name, "output": content})
    return ToolMessage(content=content, tool_call_id=call_id, name=name), None


def build_tools_node(ctx: LoopContext):
    """Build the node that executes the tool calls of the last assistant message in order."""

    async def tools_node(state: LoopState) -> dict:
        messages = state.get("messages", [])
        last = messages[-1] if messages else None
        calls = tool_calls_of(last) if last is not None else []

        results: List[ToolMessage] = []
        errors: List[ToolError] = []
        for call in calls:
            result, error = await execute_tool_call(ctx, call)
            results.append(result)
            if error is not None:
                errors.append(error)

        await finish_step(ctx, StepInfo(
            step_number=state.get("steps", 0),
            text=message_text(last) if last is not None else "",
            tool_calls=calls,
            tool_results=results,
            finish_reason="tool-calls",
        ))
        return {"messages": results, "new_messages": results, "tool_errors": errors}

    return tools_node
