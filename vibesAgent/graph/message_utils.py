"""Utilities for converting and cleaning inbound message histories."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Sequence

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
    convert_to_messages,
)

LOGGER = logging.getLogger(__name__)

_FINISHED_TOOL_STATES = ("output-available", "output-error")


def message_text(message: BaseMessage) -> str:
    """Plain text of a message whose content may be a list of blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, Mapping) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


def is_presentation_messages(messages: Sequence[Any]) -> bool:
    """True when ``messages`` are UI messages made of typed ``parts``."""
    return bool(messages) and all(isinstance(m, Mapping) and "parts" in m for m in messages)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def _tool_name(part: Mapping[str, Any]) -> str:
    if part.get("type") == "dynamic-tool":
        return str(part.get("toolName", "unknown"))
    return str(part["type"])[len("tool-"):]


def _is_tool_part(part: Mapping[str, Any]) -> bool:
    part_type = str(part.get("type", ""))
    return part_type == "dynamic-tool" or part_type.startswith("tool-")


def _assistant_steps(parts: Sequence[Mapping[str, Any]]) -> List[List[Mapping[str, Any]]]:
    steps: List[List[Mapping[str, Any]]] = [[]]
    for part in parts:
        if part.get("type") == "step-start":
            if steps[-1]:
                steps.append([])
            continue
        steps[-1].append(part)
    return [step for step in steps if step]


def _convert_assistant(parts: Sequence[Mapping[str, Any]]) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    for step in _assistant_steps(parts):
        text = "".join(str(p.get("text", "")) for p in step if p.get("type") == "text")
        tool_calls = []
        results = []
        for part in step:
            if not _is_tool_part(part) or part.get("state") not in _FINISHED_TOOL_STATES:
                continue
            name = _tool_name(part)
            call_id = str(part.get("toolCallId"))
            tool_calls.append({"name": name, "args": dict(part.get("input") or {}), "id": call_id})
            if part.get("state") == "output-error":
                results.append(ToolMessage(
                    content=str(part.get("errorText", "Tool execution failed")),
                    tool_call_id=call_id,
                    name=name,
                    status="error",
                ))
            else:
                results.append(ToolMessage(
                    content=_stringify(part.get("output")),
                    tool_call_id=call_id,
                    name=name,
                ))
        if text or tool_calls:
            converted.append(AIMessage(content=text, tool_calls=tool_calls))
            converted.extend(results)
    return converted


def convert_ui_messages(messages: Sequence[Mapping[str, Any]]) -> List[BaseMessage]:
    """Convert UI messages into model conversation messages.

    Text parts become message content; finished tool parts become a tool call
    on the assistant message followed by its tool result. Tool parts still
    waiting for output and UI-only parts (data, reasoning, files) are dropped.
    """
    converted: List[BaseMessage] = []
    for message in messages:
        role = message.get("role")
        parts = message.get("parts") or []
        if role == "assistant":
            converted.extend(_convert_assistant(parts))
            continue
        text = "".join(str(p.get("text", "")) for p in parts if p.get("type") == "text")
        if role == "system":
            converted.append(SystemMessage(content=text))
        elif role == "user":
            converted.append(HumanMessage(content=text))
        else:
            LOGGER.warning(f"Skipping UI message with unknown role: {role}")
    return converted


def sanitize_tool_sequence(messages: Sequence[BaseMessage]) -> List[BaseMessage]:
    """Drop tool results that do not directly follow an assistant or tool message."""
    sanitized: List[BaseMessage] = []
    for message in messages:
        if isinstance(message, ToolMessage):
            previous = sanitized[-1] if sanitized else None
            if not isinstance(previous, (AIMessage, ToolMessage)):
                LOGGER.debug(f"Dropping orphan tool message: tool_call_id={message.tool_call_id}")
                continue
        sanitized.append(message)
    return sanitized


def resolve_messages(messages: Sequence[Any]) -> List[BaseMessage]:
    """Turn caller input into sanitized model conversation messages.

    Accepts UI messages with ``parts``, LangChain messages, or anything
    ``convert_to_messages`` understands (role/content dicts, tuples).
    """
    if not messages:
        return []
    if is_presentation_messages(messages):
        converted = convert_ui_messages(messages)
    else:
        converted = convert_to_messages(list(messages))
    return sanitize_tool_sequence(converted)


def tool_calls_of(message: BaseMessage) -> List[Dict[str, Any]]:
    if isinstance(message, AIMessage):
        return list(message.tool_calls or [])
    return []
