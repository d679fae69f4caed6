"""Model capability contract and the LangChain chat model adapter."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional, Protocol, Sequence, runtime_checkable

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, SystemMessage
from langchain_core.messages.utils import message_chunk_to_message
from langchain_core.tools import BaseTool

from vibesAgent.utils.error_handler import ModelInvocationError

LOGGER = logging.getLogger(__name__)


@dataclass
class ModelTurn:
    """One model response: an assistant message (possibly with tool calls) plus token usage."""

    message: AIMessage
    usage: Dict[str, int] = field(default_factory=dict)


@runtime_checkable
class ModelCapability(Protocol):
    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[BaseMessage],
        tools: Sequence[BaseTool] = (),
    ) -> ModelTurn:
        ...


@runtime_checkable
class StreamingModelCapability(ModelCapability, Protocol):
    def stream(
        self,
        system_prompt: str,
        messages: Sequence[BaseMessage],
        tools: Sequence[BaseTool] = (),
    ) -> AsyncIterator[AIMessageChunk]:
        ...


def usage_of(message: BaseMessage) -> Dict[str, int]:
    usage = getattr(message, "usage_metadata", None) or {}
    return {
        "input_tokens": int(usage.get("input_tokens", 0) or 0),
        "output_tokens": int(usage.get("output_tokens", 0) or 0),
        "total_tokens": int(usage.get("total_tokens", 0) or 0),
    }


def add_usage(left: Optional[Dict[str, int]], right: Optional[Dict[str, int]]) -> Dict[str, int]:
    """Reducer that sums token counters."""
    merged = dict(left or {})
    for key, value in (right or {}).items():
        merged[key] = merged.get(key, 0) + value
    return merged


class ChatModelAdapter:
    """Expose any LangChain chat model as a ModelCapability."""

    def __init__(self, model: BaseChatModel):
        self.model = model

    def _runnable(self, tools: Sequence[BaseTool]):
        return self.model.bind_tools(list(tools)) if tools else self.model

    async def generate(self, system_prompt, messages, tools=()) -> ModelTurn:
        prompt = [SystemMessage(content=system_prompt), *messages]
        try:
            response = await self._runnable(tools).ainvoke(prompt)
        except Exception as e:
            LOGGER.error(f"Model invocation failed: {e}")
            raise ModelInvocationError(str(e), user_message="the language model did not respond") from e
        if not isinstance(response, AIMessage):
            response = AIMessage(content=str(getattr(response, "content", response)))
        return ModelTurn(message=response, usage=usage_of(response))

    async def stream(self, system_prompt, messages, tools=()) -> AsyncIterator[AIMessageChunk]:
        prompt = [SystemMessage(content=system_prompt), *messages]
        try:
            async for chunk in self._runnable(tools).astream(prompt):
                yield chunk
        except Exception as e:
            LOGGER.error(f"Model stream failed: {e}")
            raise ModelInvocationError(str(e), user_message="the language model stream failed") from e


def merge_chunks(chunks: Sequence[AIMessageChunk]) -> AIMessage:
    """Collapse streamed chunks into one assistant message."""
    if not chunks:
        return AIMessage(content="")
    merged = chunks[0]
    for chunk in chunks[1:]:
        merged = merged + chunk
    message = message_chunk_to_message(merged)
    if not isinstance(message, AIMessage):
        return AIMessage(content=message.content)
    return message
