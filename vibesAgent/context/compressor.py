"""
Context compressor

Keeps the effective message list of a step within the context budget:
1. Replace large old tool and assistant output with short references
2. Record error tool results in the error log; they are never shrunk
3. Past the message or token threshold, retain the most recent half of
   the threshold as a tail and summarize everything older (errors excluded)
4. Fall back to the bare tail when summarization fails
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from vibesAgent.config import get_settings
from vibesAgent.graph.message_utils import message_text
from vibesAgent.utils.error_handler import SummarizationError
from vibesAgent.utils.stream_writer import DataStreamWriter

from .error_log import ErrorLog, is_error_message

logger = logging.getLogger(__name__)

NO_SUMMARY_PLACEHOLDER = "No previous summary."
SUMMARY_HEADER = "## Previous Context Summary"

SUMMARY_SYSTEM_PROMPT = (
    "You maintain a running summary of a long agent conversation. "
    "Merge the existing summary with the new messages into one updated narrative. "
    "Leave out error messages and stack traces; errors are tracked separately."
)

SUMMARY_PROMPT = """Existing summary:
{summary}

New messages to fold into the summary:
{messages}

Write the updated summary. Keep:
- the user's requests and intent
- decisions made and their reasons
- files, tasks and tools involved, with their outcomes
- the work currently in progress

Output only the summary text."""


@dataclass
class CompressionResult:
    """Effective messages for one step and what was done to produce them."""
    messages: List[BaseMessage]
    before_count: int
    after_count: int
    strategy: str  # "none" | "compact" | "summarize" | "cached" | "truncate"
    summary: Optional[str] = None


def estimate_tokens(messages: Sequence[BaseMessage]) -> int:
    """Rough token count: four characters per token."""
    return sum(len(message_text(m)) for m in messages) // 4


def preview_lines(text: str) -> str:
    """First three lines, plus the last three when the text is long."""
    lines = text.split("\n")
    preview = ["First lines:", *(f"  {line[:100]}" for line in lines[:3])]
    if len(lines) > 10:
        preview.extend(["...", "Last lines:", *(f"  {line[:100]}" for line in lines[-3:])])
    return "\n".join(preview)


class ContextCompressor:
    """Compact-then-summarize policy for the orchestration loop.

    One compressor lives as long as its agent so the error log and the
    last summarized message count carry over between steps and runs.
    """

    def __init__(
        self,
        model,
        backend,
        max_context_messages: int,
        max_context_tokens: Optional[int] = None,
        compression_threshold: Optional[int] = None,
        error_log: Optional[ErrorLog] = None,
    ):
        settings = get_settings().agent
        self.model = model
        self.backend = backend
        self.max_context_messages = max_context_messages
        self.max_context_tokens = max_context_tokens or settings.max_context_tokens
        self.compression_threshold = compression_threshold or settings.compression_threshold
        self.error_log = error_log or ErrorLog()
        self._last_summarized_count = None

    def select_tail(self, messages: Sequence[BaseMessage]) -> List[BaseMessage]:
        """Last ``max_context_messages // 2`` messages, never starting on a tool result."""
        keep_count = self.max_context_messages // 2
        tail = list(messages[-keep_count:]) if keep_count > 0 else []
        while tail and isinstance(tail[0], ToolMessage):
            tail.pop(0)
        return tail

    def compact_messages(self, messages: Sequence[BaseMessage]) -> List[BaseMessage]:
        """
        Replace large tool and assistant output with restorable references.

        User and system messages are never touched, nor is anything from the
        latest assistant turn onwards. Error tool results are recorded in the
        error log and kept whole.
        """
        last_turn = max((i for i, m in enumerate(messages) if isinstance(m, AIMessage)), default=len(messages))
        compacted = []
        for index, msg in enumerate(messages):
            if is_error_message(msg):
                self.error_log.record_message(msg, context="Tool result")
                compacted.append(msg)
                continue
            if index >= last_turn or isinstance(msg, (HumanMessage, SystemMessage)):
                compacted.append(msg)
                continue
            text = message_text(msg)
            if len(text) < self.compression_threshold:
                compacted.append(msg)
                continue
            compacted.append(self._compact(msg, text))
        return compacted

    def _compact(self, msg: BaseMessage, text: str) -> BaseMessage:
        if isinstance(msg, ToolMessage):
            name = msg.name or "tool"
            content = (
                f"[{name} result: {len(text)} chars. Key info preserved, run again if full details needed.\n\n"
                f"{preview_lines(text)}]"
            )
        elif isinstance(msg, AIMessage):
            content = f"[Previous response: {len(text)} chars. {preview_lines(text)}]"
        else:
            return msg
        return msg.model_copy(update={"content": content})

    async def prune_messages(
        self,
        messages: Sequence[BaseMessage],
        writer: Optional[DataStreamWriter] = None,
    ) -> CompressionResult:
        """
        Build the effective message list for the next model call.

        Below both thresholds the (compacted) messages pass through. Above
        either, the older non-error messages are merged into the stored
        summary, which is injected as a single system message ahead of the
        retained tail. When the message count equals the one last summarized
        the stored summary is reused without a model call. The caller's list
        and the persisted history are left untouched.
        """
        writer = writer or DataStreamWriter()
        before_count = len(messages)
        compacted = self.compact_messages(messages)
        tokens = estimate_tokens(compacted)

        if before_count <= self.max_context_messages and tokens < self.max_context_tokens:
            changed = any(a is not b for a, b in zip(compacted, messages))
            return CompressionResult(compacted, before_count, before_count, "compact" if changed else "none")

        tail = self.select_tail(compacted)
        to_summarize = compacted[: len(compacted) - len(tail)]
        if not to_summarize:
            return CompressionResult(tail, before_count, len(tail), "none")

        batch = [m for m in to_summarize if not is_error_message(m)]
        if not batch:
            return CompressionResult(tail, before_count, len(tail), "truncate")

        if len(compacted) == self._last_summarized_count:
            existing = self.backend.get_state().summary
            if not existing:
                return CompressionResult(tail, before_count, len(tail), "truncate")
            effective = [SystemMessage(content=f"{SUMMARY_HEADER}\n{existing}"), *tail]
            return CompressionResult(effective, before_count, len(effective), "cached", summary=existing)

        logger.info(
            f"Compressing context: {before_count} messages (~{tokens} tokens), "
            f"summarizing {len(batch)}, keeping {len(tail)}"
        )
        writer.summarization("starting", len(to_summarize), len(tail))

        try:
            summary = await self._summarize(batch)
        except SummarizationError as e:
            logger.error(f"Summarization failed, keeping the last {len(tail)} messages only: {e}")
            writer.summarization("failed", len(to_summarize), len(tail), error=str(e))
            return CompressionResult(tail, before_count, len(tail), "truncate")

        stored = self.backend.update_state(summary=summary)
        if not stored.ok:
            logger.warning(f"Summary could not be persisted: {stored.reason}")
            writer.notification(f"Context summary was not saved: {stored.reason}", level="warning")
        self._last_summarized_count = len(compacted)

        writer.summarization("complete", len(to_summarize), len(tail))
        effective = [SystemMessage(content=f"{SUMMARY_HEADER}\n{summary}"), *tail]
        return CompressionResult(effective, before_count, len(effective), "summarize", summary=summary)

    async def _summarize(self, messages: List[BaseMessage]) -> str:
        previous = self.backend.get_state().summary or NO_SUMMARY_PLACEHOLDER
        prompt = SUMMARY_PROMPT.format(
            summary=previous,
            messages=self._format_messages_for_summary(messages),
        )
        try:
            turn = await self.model.generate(SUMMARY_SYSTEM_PROMPT, [HumanMessage(content=prompt)], [])
        except Exception as e:
            raise SummarizationError(str(e)) from e

        summary = message_text(turn.message).strip()
        if not summary:
            raise SummarizationError("model returned an empty summary")
        return summary

    def _format_messages_for_summary(self, messages: List[BaseMessage]) -> str:
        """Render messages as role-tagged text for the summarizer."""
        formatted = []

        for msg in messages:
            role = msg.__class__.__name__.replace("Message", "")
            content = str(msg.content)[:2000]

            if isinstance(msg, AIMessage) and msg.tool_calls:
                tools = ", ".join(tc.get("name", "unknown") for tc in msg.tool_calls)
                prefix = f"[{role}] {content}\n" if content else ""
                formatted.append(f"{prefix}[{role}] called tools: {tools}")
            elif isinstance(msg, ToolMessage):
                tool_name = getattr(msg, "name", None) or "unknown"
                formatted.append(f"[{role}:{tool_name}] {content[:500]}")
            else:
                formatted.append(f"[{role}] {content}")

        return "\n\n".join(formatted)
