"""
Unit tests for the orchestration loop of VibeAgent.

A scripted model replays prepared responses so every step of the loop is
deterministic.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from langchain_core.tools import tool

from tests.unit.fakes import ExplodingChatModel, ScriptedModel, ai_tool_call
from vibesAgent import AgentConfig, VibeAgent, create_agent
from vibesAgent.config import get_settings
from vibesAgent.middleware import Middleware
from vibesAgent.utils.error_handler import ModelInvocationError


@tool
def echo(text: str) -> str:
    """Echo the text back."""
    return f"echo: {text}"


@tool
def explode(reason: str) -> str:
    """Always fails."""
    raise ValueError(reason)


class RecordingMiddleware(Middleware):
    """Middleware that records the hooks it receives."""

    def __init__(self, name="recording", tools=None, prompt_suffix=None):
        super().__init__()
        self.name = name
        self._tools = tools or {}
        self.prompt_suffix = prompt_suffix
        self.inputs = []
        self.finish_reasons = []
        self.before = 0
        self.after = 0

    @property
    def tools(self):
        return dict(self._tools)

    def modify_system_prompt(self, prompt):
        return f"{prompt}\n{self.prompt_suffix}" if self.prompt_suffix else prompt

    async def before_model(self, state):
        self.before += 1

    async def after_model(self, state, result):
        self.after += 1

    def on_step_finish(self, step):
        self.finish_reasons.append(step.finish_reason)

    def on_input_available(self, tool_name, args):
        self.inputs.append((tool_name, args))


def make_agent(model, backend, **kwargs):
    kwargs.setdefault("tools", {"echo": echo, "explode": explode})
    return VibeAgent(AgentConfig(model=model, **kwargs), backend)


class TestInvoke:
    """Tests for VibeAgent.invoke."""

    @pytest.mark.asyncio
    async def test_plain_answer(self, backend):
        """A response without tool calls ends the run after one step."""
        model = ScriptedModel(["Hello!"])
        agent = make_agent(model, backend)

        result = await agent.invoke(messages=[{"role": "user", "content": "hi"}])

        assert result.text == "Hello!"
        assert result.steps == 1
        assert result.usage["total_tokens"] == 5
        assert [type(m) for m in backend.get_state().messages] == [HumanMessage, AIMessage]

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, backend):
        """Tool results are fed back to the model before the final answer."""
        model = ScriptedModel([ai_tool_call("echo", {"text": "ping"}), "Got it"])
        agent = make_agent(model, backend)

        result = await agent.invoke(messages=[HumanMessage(content="go")])

        assert result.text == "Got it"
        assert result.steps == 2
        assert result.usage["total_tokens"] == 10
        second_call = model.calls[1]["messages"]
        assert isinstance(second_call[-1], ToolMessage)
        assert second_call[-1].content == "echo: ping"
        assert len(result.response_messages) == 3
        assert len(backend.get_state().messages) == 4

    @pytest.mark.asyncio
    async def test_step_budget(self, backend):
        """The run stops once max_steps steps have executed."""
        model = ScriptedModel([ai_tool_call("echo", {"text": str(i)}, call_id=f"c{i}") for i in range(10)])
        agent = make_agent(model, backend, max_steps=3)

        result = await agent.invoke(messages=[HumanMessage(content="loop")])

        assert len(model.calls) == 3
        assert result.steps == 3
        assert isinstance(result.response_messages[-1], ToolMessage)

    @pytest.mark.asyncio
    async def test_tool_failure_is_collected(self, backend):
        """A raising tool becomes an error result and the loop continues."""
        model = ScriptedModel([ai_tool_call("explode", {"reason": "disk full"}), "Recovered"])
        agent = make_agent(model, backend)

        result = await agent.invoke(messages=[HumanMessage(content="go")])

        assert result.text == "Recovered"
        assert len(result.tool_errors) == 1
        error = result.tool_errors[0]
        assert error.tool_name == "explode"
        assert "disk full" in error.error
        tool_message = result.response_messages[1]
        assert tool_message.status == "error"
        assert "disk full" in tool_message.content

    @pytest.mark.asyncio
    async def test_unknown_tool(self, backend):
        model = ScriptedModel([ai_tool_call("missing", {}), "ok"])
        agent = make_agent(model, backend)

        result = await agent.invoke(messages=[HumanMessage(content="go")])

        assert result.tool_errors[0].error == "Tool not found: missing"
        assert result.text == "ok"

    @pytest.mark.asyncio
    async def test_model_failure_ends_run_with_message(self, backend):
        model = ScriptedModel([ModelInvocationError("503", user_message="the language model did not respond")])
        agent = make_agent(model, backend)

        result = await agent.invoke(messages=[HumanMessage(content="go")])

        assert result.text == "Model call failed: the language model did not respond"
        assert result.model_error == "503"

    @pytest.mark.asyncio
    async def test_chat_model_failure_sets_model_error(self, backend):
        """Provider errors from a LangChain model are flagged on the result."""
        agent = make_agent(ExplodingChatModel(), backend)

        result = await agent.invoke(messages=[HumanMessage(content="go")])

        assert result.model_error == "provider 500"
        assert result.text.startswith("Model call failed")

    @pytest.mark.asyncio
    async def test_successful_run_has_no_model_error(self, backend):
        result = await make_agent(ScriptedModel(["hi"]), backend).invoke(messages=[HumanMessage(content="go")])

        assert result.model_error is None

    @pytest.mark.asyncio
    async def test_recent_errors_reach_the_next_prompt(self, backend):
        """A failed tool call is listed in the system prompt of later steps."""
        model = ScriptedModel([ai_tool_call("explode", {"reason": "disk full"}), "Recovered"])
        agent = make_agent(model, backend)

        await agent.invoke(messages=[HumanMessage(content="go")])

        assert "Recent Errors" not in model.calls[0]["system_prompt"]
        later = model.calls[1]["system_prompt"]
        assert "## Recent Errors (Do NOT Repeat These)" in later
        assert "### explode" in later
        assert "disk full" in later

    @pytest.mark.asyncio
    async def test_stored_conversation_continues(self, backend):
        """Without messages the run continues from the stored history."""
        model = ScriptedModel(["first", "second"])
        agent = make_agent(model, backend)
        await agent.invoke(messages=[HumanMessage(content="one")])
        backend.append_messages([HumanMessage(content="two")])

        await agent.invoke()

        assert [m.content for m in model.calls[1]["messages"]] == ["one", "first", "two"]
        assert [m.content for m in backend.get_state().messages] == ["one", "first", "two", "second"]

    @pytest.mark.asyncio
    async def test_orphan_tool_messages_are_dropped(self, backend):
        model = ScriptedModel(["ok"])
        agent = make_agent(model, backend)

        await agent.invoke(messages=[
            HumanMessage(content="hi"),
            ToolMessage(content="stale", tool_call_id="old"),
        ])

        assert [type(m) for m in model.calls[0]["messages"]] == [HumanMessage]

    @pytest.mark.asyncio
    async def test_invalid_state_is_rejected(self, backend):
        agent = make_agent(ScriptedModel(), backend)

        with pytest.raises(ValueError):
            await agent.invoke(messages=[HumanMessage(content="hi")], state={"unknown_field": 1})

    @pytest.mark.asyncio
    async def test_long_history_is_compressed(self, backend):
        """Over the threshold the model sees a summary plus the recent tail."""
        history = [HumanMessage(content=f"m{i}") if i % 2 == 0 else AIMessage(content=f"m{i}") for i in range(11)]
        model = ScriptedModel(["Summary of m0-m5", "answer"])
        agent = make_agent(model, backend, max_context_messages=10)

        result = await agent.invoke(messages=history)

        seen = model.calls[1]["messages"]
        assert seen[0].content.endswith("Summary of m0-m5")
        assert [m.content for m in seen[1:]] == ["m6", "m7", "m8", "m9", "m10"]
        assert result.state.summary == "Summary of m0-m5"
        assert len(result.state.messages) == 12


class TestApproval:
    """Tests for approval gating inside the loop."""

    @pytest.mark.asyncio
    async def test_denied_without_handler(self, backend):
        """A call needing approval is rejected when nobody can approve it."""
        model = ScriptedModel([ai_tool_call("echo", {"text": "x"}), "fine"])
        agent = make_agent(model, backend, tools_requiring_approval=["echo"])

        result = await agent.invoke(messages=[HumanMessage(content="go")])

        tool_message = result.response_messages[1]
        assert "rejected" in tool_message.content
        assert "echo: x" not in tool_message.content
        assert result.tool_errors == []

    @pytest.mark.asyncio
    async def test_approved_by_handler(self, backend):
        handler = Mock(return_value=True)

        model = ScriptedModel([ai_tool_call("echo", {"text": "x"}), "fine"])
        agent = make_agent(model, backend, tools_requiring_approval=["echo"], approval_handler=handler)

        result = await agent.invoke(messages=[HumanMessage(content="go")])

        assert result.response_messages[1].content == "echo: x"
        request = handler.call_args.args[0]
        assert request.tool_name == "echo"
        assert request.args == {"text": "x"}

    @pytest.mark.asyncio
    async def test_predicate_rule(self, backend):
        """Only calls matching the predicate are gated."""
        model = ScriptedModel([
            AIMessage(content="", tool_calls=[
                {"name": "echo", "args": {"text": "safe"}, "id": "c1"},
                {"name": "echo", "args": {"text": "danger"}, "id": "c2"},
            ]),
            "fine",
        ])
        agent = make_agent(model, backend, tools_requiring_approval={"echo": lambda args: args["text"] == "danger"})

        result = await agent.invoke(messages=[HumanMessage(content="go")])

        first, second = result.response_messages[1:3]
        assert first.content == "echo: safe"
        assert "rejected" in second.content

    @pytest.mark.asyncio
    async def test_failing_predicate_is_a_tool_error(self, backend):
        """A predicate that raises fails that call only."""
        model = ScriptedModel([ai_tool_call("echo", {"text": "x"}), "recovered"])
        agent = make_agent(model, backend, tools_requiring_approval={"echo": lambda args: args["path"].startswith("/etc")})

        result = await agent.invoke(messages=[HumanMessage(content="go")])

        assert result.text == "recovered"
        assert len(result.tool_errors) == 1
        assert result.tool_errors[0].tool_name == "echo"
        assert result.response_messages[1].status == "error"

    @pytest.mark.asyncio
    async def test_failing_handler_is_a_tool_error(self, backend):
        handler = Mock(side_effect=RuntimeError("approval service down"))
        model = ScriptedModel([ai_tool_call("echo", {"text": "x"}), "recovered"])
        agent = make_agent(model, backend, tools_requiring_approval=["echo"], approval_handler=handler)

        result = await agent.invoke(messages=[HumanMessage(content="go")])

        assert result.text == "recovered"
        assert "approval service down" in result.tool_errors[0].error

    @pytest.mark.asyncio
    async def test_failing_input_hook_is_a_tool_error(self, backend):
        class BrokenHook(RecordingMiddleware):
            def on_input_available(self, tool_name, args):
                raise RuntimeError("hook broke")

        model = ScriptedModel([ai_tool_call("echo", {"text": "x"}), "recovered"])
        agent = make_agent(model, backend, middleware=[BrokenHook()])

        result = await agent.invoke(messages=[HumanMessage(content="go")])

        assert result.text == "recovered"
        assert result.tool_errors[0].error == "hook broke"
        assert "echo: x" not in result.response_messages[1].content

    @pytest.mark.asyncio
    async def test_settings_rules_file(self, backend, tmp_path, monkeypatch):
        """The rules file applies by default and can be switched off per agent."""
        rules = tmp_path / "rules.yaml"
        rules.write_text("require_approval: [echo]\n", encoding="utf-8")
        monkeypatch.setattr(get_settings().workspace, "approval_rules_path", str(rules))

        gated = make_agent(ScriptedModel(), backend)
        ungated = make_agent(ScriptedModel(), backend, load_approval_rules=False)

        assert gated.approval_policy.has_rule("echo")
        assert not ungated.approval_policy.has_rule("echo")


class TestComposition:
    """Tests for middleware composition."""

    @pytest.mark.asyncio
    async def test_tool_precedence(self, backend):
        """Later middleware override earlier ones and caller tools override all."""

        @tool("shared")
        def from_first() -> str:
            """First."""
            return "first"

        @tool("shared")
        def from_second() -> str:
            """Second."""
            return "second"

        @tool("shared")
        def from_caller() -> str:
            """Caller."""
            return "caller"

        first = RecordingMiddleware("first", tools={"shared": from_first})
        second = RecordingMiddleware("second", tools={"shared": from_second})

        agent = make_agent(ScriptedModel(), backend, tools={}, middleware=[first, second])
        assert (await agent.get_all_tools())["shared"] is from_second

        agent = make_agent(ScriptedModel(), backend, tools={"shared": from_caller}, middleware=[first, second])
        assert (await agent.get_all_tools())["shared"] is from_caller

    @pytest.mark.asyncio
    async def test_allow_and_block_lists(self, backend):
        agent = make_agent(ScriptedModel(), backend, allowed_tools=["echo", "explode"], blocked_tools=["explode"])

        assert list(await agent.get_all_tools()) == ["echo"]

    def test_system_prompt_order(self, backend):
        """Instructions, then each middleware in order, then custom instructions."""
        agent = make_agent(
            ScriptedModel(),
            backend,
            instructions="BASE",
            system_prompt="Be terse.",
            middleware=[
                RecordingMiddleware("a", prompt_suffix="FROM A"),
                RecordingMiddleware("b", prompt_suffix="FROM B"),
            ],
        )

        assert agent.build_system_prompt() == "BASE\nFROM A\nFROM B\n\n## Custom Instructions\nBe terse."

    @pytest.mark.asyncio
    async def test_hooks_are_called(self, backend):
        recorder = RecordingMiddleware()
        steps = []
        model = ScriptedModel([ai_tool_call("echo", {"text": "x"}), "done"])
        agent = make_agent(model, backend, middleware=[recorder], on_step_finish=steps.append)

        await agent.invoke(messages=[HumanMessage(content="go")])

        assert recorder.before == 1
        assert recorder.after == 1
        assert recorder.inputs == [("echo", {"text": "x"})]
        assert recorder.finish_reasons == ["tool-calls", "stop"]
        assert [s.step_number for s in steps] == [1, 2]

    @pytest.mark.asyncio
    async def test_model_sees_tools_and_prompt(self, backend):
        model = ScriptedModel(["ok"])
        agent = make_agent(model, backend, instructions="BASE")

        await agent.invoke(messages=[HumanMessage(content="go")])

        assert model.calls[0]["system_prompt"] == "BASE"
        assert sorted(model.calls[0]["tools"]) == ["echo", "explode"]

    def test_state_export_and_import(self, backend):
        agent = make_agent(ScriptedModel(), backend)
        agent.import_state({"summary": "restored", "metadata": {"k": "v"}})

        exported = agent.export_state()

        assert exported.summary == "restored"
        assert exported.metadata == {"k": "v"}

    def test_rejects_non_model(self, backend):
        with pytest.raises(TypeError):
            make_agent(object(), backend)


class TestStream:
    """Tests for VibeAgent.stream."""

    @pytest.mark.asyncio
    async def test_events_and_finish(self, backend, events):
        """Task tool activity is streamed and the run ends with a finish event."""
        model = ScriptedModel([
            ai_tool_call("create_tasks", {"tasks": [{"title": "A"}, {"title": "B", "blocked_by": ["0"]}]}),
            "Planned",
        ])
        agent = create_agent(model, backend)

        received = [event async for event in agent.stream(messages=[HumanMessage(content="plan")], sink=events.append)]

        types = [e["type"] for e in received]
        assert types[-1] == "finish"
        assert received[-1]["text"] == "Planned"
        assert received[-1]["steps"] == 2
        assert "tool-call" in types
        assert "tool-result" in types
        updates = [e["data"] for e in received if e["type"] == "task_update"]
        assert [u["title"] for u in updates] == ["A", "B"]
        assert [u["status"] for u in updates] == ["pending", "blocked"]
        assert events == received[:-1]
        assert len(backend.get_tasks()) == 2

    @pytest.mark.asyncio
    async def test_status_events_are_transient(self, backend):
        agent = make_agent(ScriptedModel(["ok"]), backend)

        received = [event async for event in agent.stream(messages=[HumanMessage(content="go")])]

        statuses = [e for e in received if e["type"] == "status"]
        assert statuses
        assert all(e.get("transient") for e in statuses)

    @pytest.mark.asyncio
    async def test_abort_before_model_call(self, backend):
        """An aborted run yields an abort event and persists no response."""
        abort = asyncio.Event()
        abort.set()
        agent = make_agent(ScriptedModel(["never"]), backend)

        received = [event async for event in agent.stream(messages=[HumanMessage(content="go")], abort_event=abort)]

        assert received[-1] == {"type": "abort"}
        assert [m.content for m in backend.get_state().messages] == ["go"]

    @pytest.mark.asyncio
    async def test_abort_during_model_call(self, backend):
        """Setting the abort event cancels an in-flight model call."""

        class SlowModel:
            cancelled = False

            async def generate(self, system_prompt, messages, tools=()):
                try:
                    await asyncio.sleep(30)
                except asyncio.CancelledError:
                    SlowModel.cancelled = True
                    raise

        abort = asyncio.Event()
        agent = make_agent(SlowModel(), backend)

        received = []
        async for event in agent.stream(messages=[HumanMessage(content="go")], abort_event=abort):
            received.append(event)
            if event["type"] == "status":
                abort.set()

        assert received[-1] == {"type": "abort"}
        assert len(backend.get_state().messages) == 1

    @pytest.mark.asyncio
    async def test_stream_finish_hook(self, backend):
        recorder = RecordingMiddleware()
        recorder.on_stream_finish = AsyncMock()
        agent = make_agent(ScriptedModel(["ok"]), backend, middleware=[recorder])

        async for _ in agent.stream(messages=[HumanMessage(content="go")]):
            pass

        recorder.on_stream_finish.assert_awaited_once()
        assert recorder.on_stream_finish.await_args.args[0].text == "ok"

    @pytest.mark.asyncio
    async def test_writers_detached_after_stream(self, backend):
        agent = create_agent(ScriptedModel(["ok"]), backend)

        async for _ in agent.stream(messages=[HumanMessage(content="go")]):
            pass

        assert all(not m.writer.attached for m in agent.middleware)
