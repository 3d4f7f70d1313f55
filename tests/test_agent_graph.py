"""Tests for the agent state machine."""

from dataclasses import replace
from typing import Any

import pytest
from conftest import ScriptedChatModel, no_sleep, tool_call_message
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from flowagent.errors import IterationLimitError
from flowagent.graphs.agent_graph import AgentStateMachine
from flowagent.graphs.edges import route_after_llm_check, route_after_tools
from flowagent.graphs.hooks import (
    AfterLLMCallResult,
    AfterToolCallResult,
    BeforeToolCallResult,
    HookDispatcher,
)
from flowagent.graphs.nodes import RESCUE_MESSAGE, AgentRuntime, backoff_delay, build_system_message
from flowagent.graphs.state import AgentNode, AgentRunState, ExecutionContext, PendingApproval
from flowagent.models.llm import ModelConfig
from flowagent.tools.base import ToolDefinition, build_args_schema


def lookup_tool(result: Any = "42", calls: list | None = None) -> ToolDefinition:
    async def lookup(params: dict[str, Any]) -> Any:
        if calls is not None:
            calls.append(params)
        if isinstance(result, Exception):
            raise result
        return result

    return ToolDefinition(
        name="lookup",
        description="Look up a value",
        args_schema=build_args_schema("lookup", {"q": {"type": "string", "required": True}}),
        func=lookup,
    )


def make_runtime(
    model: ScriptedChatModel,
    tools: list[ToolDefinition] | None = None,
    hooks: HookDispatcher | None = None,
    callback: Any = None,
    execution_context: ExecutionContext | None = None,
    model_id: str = "google/gemini-2.5-flash-lite",
    max_retries: int = 3,
) -> AgentRuntime:
    return AgentRuntime(
        model=model,
        model_config=ModelConfig(model=model_id, max_retries=max_retries),
        system_prompt="You are a test agent",
        tools=tools or [],
        hooks=hooks or HookDispatcher(),
        streaming_callback=callback,
        execution_context=execution_context,
        sleep=no_sleep,
    )


async def run_machine(runtime: AgentRuntime, max_iterations: int = 40, message: str = "Hi") -> AgentRunState:
    machine = AgentStateMachine(runtime, max_iterations)
    state = machine.new_state([HumanMessage(content=message)])
    return await machine.run(state)


class TestPlainConversation:
    """Tests for runs that never call tools."""

    @pytest.mark.asyncio
    async def test_plain_answer_takes_one_turn(self):
        """Test that a direct answer goes AGENT -> AFTER_LLM_CHECK -> END."""
        model = ScriptedChatModel(AIMessage(content="Hello there"))
        state = await run_machine(make_runtime(model))

        assert state.iterations == 1
        assert state.steps == 2
        assert state.tool_call_count == 0
        assert state.messages[-1].content == "Hello there"

    @pytest.mark.asyncio
    async def test_system_prompt_is_prepended(self):
        """Test that the model sees the system prompt before the conversation."""
        model = ScriptedChatModel(AIMessage(content="ok"))
        await run_machine(make_runtime(model))

        prompt = model.calls[0]
        assert isinstance(prompt[0], SystemMessage)
        assert prompt[0].content == "You are a test agent"
        assert isinstance(prompt[1], HumanMessage)

    def test_anthropic_system_prompt_is_cached(self):
        """Test that Anthropic models get the system prompt as a cached block."""
        message = build_system_message("Be brief", ModelConfig(model="anthropic/claude-sonnet-4-6"))
        assert message.content == [{"type": "text", "text": "Be brief", "cache_control": {"type": "ephemeral"}}]

    @pytest.mark.asyncio
    async def test_tools_not_bound_when_none(self):
        """Test that a run without tools never binds any."""
        model = ScriptedChatModel(AIMessage(content="ok"))
        await run_machine(make_runtime(model))
        assert model.bound_tools is None

    @pytest.mark.asyncio
    async def test_streaming_events(self, events):
        """Test that a model turn emits start and complete events."""
        model = ScriptedChatModel(AIMessage(content="Hi", usage_metadata={"input_tokens": 3, "output_tokens": 2, "total_tokens": 5}))
        await run_machine(make_runtime(model, callback=events.append))

        types = [e.type for e in events]
        assert types == ["llm_start", "llm_complete"]
        assert events[1].data["total_tokens"] == 5
        assert events[1].data["content"] == "Hi"


class TestToolRounds:
    """Tests for tool execution inside the loop."""

    @pytest.mark.asyncio
    async def test_one_tool_round(self):
        """Test a single tool call followed by a final answer."""
        calls: list = []
        model = ScriptedChatModel(tool_call_message("lookup", {"q": "x"}), AIMessage(content="The answer is 42"))
        state = await run_machine(make_runtime(model, tools=[lookup_tool(calls=calls)]))

        assert calls == [{"q": "x"}]
        assert state.iterations == 2
        assert state.tool_call_count == 1
        tool_messages = [m for m in state.messages if isinstance(m, ToolMessage)]
        assert len(tool_messages) == 1
        assert tool_messages[0].content == "42"
        assert model.bound_tools is not None and model.bound_tools[0].name == "lookup"

    @pytest.mark.asyncio
    async def test_tool_not_found_continues(self):
        """Test that an unknown tool yields an error result and the run goes on."""
        model = ScriptedChatModel(tool_call_message("missing", {}), AIMessage(content="Sorry"))
        state = await run_machine(make_runtime(model, tools=[lookup_tool()]))

        tool_message = next(m for m in state.messages if isinstance(m, ToolMessage))
        assert tool_message.content == 'Error: Tool "missing" not found. Available tools: lookup'
        assert state.messages[-1].content == "Sorry"

    @pytest.mark.asyncio
    async def test_tool_error_becomes_result(self):
        """Test that a failing tool produces an error result instead of raising."""
        model = ScriptedChatModel(tool_call_message("lookup", {"q": "x"}), AIMessage(content="It failed"))
        state = await run_machine(make_runtime(model, tools=[lookup_tool(result=RuntimeError("backend down"))]))

        tool_message = next(m for m in state.messages if isinstance(m, ToolMessage))
        assert tool_message.content == "Error: backend down"
        assert state.tool_call_count == 0

    @pytest.mark.asyncio
    async def test_every_call_gets_a_result(self):
        """Test that each call of a multi-call turn gets exactly one result, in order."""
        message = AIMessage(
            content="",
            tool_calls=[
                {"id": "a", "name": "lookup", "args": {"q": "1"}},
                {"id": "b", "name": "nope", "args": {}},
                {"id": "c", "name": "lookup", "args": {"q": "2"}},
            ],
        )
        model = ScriptedChatModel(message, AIMessage(content="done"))
        state = await run_machine(make_runtime(model, tools=[lookup_tool()]))

        ids = [m.tool_call_id for m in state.messages if isinstance(m, ToolMessage)]
        assert ids == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_tool_events_and_callbacks(self, events):
        """Test tool events and execution-context callbacks."""
        started: list = []
        errors: list = []
        context = ExecutionContext(
            on_tool_call_start=lambda name, args: started.append(name),
            on_tool_call_error=errors.append,
        )
        model = ScriptedChatModel(
            tool_call_message("lookup", {"q": "x"}), tool_call_message("ghost", {}), AIMessage(content="done")
        )
        await run_machine(make_runtime(model, tools=[lookup_tool()], callback=events.append, execution_context=context))

        completes = [e for e in events if e.type == "tool_call_complete"]
        assert [e.data["tool"] for e in completes] == ["lookup", "ghost"]
        assert completes[0].data["output"] == "42"
        assert "duration" in completes[0].data
        assert started == ["lookup", "ghost"]
        assert len(errors) == 1
        assert errors[0].error_type == "not_found"


class TestIterationLimit:
    """Tests for the step budget."""

    @pytest.mark.asyncio
    async def test_always_calling_model_hits_limit(self):
        """Test that a model that never stops calling tools raises IterationLimitError."""
        model = ScriptedChatModel(lambda _messages: tool_call_message("lookup", {"q": "again"}))
        runtime = make_runtime(model, tools=[lookup_tool()])
        machine = AgentStateMachine(runtime, max_iterations=4)
        state = machine.new_state([HumanMessage(content="loop")])

        with pytest.raises(IterationLimitError):
            await machine.run(state)

        # State is kept for partial results
        assert state.steps == 5
        assert state.iterations == 2
        assert state.tool_call_count == 1


class TestRescue:
    """Tests for garbage-response rescue."""

    @pytest.mark.asyncio
    async def test_rescue_fires_once(self):
        """Test that exactly one rescue message is sent, then the garbage answer stands."""
        model = ScriptedChatModel(tool_call_message("lookup", {"q": "x"}), AIMessage(content="[]"))
        state = await run_machine(make_runtime(model, tools=[lookup_tool()]))

        rescues = [m for m in state.messages if isinstance(m, HumanMessage) and m.content == RESCUE_MESSAGE]
        assert len(rescues) == 1
        assert state.rescue_attempts == 1
        assert state.iterations == 3
        assert state.messages[-1].content == "[]"

    @pytest.mark.asyncio
    async def test_no_rescue_without_tool_results(self):
        """Test that an empty answer without prior tool use is accepted."""
        model = ScriptedChatModel(AIMessage(content=""))
        state = await run_machine(make_runtime(model))

        assert state.rescue_attempts == 0
        assert state.iterations == 1


class TestHooksInLoop:
    """Tests for hook effects on control flow."""

    @pytest.mark.asyncio
    async def test_before_hook_skip_stops_run(self):
        """Test that a skipped tool gets a synthetic result and the run ends."""
        calls: list = []
        hooks = HookDispatcher(before_tool_call=lambda ctx: BeforeToolCallResult(should_skip=True))
        model = ScriptedChatModel(tool_call_message("lookup", {"q": "x"}), AIMessage(content="unreachable"))
        state = await run_machine(make_runtime(model, tools=[lookup_tool(calls=calls)], hooks=hooks))

        assert calls == []
        assert state.stop_after_tools is True
        assert state.messages[-1].content == "Tool execution was skipped."
        assert state.iterations == 1

    @pytest.mark.asyncio
    async def test_before_hook_replaces_input(self):
        """Test that a before hook can rewrite the tool input."""
        calls: list = []

        async def rewrite(ctx):
            return BeforeToolCallResult(tool_input={"q": ctx.tool_input["q"].upper()})

        model = ScriptedChatModel(tool_call_message("lookup", {"q": "x"}), AIMessage(content="done"))
        await run_machine(make_runtime(model, tools=[lookup_tool(calls=calls)], hooks=HookDispatcher(before_tool_call=rewrite)))

        assert calls == [{"q": "X"}]

    @pytest.mark.asyncio
    async def test_after_hook_stop(self):
        """Test that an after hook can stop the run after the tool round."""
        hooks = HookDispatcher(after_tool_call=lambda ctx: AfterToolCallResult(should_stop=True))
        model = ScriptedChatModel(tool_call_message("lookup", {"q": "x"}), AIMessage(content="unreachable"))
        state = await run_machine(make_runtime(model, tools=[lookup_tool()], hooks=hooks))

        assert isinstance(state.messages[-1], ToolMessage)
        assert state.iterations == 1

    @pytest.mark.asyncio
    async def test_hook_error_becomes_tool_error(self):
        """Test that a raising hook is reported as the tool's error result."""

        def broken(ctx):
            raise ValueError("hook exploded")

        model = ScriptedChatModel(tool_call_message("lookup", {"q": "x"}), AIMessage(content="done"))
        state = await run_machine(make_runtime(model, tools=[lookup_tool()], hooks=HookDispatcher(before_tool_call=broken)))

        tool_message = next(m for m in state.messages if isinstance(m, ToolMessage))
        assert tool_message.content == "Error: hook exploded"
        assert state.messages[-1].content == "done"

    @pytest.mark.asyncio
    async def test_after_llm_hook_continues(self):
        """Test that the after-LLM hook can send the run back to the model."""
        seen: list = []

        def after_llm(ctx):
            seen.append(ctx.last_ai_message.content)
            if len(seen) == 1:
                return AfterLLMCallResult(
                    messages=[*ctx.messages, HumanMessage(content="Please elaborate")],
                    continue_to_agent=True,
                )
            return None

        model = ScriptedChatModel(AIMessage(content="short"), AIMessage(content="longer answer"))
        state = await run_machine(make_runtime(model, hooks=HookDispatcher(after_llm_call=after_llm)))

        assert seen == ["short", "longer answer"]
        assert state.iterations == 2
        assert state.messages[-1].content == "longer answer"

    @pytest.mark.asyncio
    async def test_pending_approval_ends_run(self):
        """Test that a pending approval on the shared context stops after the tool round."""
        context = ExecutionContext()

        async def needs_approval(params):
            context.pending_approval = PendingApproval(tool_name="lookup", tool_input=params)
            return {"status": "pending"}

        tool = replace(lookup_tool(), func=needs_approval)
        model = ScriptedChatModel(tool_call_message("lookup", {"q": "x"}), AIMessage(content="unreachable"))
        state = await run_machine(make_runtime(model, tools=[tool], execution_context=context))

        assert state.iterations == 1
        assert isinstance(state.messages[-1], ToolMessage)


class TestRetries:
    """Tests for model call retries."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, events):
        """Test that a failed model call is retried and reported as recoverable."""
        model = ScriptedChatModel(RuntimeError("rate limited"), AIMessage(content="ok"))
        state = await run_machine(make_runtime(model, callback=events.append))

        assert state.messages[-1].content == "ok"
        errors = [e for e in events if e.type == "error"]
        assert len(errors) == 1
        assert errors[0].data["recoverable"] is True

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self, events):
        """Test that the last failure propagates once attempts run out."""
        model = ScriptedChatModel(RuntimeError("down"))
        with pytest.raises(RuntimeError, match="down"):
            await run_machine(make_runtime(model, callback=events.append, max_retries=2))

        errors = [e for e in events if e.type == "error"]
        assert [e.data["recoverable"] for e in errors] == [True, False]
        assert len(model.calls) == 2

    @pytest.mark.asyncio
    async def test_zero_retries_still_attempts_once(self):
        """Test that max_retries=0 still makes one call."""
        model = ScriptedChatModel(AIMessage(content="ok"))
        state = await run_machine(make_runtime(model, max_retries=0))
        assert state.iterations == 1
        assert len(model.calls) == 1

    def test_backoff_delay_bounds(self):
        """Test exponential growth, the cap and the jitter range."""
        assert backoff_delay(1, rng=lambda: 0.5) == 1.0
        assert backoff_delay(3, rng=lambda: 0.5) == 4.0
        assert backoff_delay(10, rng=lambda: 0.5) == 32.0
        assert backoff_delay(1, rng=lambda: 1.0) == 1.125
        assert backoff_delay(1, rng=lambda: 0.0) == 0.875


class TestRouting:
    """Tests for the routing functions."""

    def test_route_to_tools_when_requested(self):
        """Test that pending tool calls route to the tools node."""
        state = AgentRunState(messages=[tool_call_message("lookup", {"q": "x"})])
        assert route_after_llm_check(state) is AgentNode.TOOLS

    def test_continue_flag_wins(self):
        """Test that continue_to_agent routes back to the model."""
        state = AgentRunState(messages=[AIMessage(content="x")], continue_to_agent=True)
        assert route_after_llm_check(state) is AgentNode.AGENT

    def test_route_to_end(self):
        """Test that a final answer ends the run."""
        state = AgentRunState(messages=[AIMessage(content="x")])
        assert route_after_llm_check(state) is AgentNode.END

    def test_after_tools_routes(self):
        """Test routing after a tool round."""
        assert route_after_tools(AgentRunState()) is AgentNode.AGENT
        assert route_after_tools(AgentRunState(stop_after_tools=True)) is AgentNode.END
        context = ExecutionContext(pending_approval=PendingApproval(tool_name="send"))
        assert route_after_tools(AgentRunState(), context) is AgentNode.END
