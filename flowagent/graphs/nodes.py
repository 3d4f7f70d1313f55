"""Node implementations for the agent state machine."""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from cuid2 import cuid_wrapper
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.runnables import Runnable

from flowagent.errors import ProviderError
from flowagent.graphs.hooks import DEFAULT_SKIP_MESSAGE, HookDispatcher
from flowagent.graphs.state import MAX_RESCUE_ATTEMPTS, AgentRunState, ExecutionContext, ToolCallErrorInfo
from flowagent.models.events import StreamingCallback, emit_event
from flowagent.models.llm import ModelConfig
from flowagent.tools.base import ToolDefinition, stringify_tool_output
from flowagent.utils.formatting import extract_thinking, format_final_response, is_garbage_response
from flowagent.utils.logging import get_logger, preview

logger = get_logger(__name__)

cuid = cuid_wrapper()

RESCUE_MESSAGE = (
    "Your last response was empty or invalid. "
    "Please provide a clear, helpful response summarizing what you did and the results."
)

BACKOFF_BASE_DELAY = 1.0
BACKOFF_MAX_DELAY = 32.0


@dataclass
class AgentRuntime:
    """Collaborators the nodes need for one run."""

    model: BaseChatModel
    model_config: ModelConfig
    system_prompt: str
    tools: list[ToolDefinition] = field(default_factory=list)
    hooks: HookDispatcher = field(default_factory=HookDispatcher)
    streaming_callback: StreamingCallback | None = None
    execution_context: ExecutionContext | None = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def __post_init__(self) -> None:
        # Tools are bound once, before any retry wrapping
        self.bound_model: Runnable = (
            self.model.bind_tools([t.to_langchain_tool() for t in self.tools]) if self.tools else self.model
        )
        self.tools_by_name = {t.name: t for t in self.tools}


def backoff_delay(attempt: int, rng: Callable[[], float] = random.random) -> float:
    """Exponential backoff delay in seconds for a 1-based attempt number, with jitter."""
    delay = min(BACKOFF_BASE_DELAY * 2 ** (attempt - 1), BACKOFF_MAX_DELAY)
    return delay + delay * 0.25 * (rng() - 0.5)


def build_system_message(system_prompt: str, model_config: ModelConfig) -> SystemMessage:
    """System prompt message; cached as a content block for Anthropic."""
    if model_config.provider_name == "anthropic":
        return SystemMessage(
            content=[{"type": "text", "text": system_prompt, "cache_control": {"type": "ephemeral"}}]
        )
    return SystemMessage(content=system_prompt)


async def invoke_with_retries[T](call: Callable[[], Awaitable[T]], runtime: AgentRuntime) -> T:
    """Run a model call, retrying failures with exponential backoff.

    Makes ``max(1, max_retries)`` attempts. Each failure is logged and emitted
    as an ``error`` event; the last one is re-raised.
    """
    attempts = max(1, runtime.model_config.max_retries)
    for attempt in range(1, attempts + 1):
        try:
            return await call()
        except Exception as e:
            retries_left = attempts - attempt
            logger.warning(
                f"LLM call failed (attempt {attempt}/{attempts}). Retries left: {retries_left}. Error: {e}"
            )
            await emit_event(
                runtime.streaming_callback,
                "error",
                error=f"Retry attempt {attempt}/{attempts}: {e}",
                recoverable=retries_left > 0,
            )
            if retries_left <= 0:
                raise
            await runtime.sleep(backoff_delay(attempt))

    raise ProviderError(f"Failed to complete request after {attempts} attempts")


async def agent_node(state: AgentRunState, runtime: AgentRuntime) -> None:
    """Call the model with the system prompt and current messages."""
    logger.debug(f"Agent node: iteration {state.iterations + 1}, {len(state.messages)} messages")

    all_messages: list[BaseMessage] = [
        build_system_message(runtime.system_prompt, runtime.model_config),
        *state.messages,
    ]
    await emit_event(
        runtime.streaming_callback,
        "llm_start",
        model=runtime.model_config.model,
        temperature=runtime.model_config.temperature,
    )

    response = await invoke_with_retries(lambda: runtime.bound_model.ainvoke(all_messages), runtime)
    if not isinstance(response, AIMessage):
        response = AIMessage(content=getattr(response, "content", str(response)))

    state.messages.append(response)
    state.iterations += 1

    message_id = response.id or f"msg-{cuid()}"
    thinking = extract_thinking(response)
    if thinking:
        await emit_event(runtime.streaming_callback, "think", content=thinking, message_id=message_id)

    usage = response.usage_metadata or {}
    await emit_event(
        runtime.streaming_callback,
        "llm_complete",
        message_id=message_id,
        content=format_final_response(response.content, runtime.model_config.model).response,
        thinking=thinking,
        total_tokens=usage.get("total_tokens"),
    )

    if response.tool_calls:
        logger.info(f"Agent requesting {len(response.tool_calls)} tool calls")


async def after_llm_check_node(state: AgentRunState, runtime: AgentRuntime) -> None:
    """Rescue garbage answers and give the after-LLM hook a chance to continue."""
    state.continue_to_agent = False

    last_message = state.last_ai_message()
    if last_message is None:
        return
    has_tool_calls = bool(last_message.tool_calls)

    if not has_tool_calls and is_garbage_response(last_message.content):
        if state.has_tool_results() and state.rescue_attempts < MAX_RESCUE_ATTEMPTS:
            state.rescue_attempts += 1
            logger.warning(
                f"Garbage response detected ({preview(str(last_message.content))!r}), "
                f"attempting rescue ({state.rescue_attempts}/{MAX_RESCUE_ATTEMPTS})"
            )
            state.messages.append(HumanMessage(content=RESCUE_MESSAGE))
            state.continue_to_agent = True
            return

    if has_tool_calls:
        return

    result = await runtime.hooks.after_llm_call(list(state.messages), last_message)
    if result is None:
        return
    if result.messages:
        state.messages = list(result.messages)
    if result.continue_to_agent:
        logger.info("afterLLMCall hook requested another agent turn")
        state.continue_to_agent = True


def _notify_tool_start(runtime: AgentRuntime, name: str, args: dict[str, Any]) -> None:
    context = runtime.execution_context
    if context and context.on_tool_call_start:
        context.on_tool_call_start(name, args)


def _notify_tool_error(runtime: AgentRuntime, name: str, args: dict[str, Any], error: str, error_type: str) -> None:
    context = runtime.execution_context
    if context and context.on_tool_call_error:
        context.on_tool_call_error(
            ToolCallErrorInfo(
                tool_name=name,
                tool_input=args,
                error=error,
                error_type=error_type,
                model=runtime.model_config.model,
            )
        )


def _duration_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def _execute_tool_call(state: AgentRunState, runtime: AgentRuntime, tool_call: dict[str, Any]) -> None:
    call_id = tool_call.get("id") or ""
    name = tool_call["name"]
    args = dict(tool_call.get("args") or {})
    callback = runtime.streaming_callback
    start = time.monotonic()

    tool = runtime.tools_by_name.get(name)
    if tool is None:
        logger.warning(f"Tool {name} not found")
        error_content = f'Error: Tool "{name}" not found. Available tools: {", ".join(runtime.tools_by_name)}'
        await emit_event(callback, "tool_call_start", tool=name, input=args, call_id=call_id)
        _notify_tool_start(runtime, name, args)
        await emit_event(
            callback,
            "tool_call_complete",
            tool=name,
            input=args,
            call_id=call_id,
            output={"error": error_content},
            duration=_duration_ms(start),
        )
        _notify_tool_error(runtime, name, args, error_content, "not_found")
        state.messages.append(ToolMessage(content=error_content, tool_call_id=call_id, name=name))
        return

    result_recorded = False
    try:
        before = await runtime.hooks.before_tool_call(name, args, list(state.messages))
        await emit_event(callback, "tool_call_start", tool=name, input=args, call_id=call_id)
        _notify_tool_start(runtime, name, args)

        if before is not None:
            if before.messages is not None:
                state.messages = list(before.messages)
            if before.tool_input is not None:
                args = before.tool_input
            if before.should_skip:
                logger.info(f"Tool {name} skipped by beforeToolCall hook")
                state.messages.append(
                    ToolMessage(
                        content=before.skip_message or DEFAULT_SKIP_MESSAGE,
                        tool_call_id=call_id,
                        name=name,
                    )
                )
                state.stop_after_tools = True
                return

        logger.debug(f"Executing tool: {name} with input: {args}")
        output = await tool.invoke(args)
        state.messages.append(ToolMessage(content=stringify_tool_output(output), tool_call_id=call_id, name=name))
        result_recorded = True
        state.tool_call_count += 1

        after = await runtime.hooks.after_tool_call(name, args, output, list(state.messages))
        if after is not None:
            if after.messages is not None:
                state.messages = list(after.messages)
            if after.should_stop:
                state.stop_after_tools = True

        await emit_event(
            callback,
            "tool_call_complete",
            tool=name,
            input=args,
            call_id=call_id,
            output=output,
            duration=_duration_ms(start),
        )
    except Exception as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        error_content = f"Error: {e}"
        if not result_recorded:
            state.messages.append(ToolMessage(content=error_content, tool_call_id=call_id, name=name))
        await emit_event(
            callback,
            "tool_call_complete",
            tool=name,
            input=args,
            call_id=call_id,
            output={"error": error_content},
            duration=_duration_ms(start),
        )
        _notify_tool_error(runtime, name, args, error_content, "execution_error")


async def tools_node(state: AgentRunState, runtime: AgentRuntime) -> None:
    """Execute every tool call of the latest AI message, in order."""
    state.stop_after_tools = False

    last_message = state.last_ai_message()
    tool_calls = list(last_message.tool_calls) if last_message else []
    logger.info(f"Executing {len(tool_calls)} tool calls")

    for tool_call in tool_calls:
        await _execute_tool_call(state, runtime, tool_call)
