"""Tool and LLM hook protocols and their dispatch."""

import inspect
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from langchain_core.messages import AIMessage, BaseMessage

from flowagent.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SKIP_MESSAGE = "Tool execution was skipped."


@dataclass
class BeforeToolCallContext:
    """Passed to a before-tool-call hook."""

    tool_name: str
    tool_input: dict[str, Any]
    messages: list[BaseMessage]


@dataclass
class BeforeToolCallResult:
    """What a before-tool-call hook wants changed.

    ``None`` fields leave the corresponding value untouched.
    """

    tool_input: dict[str, Any] | None = None
    messages: list[BaseMessage] | None = None
    should_skip: bool = False
    skip_message: str | None = None


@dataclass
class AfterToolCallContext:
    """Passed to an after-tool-call hook once the tool has succeeded."""

    tool_name: str
    tool_input: dict[str, Any]
    tool_output: Any
    messages: list[BaseMessage]


@dataclass
class AfterToolCallResult:
    messages: list[BaseMessage] | None = None
    should_stop: bool = False


@dataclass
class AfterLLMCallContext:
    """Passed to the after-LLM hook when the model answered without tool calls."""

    messages: list[BaseMessage]
    last_ai_message: AIMessage
    has_tool_calls: bool = False


@dataclass
class AfterLLMCallResult:
    """Full message list to continue with, and whether to run the model again."""

    messages: list[BaseMessage] = field(default_factory=list)
    continue_to_agent: bool = False


@runtime_checkable
class BeforeToolCallHook(Protocol):
    def __call__(self, context: BeforeToolCallContext) -> Any: ...


@runtime_checkable
class AfterToolCallHook(Protocol):
    def __call__(self, context: AfterToolCallContext) -> Any: ...


@runtime_checkable
class AfterLLMCallHook(Protocol):
    def __call__(self, context: AfterLLMCallContext) -> Any: ...


async def _call_hook(hook: Any, context: Any) -> Any:
    result = hook(context)
    if inspect.isawaitable(result):
        result = await result
    return result


class HookDispatcher:
    """Resolves and calls the hooks that apply to a tool call or model turn.

    A capability-scoped hook registered for a tool name takes precedence over
    the global hook of the same kind.
    """

    def __init__(
        self,
        before_tool_call: BeforeToolCallHook | None = None,
        after_tool_call: AfterToolCallHook | None = None,
        after_llm_call: AfterLLMCallHook | None = None,
        capability_before_hooks: dict[str, BeforeToolCallHook] | None = None,
        capability_after_hooks: dict[str, AfterToolCallHook] | None = None,
    ):
        self.before_tool_call_hook = before_tool_call
        self.after_tool_call_hook = after_tool_call
        self.after_llm_call_hook = after_llm_call
        self.capability_before_hooks = dict(capability_before_hooks or {})
        self.capability_after_hooks = dict(capability_after_hooks or {})

    def before_hook_for(self, tool_name: str) -> BeforeToolCallHook | None:
        return self.capability_before_hooks.get(tool_name) or self.before_tool_call_hook

    def after_hook_for(self, tool_name: str) -> AfterToolCallHook | None:
        return self.capability_after_hooks.get(tool_name) or self.after_tool_call_hook

    async def before_tool_call(
        self, tool_name: str, tool_input: dict[str, Any], messages: list[BaseMessage]
    ) -> BeforeToolCallResult | None:
        """Run the before hook for ``tool_name``, if any. Hook errors propagate."""
        hook = self.before_hook_for(tool_name)
        if hook is None:
            return None
        return await _call_hook(hook, BeforeToolCallContext(tool_name, tool_input, messages))

    async def after_tool_call(
        self, tool_name: str, tool_input: dict[str, Any], tool_output: Any, messages: list[BaseMessage]
    ) -> AfterToolCallResult | None:
        """Run the after hook for ``tool_name``, if any. Hook errors propagate."""
        hook = self.after_hook_for(tool_name)
        if hook is None:
            return None
        return await _call_hook(hook, AfterToolCallContext(tool_name, tool_input, tool_output, messages))

    async def after_llm_call(self, messages: list[BaseMessage], last_ai_message: AIMessage) -> AfterLLMCallResult | None:
        if self.after_llm_call_hook is None:
            return None
        logger.debug("No tool calls detected, calling afterLLMCall hook")
        return await _call_hook(self.after_llm_call_hook, AfterLLMCallContext(messages, last_ai_message, False))
