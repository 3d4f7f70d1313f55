"""State definitions for the agent control loop."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage
from pydantic import BaseModel, ConfigDict, Field

MAX_RESCUE_ATTEMPTS = 1

CallLLM = Callable[[str], Awaitable[str]]


class AgentNode(StrEnum):
    """Nodes of the agent state machine."""

    AGENT = "agent"
    AFTER_LLM_CHECK = "after_llm_check"
    TOOLS = "tools"
    END = "end"


@dataclass
class PendingApproval:
    """A tool call paused until a human approves it."""

    tool_name: str
    tool_input: dict[str, Any] = field(default_factory=dict)
    tool_call_id: str | None = None
    capability_id: str | None = None
    message: str | None = None


@dataclass
class ToolCallErrorInfo:
    tool_name: str
    tool_input: dict[str, Any]
    error: str
    error_type: str  # "not_found" | "execution_error"
    model: str


@dataclass
class AgentErrorInfo:
    error: str
    model: str
    iterations: int
    tool_calls: list[Any]
    conversation_history: list[dict[str, Any]] | None = None


@dataclass
class ExecutionContext:
    """State shared by reference between a run and the runs it spawns.

    Only intentionally coupled runs (a delegating agent and its capability
    sub-agent, or the memory helper) share one instance.
    """

    pending_approval: PendingApproval | None = None
    trigger_conversation_history: list[Any] | None = None

    # Memory integration, supplied by the host
    memory_tools: list[Any] = field(default_factory=list)
    memory_system_prompt: str | None = None
    memory_call_llm_init: Callable[[CallLLM], None] | None = None
    memory_reflection_callback: Callable[[list[dict[str, str]]], Awaitable[None]] | None = None

    # Lifecycle callbacks
    on_tool_call_start: Callable[[str, dict[str, Any]], None] | None = None
    on_tool_call_error: Callable[[ToolCallErrorInfo], None] | None = None
    on_agent_error: Callable[[AgentErrorInfo], None] | None = None


class AgentRunState(BaseModel):
    """Mutable state of one pass through the agent state machine.

    A fresh instance is created for every execution so counters are never
    shared between runs.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    messages: list[BaseMessage] = Field(default_factory=list)

    iterations: int = 0
    steps: int = 0
    tool_call_count: int = 0

    # Control flow
    stop_after_tools: bool = False
    continue_to_agent: bool = False
    rescue_attempts: int = 0

    def last_ai_message(self) -> AIMessage | None:
        """Most recent AI message, even if followed by human or tool messages."""
        for message in reversed(self.messages):
            if isinstance(message, AIMessage):
                return message
        return None

    def has_tool_results(self) -> bool:
        return any(isinstance(m, ToolMessage) for m in self.messages)
