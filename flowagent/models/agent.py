"""Request and result models for agent runs."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from flowagent.config import default_max_iterations, default_model_config
from flowagent.graphs.hooks import AfterLLMCallHook, AfterToolCallHook, BeforeToolCallHook
from flowagent.models.credentials import CredentialType
from flowagent.models.events import StreamingCallback
from flowagent.models.llm import ModelConfig, TokenUsage
from flowagent.tools.base import CustomTool

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant"
DEFAULT_AGENT_NAME = "AI Agent"
CAPABILITY_AGENT_PREFIX = "Capability Agent: "


class ImageInput(BaseModel):
    """An image attached to the current user message."""

    type: Literal["base64", "url"] = "base64"
    data: str | None = Field(default=None, description="Base64 payload (type=base64)")
    url: str | None = Field(default=None, description="Image URL (type=url)")
    mime_type: str = "image/png"
    description: str | None = None

    @model_validator(mode="after")
    def check_source(self) -> "ImageInput":
        """Require the field matching the image type."""
        if self.type == "base64" and not self.data:
            raise ValueError("Base64 images require data")
        if self.type == "url" and not self.url:
            raise ValueError("URL images require url")
        return self


class ConversationMessage(BaseModel):
    """A prior turn supplied as plain conversation history."""

    role: Literal["user", "assistant", "tool"]
    content: str
    tool_call_id: str | None = None
    name: str | None = None


class StoredToolCall(BaseModel):
    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class StoredMessage(BaseModel):
    """A lossless persisted message used to resume a paused run."""

    role: Literal["system", "user", "assistant", "tool"]
    content: Any = ""
    tool_calls: list[StoredToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None
    id: str | None = None


class ToolConfig(BaseModel):
    """Reference to a pre-registered tool bubble."""

    name: str
    credentials: dict[CredentialType, str] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)


class CapabilityConfig(BaseModel):
    """Reference to a registered capability and its per-run inputs."""

    id: str = Field(..., min_length=1)
    inputs: dict[str, Any] = Field(default_factory=dict)
    credentials: dict[CredentialType, str] = Field(default_factory=dict)


class AgentRequest(BaseModel):
    """Everything needed to run the agent once."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    message: str
    images: list[ImageInput] = Field(default_factory=list)
    conversation_history: list[ConversationMessage] | None = None
    resume_state: list[StoredMessage] | None = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    name: str = DEFAULT_AGENT_NAME
    model: ModelConfig = Field(default_factory=default_model_config)
    tools: list[ToolConfig] = Field(default_factory=list)
    custom_tools: list[CustomTool] = Field(default_factory=list)
    capabilities: list[CapabilityConfig] = Field(default_factory=list)
    credentials: dict[CredentialType, str] = Field(default_factory=dict)
    max_iterations: int = Field(default_factory=default_max_iterations, ge=4)
    streaming_callback: StreamingCallback | None = None
    before_tool_call: BeforeToolCallHook | None = None
    after_tool_call: AfterToolCallHook | None = None
    after_llm_call: AfterLLMCallHook | None = None
    expected_output_schema: Any = None
    memory_enabled: bool = False

    @property
    def is_capability_agent(self) -> bool:
        return self.name.startswith(CAPABILITY_AGENT_PREFIX)


class ToolCallRecord(BaseModel):
    """A tool call paired with its result."""

    tool: str
    input: Any = None
    output: Any = None


class AgentResult(BaseModel):
    """Outcome of an agent run. Failures are reported, not raised."""

    response: str = ""
    reasoning: str | None = None
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    iterations: int = 0
    total_cost: float | None = None
    usage: TokenUsage | None = None
    success: bool = False
    error: str = ""
