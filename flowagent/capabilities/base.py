"""Capability definitions and their per-run context."""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from flowagent.graphs.hooks import AfterToolCallHook, BeforeToolCallHook
from flowagent.graphs.state import ExecutionContext
from flowagent.models.credentials import Credentials, CredentialType
from flowagent.models.llm import ReasoningEffort
from flowagent.tools.base import ToolFunc


class CapabilityInput(BaseModel):
    """A user-configurable value a capability accepts."""

    name: str = Field(..., min_length=1)
    type: Literal["string", "number", "boolean", "string[]"] = "string"
    description: str = ""
    required: bool = True
    default: Any = None


class CapabilityToolDef(BaseModel):
    """Serializable description of a tool a capability provides."""

    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    parameter_schema: dict[str, Any] = Field(default_factory=dict)
    requires_approval: bool = False
    master_tool: bool = Field(default=False, description="Expose directly on a delegating agent")


class ModelConfigOverride(BaseModel):
    """Model settings a capability imposes when it runs alone."""

    model: str | None = None
    reasoning_effort: ReasoningEffort | None = None
    max_tokens: int | None = Field(default=None, gt=0)
    max_iterations: int | None = Field(default=None, gt=0)


class CapabilityMetadata(BaseModel):
    """Serializable capability metadata."""

    model_config = ConfigDict(protected_namespaces=())

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    version: str = "1.0.0"
    required_credentials: list[CredentialType] = Field(default_factory=list)
    optional_credentials: list[CredentialType] = Field(default_factory=list)
    inputs: list[CapabilityInput] = Field(default_factory=list)
    tools: list[CapabilityToolDef] = Field(default_factory=list)
    system_prompt_addition: str | None = None
    model_config_override: ModelConfigOverride | None = None
    delegation_hint: str | None = None
    hidden: bool = False


@dataclass
class ToolScope:
    """Identifies the capability tool currently executing."""

    capability_id: str
    tool_name: str


@dataclass
class CapabilityRuntimeContext:
    """What a capability's factories see for one run.

    ``tool_scope`` is swapped in for the duration of each capability tool
    invocation and restored afterwards.
    """

    capability_id: str
    credentials: Credentials = field(default_factory=dict)
    inputs: dict[str, Any] = field(default_factory=dict)
    execution_context: ExecutionContext | None = None
    tool_scope: ToolScope | None = None


PromptFactory = Callable[[CapabilityRuntimeContext], Awaitable[str | None] | str | None]


@dataclass
class CapabilityDefinition:
    """A registered capability: metadata plus the runtime factories."""

    metadata: CapabilityMetadata
    create_tools: Callable[[CapabilityRuntimeContext], dict[str, ToolFunc]]
    create_system_prompt: PromptFactory | None = None
    create_delegation_hint: PromptFactory | None = None
    create_response_append: PromptFactory | None = None
    before_tool_call: BeforeToolCallHook | None = None
    after_tool_call: AfterToolCallHook | None = None

    @property
    def id(self) -> str:
        return self.metadata.id

    @property
    def credential_types(self) -> list[CredentialType]:
        return [*self.metadata.required_credentials, *self.metadata.optional_credentials]


async def call_prompt_factory(factory: PromptFactory | None, ctx: CapabilityRuntimeContext) -> str | None:
    """Call a sync or async prompt factory."""
    if factory is None:
        return None
    result = factory(ctx)
    if inspect.isawaitable(result):
        result = await result
    return result


def resolve_capability_credentials(
    capability: CapabilityDefinition,
    agent_credentials: Credentials,
    explicit: Credentials | None = None,
) -> Credentials:
    """Credentials a capability receives for a run.

    Agent-level values for each required or optional credential type, overlaid
    by the capability config's explicit credentials.
    """
    resolved: Credentials = {}
    for cred_type in capability.credential_types:
        value = agent_credentials.get(cred_type)
        if value:
            resolved[cred_type] = value
    if explicit:
        resolved.update(explicit)
    return resolved
