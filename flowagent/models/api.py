"""Request and response models for the HTTP API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from flowagent.config import default_max_iterations, default_model_config
from flowagent.models.agent import (
    DEFAULT_AGENT_NAME,
    DEFAULT_SYSTEM_PROMPT,
    AgentRequest,
    CapabilityConfig,
    ConversationMessage,
    ImageInput,
    StoredMessage,
    ToolConfig,
)
from flowagent.models.credentials import Credentials, CredentialType
from flowagent.models.llm import ModelConfig


class AgentRunRequest(BaseModel):
    """Request model for the agent run endpoint.

    Only pre-registered tools and capabilities can be referenced over HTTP.
    """

    message: str = Field(..., min_length=1)
    images: list[ImageInput] = Field(default_factory=list)
    conversation_history: list[ConversationMessage] | None = None
    resume_state: list[StoredMessage] | None = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    name: str = DEFAULT_AGENT_NAME
    model: ModelConfig = Field(default_factory=default_model_config)
    tools: list[ToolConfig] = Field(default_factory=list)
    capabilities: list[CapabilityConfig] = Field(default_factory=list)
    credentials: dict[CredentialType, str] = Field(default_factory=dict)
    max_iterations: int = Field(default_factory=default_max_iterations, ge=4)
    expected_output_schema: dict[str, Any] | None = None

    def to_agent_request(self, credentials: Credentials) -> AgentRequest:
        """Build the in-process request using the resolved ``credentials``."""
        return AgentRequest(
            message=self.message,
            images=self.images,
            conversation_history=self.conversation_history,
            resume_state=self.resume_state,
            system_prompt=self.system_prompt,
            name=self.name,
            model=self.model,
            tools=self.tools,
            capabilities=self.capabilities,
            credentials=credentials,
            max_iterations=self.max_iterations,
            expected_output_schema=self.expected_output_schema,
        )


class ToolInfo(BaseModel):
    """A pre-registered tool bubble."""

    name: str
    description: str
    credential_types: list[CredentialType] = Field(default_factory=list)


class CapabilityInfo(BaseModel):
    """Public description of a registered capability."""

    id: str
    name: str
    description: str
    tools: list[str] = Field(default_factory=list)
    required_credentials: list[CredentialType] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
