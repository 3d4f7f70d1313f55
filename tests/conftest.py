"""Shared fakes and fixtures for the test suite."""

import itertools
from typing import Any

import pytest
from langchain_core.messages import AIMessage, BaseMessage

from flowagent.capabilities.registry import CapabilityRegistry
from flowagent.clients.providers import ModelProviderAdapter
from flowagent.errors import UnsupportedProviderError
from flowagent.models.credentials import Credentials, CredentialType
from flowagent.models.llm import ModelConfig
from flowagent.tools.registry import ToolRegistry

_call_ids = itertools.count(1)


def tool_call_message(name: str, args: dict[str, Any], content: str = "", call_id: str | None = None) -> AIMessage:
    """AI message requesting a single tool call."""
    return AIMessage(
        content=content,
        tool_calls=[{"id": call_id or f"call_{next(_call_ids)}", "name": name, "args": args}],
    )


class ScriptedChatModel:
    """Chat model stand-in answering from a script.

    Entries are AI messages, exceptions to raise, or callables receiving the
    prompt messages. The last entry repeats once the script runs out.
    """

    def __init__(self, *script: Any):
        self.script = list(script)
        self.calls: list[list[BaseMessage]] = []
        self.bound_tools: list[Any] | None = None

    def bind_tools(self, tools: list[Any]) -> "ScriptedChatModel":
        self.bound_tools = tools
        return self

    async def ainvoke(self, messages: list[BaseMessage]) -> AIMessage:
        self.calls.append(list(messages))
        entry = self.script.pop(0) if len(self.script) > 1 else self.script[-1]
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            return entry(messages)
        return entry


class FakeProviderAdapter(ModelProviderAdapter):
    """Hands out scripted models by model id and records each build."""

    def __init__(self, models: dict[str, ScriptedChatModel]):
        super().__init__(openrouter_base_url="https://openrouter.test/api/v1")
        self.models = models
        self.built: list[ModelConfig] = []

    def build(self, model_config: ModelConfig, credentials: Credentials, streaming: bool = False) -> Any:
        self.built.append(model_config)
        try:
            return self.models[model_config.model]
        except KeyError:
            raise UnsupportedProviderError(model_config.model) from None


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def credentials() -> Credentials:
    """Credentials for every supported provider."""
    return {
        CredentialType.OPENAI_CRED: "openai-key",
        CredentialType.GOOGLE_GEMINI_CRED: "google-key",
        CredentialType.ANTHROPIC_CRED: "anthropic-key",
        CredentialType.OPENROUTER_CRED: "openrouter-key",
    }


@pytest.fixture
def tool_registry() -> ToolRegistry:
    return ToolRegistry()


@pytest.fixture
def capability_registry() -> CapabilityRegistry:
    return CapabilityRegistry()


@pytest.fixture
def events() -> list:
    """Collected streaming events; pass ``events.append`` as the callback."""
    return []
