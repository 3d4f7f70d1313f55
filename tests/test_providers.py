"""Tests for the model provider adapter."""

import pytest
from langchain_anthropic import ChatAnthropic
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI

from flowagent.clients.providers import (
    GEMINI_SAFETY_SETTINGS,
    ModelProviderAdapter,
    credential_type_for_model,
    split_model_id,
)
from flowagent.errors import MissingCredentialError, UnsupportedProviderError
from flowagent.models.credentials import CredentialType
from flowagent.models.llm import ModelConfig


@pytest.fixture
def adapter():
    return ModelProviderAdapter(openrouter_base_url="https://openrouter.ai/api/v1")


class TestModelIds:
    """Tests for model id parsing and credential lookup."""

    def test_split_on_first_slash(self):
        """Test that only the first slash separates the provider."""
        assert split_model_id("openrouter/openai/o3-deep-research") == ("openrouter", "openai/o3-deep-research")
        assert split_model_id("anthropic/claude-sonnet-4-6") == ("anthropic", "claude-sonnet-4-6")

    def test_credential_types(self):
        """Test the provider to credential mapping."""
        assert credential_type_for_model("openai/gpt-4.1") == CredentialType.OPENAI_CRED
        assert credential_type_for_model("google/gemini-2.5-pro") == CredentialType.GOOGLE_GEMINI_CRED
        assert credential_type_for_model("anthropic/claude-haiku-4-5") == CredentialType.ANTHROPIC_CRED
        assert credential_type_for_model("openrouter/x-ai/grok-4") == CredentialType.OPENROUTER_CRED

    def test_unknown_provider(self):
        """Test that an unknown provider prefix is rejected."""
        with pytest.raises(UnsupportedProviderError, match="mistral"):
            credential_type_for_model("mistral/large")


class TestBuild:
    """Tests for chat model construction."""

    def test_unknown_provider_raises(self, adapter, credentials):
        """Test that building an unknown provider raises."""
        with pytest.raises(UnsupportedProviderError):
            adapter.build(ModelConfig(model="cohere/command"), credentials)

    def test_missing_credential_raises(self, adapter):
        """Test that a missing credential raises before any model is built."""
        with pytest.raises(MissingCredentialError, match="anthropic"):
            adapter.build(ModelConfig(model="anthropic/claude-haiku-4-5"), {CredentialType.OPENAI_CRED: "key"})

    def test_openai(self, adapter, credentials):
        """Test OpenAI parameters and reasoning mapping."""
        config = ModelConfig(model="openai/gpt-4.1", temperature=0.5, max_tokens=12_000, reasoning_effort="high")
        model = adapter.build(config, credentials, streaming=True)

        assert isinstance(model, ChatOpenAI)
        assert model.model_name == "gpt-4.1"
        assert model.temperature == 0.5
        assert model.max_tokens == 12_000
        assert model.streaming is True
        assert model.reasoning == {"effort": "high", "summary": "auto"}

    def test_anthropic_with_thinking(self, adapter, credentials):
        """Test that thinking pins temperature to 1 and sets the budget tier."""
        config = ModelConfig(model="anthropic/claude-sonnet-4-6", temperature=0.2, reasoning_effort="medium")
        model = adapter.build(config, credentials)

        assert isinstance(model, ChatAnthropic)
        assert model.model == "claude-sonnet-4-6"
        assert model.temperature == 1
        assert model.thinking == {"type": "enabled", "budget_tokens": 5000}
        assert model.top_p is None

    def test_anthropic_without_thinking(self, adapter, credentials):
        """Test plain Anthropic sampling parameters."""
        model = adapter.build(ModelConfig(model="anthropic/claude-haiku-4-5", temperature=0.2), credentials)

        assert model.temperature == 0.2
        assert model.top_p is None
        assert model.streaming is True

    def test_google(self, adapter, credentials):
        """Test Gemini thinking budget, safety settings and disabled streaming."""
        config = ModelConfig(model="google/gemini-2.5-flash", reasoning_effort="low")
        model = adapter.build(config, credentials, streaming=True)

        assert isinstance(model, ChatGoogleGenerativeAI)
        assert model.thinking_budget == 1025
        assert model.include_thoughts is True
        assert model.disable_streaming is True
        assert model.safety_settings == GEMINI_SAFETY_SETTINGS

    def test_openrouter(self, adapter, credentials):
        """Test OpenRouter routing through the OpenAI-compatible client."""
        config = ModelConfig(model="openrouter/x-ai/grok-4", provider=["xai", "together"])
        model = adapter.build(config, credentials)

        assert isinstance(model, ChatOpenAI)
        assert model.model_name == "x-ai/grok-4"
        assert model.openai_api_base == "https://openrouter.ai/api/v1"
        assert model.extra_body == {
            "provider": {"order": ["xai", "together"]},
            "reasoning": {"effort": "medium", "exclude": False},
        }

    def test_openrouter_without_provider_order(self, adapter, credentials):
        """Test that no upstream provider routing is sent when none is configured."""
        config = ModelConfig(model="openrouter/x-ai/grok-4", reasoning_effort="high")
        model = adapter.build(config, credentials)

        assert "provider" not in model.extra_body
        assert model.extra_body == {"reasoning": {"effort": "high", "exclude": False}}
