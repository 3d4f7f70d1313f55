"""Tests for data models and configuration."""

import json
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from flowagent.config import AgentSettings, EnvCredentialResolver
from flowagent.models.agent import AgentRequest, AgentResult
from flowagent.models.api import AgentRunRequest
from flowagent.models.credentials import CredentialType
from flowagent.models.llm import BackupModelConfig, ModelConfig, TokenUsage


class TestModelConfig:
    """Tests for model configuration."""

    def test_defaults(self):
        """Test the default configuration."""
        config = ModelConfig()
        assert config.model == "google/gemini-2.5-flash-lite"
        assert config.provider_name == "google"
        assert config.max_retries == 3
        assert config.is_deep_research is False

    @pytest.mark.parametrize(
        "field",
        [{"temperature": 2.5}, {"temperature": -0.1}, {"max_tokens": 0}, {"max_retries": 11}],
    )
    def test_bounds(self, field):
        """Test that out-of-range values are rejected."""
        with pytest.raises(ValidationError):
            ModelConfig(**field)

    def test_deep_research_detection(self):
        assert ModelConfig(model="openrouter/openai/o3-deep-research").is_deep_research is True

    def test_backup_inherits_unset_fields(self):
        """Test that the backup config inherits from the primary and never chains."""
        config = ModelConfig(
            model="openai/gpt-4.1",
            temperature=0.3,
            max_tokens=20_000,
            reasoning_effort="high",
            json_mode=True,
            backup_model=BackupModelConfig(model="anthropic/claude-haiku-4-5", max_tokens=12_000),
        )
        backup = config.with_backup()

        assert backup.model == "anthropic/claude-haiku-4-5"
        assert backup.temperature == 0.3
        assert backup.max_tokens == 12_000
        assert backup.reasoning_effort == "high"
        assert backup.json_mode is True
        assert backup.backup_model is None

    def test_with_backup_requires_backup(self):
        with pytest.raises(ValueError):
            ModelConfig().with_backup()


class TestAgentRequest:
    """Tests for the in-process request model."""

    def test_minimum_iterations(self):
        """Test that fewer than four iterations is rejected."""
        with pytest.raises(ValidationError):
            AgentRequest(message="hi", max_iterations=3)
        assert AgentRequest(message="hi", max_iterations=4).max_iterations == 4

    def test_capability_agent_name(self):
        assert AgentRequest(message="hi", name="Capability Agent: Notes").is_capability_agent is True
        assert AgentRequest(message="hi").is_capability_agent is False

    def test_result_serializes_usage(self):
        """Test that a result with usage dumps to plain JSON."""
        result = AgentResult(response="ok", usage=TokenUsage(1, 2, 3), success=True)
        data = json.loads(result.model_dump_json())
        assert data["usage"] == {"input_tokens": 1, "output_tokens": 2, "total_tokens": 3}


class TestAgentRunRequest:
    """Tests for the HTTP request model."""

    def test_empty_message_rejected(self):
        with pytest.raises(ValidationError):
            AgentRunRequest(message="")

    def test_from_json(self):
        """Test parsing a request body and converting it."""
        data = json.loads(
            '{"message": "hello", "model": {"model": "openai/gpt-4.1"}, '
            '"tools": [{"name": "code-edit-tool"}], "conversation_history": [{"role": "user", "content": "hi"}]}'
        )
        request = AgentRunRequest.model_validate(data)
        agent_request = request.to_agent_request({CredentialType.OPENAI_CRED: "key"})

        assert agent_request.model.model == "openai/gpt-4.1"
        assert agent_request.tools[0].name == "code-edit-tool"
        assert agent_request.conversation_history[0].content == "hi"
        assert agent_request.credentials == {CredentialType.OPENAI_CRED: "key"}
        assert agent_request.streaming_callback is None


class TestConfig:
    """Tests for settings and credential resolution."""

    def test_settings_from_env(self):
        with patch.dict(os.environ, {"FLOWAGENT_MAX_ITERATIONS": "12", "LOG_LEVEL": "DEBUG"}):
            settings = AgentSettings.from_env()
        assert settings.max_iterations == 12
        assert settings.log_level == "DEBUG"

    def test_request_defaults_follow_settings(self):
        """Test that configured default model and iteration limit apply to new requests."""
        settings = AgentSettings(default_model="openai/gpt-5", max_iterations=12)
        with patch("flowagent.config._settings", settings):
            request = AgentRequest(message="hi")
            run_request = AgentRunRequest(message="hi")

        assert request.model.model == "openai/gpt-5"
        assert request.max_iterations == 12
        assert run_request.model.model == "openai/gpt-5"
        assert run_request.to_agent_request({}).max_iterations == 12

    def test_explicit_values_override_settings(self):
        settings = AgentSettings(default_model="openai/gpt-5", max_iterations=12)
        with patch("flowagent.config._settings", settings):
            request = AgentRequest(message="hi", model=ModelConfig(model="anthropic/claude-haiku-4-5"), max_iterations=6)

        assert request.model.model == "anthropic/claude-haiku-4-5"
        assert request.max_iterations == 6

    def test_explicit_credentials_win(self):
        """Test that explicit credentials override environment values."""
        env = {"OPENAI_API_KEY": "env-openai", "ANTHROPIC_API_KEY": "env-anthropic"}
        with patch.dict(os.environ, env, clear=True):
            resolved = EnvCredentialResolver().resolve({CredentialType.OPENAI_CRED: "explicit"})

        assert resolved == {
            CredentialType.OPENAI_CRED: "explicit",
            CredentialType.ANTHROPIC_CRED: "env-anthropic",
        }
