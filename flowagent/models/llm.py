"""Model configuration and usage types (provider-agnostic)."""

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field

ReasoningEffort = Literal["low", "medium", "high"]

MIN_MAX_TOKENS = 10_000

# Tiered model picks
RECOMMENDED_MODELS: dict[str, str] = {
    "BEST": "google/gemini-3-pro-preview",
    "PRO": "google/gemini-3-flash-preview",
    "FAST": "google/gemini-2.5-flash-lite",
    "FAST_ALT": "anthropic/claude-haiku-4-5",
    "CHAT": "anthropic/claude-sonnet-4-6",
    "IMAGE": "google/gemini-3-pro-image-preview",
}

# These models cannot use the tool-calling transport
DEEP_RESEARCH_MODELS = frozenset(
    {
        "openrouter/openai/o3-deep-research",
        "openrouter/openai/o4-mini-deep-research",
    }
)


class BackupModelConfig(BaseModel):
    """Model to fall back to when the primary model fails.

    Absent fields are inherited from the primary configuration.
    """

    model: str = Field(..., description="Backup model in provider/model-name format")
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, gt=0)
    reasoning_effort: ReasoningEffort | None = None
    max_retries: int | None = Field(default=None, ge=0, le=10)


class ModelConfig(BaseModel):
    """Configuration for the model driving an agent run."""

    model: str = Field(default=RECOMMENDED_MODELS["FAST"], description="Model in provider/model-name format")
    temperature: float = Field(default=1.0, ge=0, le=2)
    max_tokens: int = Field(default=64_000, gt=0)
    reasoning_effort: ReasoningEffort | None = None
    max_retries: int = Field(default=3, ge=0, le=10)
    provider: list[str] | None = Field(default=None, description="Upstream provider order (OpenRouter only)")
    json_mode: bool = False
    backup_model: BackupModelConfig | None = None

    @property
    def provider_name(self) -> str:
        """Provider segment of the model id."""
        return self.model.split("/", 1)[0]

    @property
    def is_deep_research(self) -> bool:
        return self.model in DEEP_RESEARCH_MODELS

    def with_backup(self) -> "ModelConfig":
        """Build the effective configuration for the backup model.

        Raises:
            ValueError: If this configuration has no backup model
        """
        backup = self.backup_model
        if backup is None:
            raise ValueError(f"Model config for {self.model} has no backup model")

        return ModelConfig(
            model=backup.model,
            temperature=backup.temperature if backup.temperature is not None else self.temperature,
            max_tokens=backup.max_tokens if backup.max_tokens is not None else self.max_tokens,
            reasoning_effort=backup.reasoning_effort if backup.reasoning_effort is not None else self.reasoning_effort,
            max_retries=backup.max_retries if backup.max_retries is not None else self.max_retries,
            provider=self.provider,
            json_mode=self.json_mode,
            backup_model=None,  # never chain backups
        )


@dataclass
class TokenUsage:
    """Token usage aggregated across model turns."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def add(self, input_tokens: int = 0, output_tokens: int = 0, total_tokens: int = 0) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.total_tokens += total_tokens or (input_tokens + output_tokens)
