"""Runtime settings and environment-backed credential resolution."""

import os

from pydantic import BaseModel, Field

from flowagent.models.credentials import CREDENTIAL_ENV_MAP, Credentials, CredentialType
from flowagent.models.llm import RECOMMENDED_MODELS, ModelConfig

DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class AgentSettings(BaseModel):
    """Process-wide defaults for agent runs."""

    log_level: str = "INFO"
    default_model: str = RECOMMENDED_MODELS["FAST"]
    max_iterations: int = Field(default=40, ge=4)
    openrouter_base_url: str = DEFAULT_OPENROUTER_BASE_URL
    request_timeout: float = 600.0

    @classmethod
    def from_env(cls) -> "AgentSettings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            default_model=os.getenv("FLOWAGENT_DEFAULT_MODEL", defaults.default_model),
            max_iterations=int(os.getenv("FLOWAGENT_MAX_ITERATIONS", defaults.max_iterations)),
            openrouter_base_url=os.getenv("OPENROUTER_BASE_URL", defaults.openrouter_base_url),
            request_timeout=float(os.getenv("FLOWAGENT_REQUEST_TIMEOUT", defaults.request_timeout)),
        )


class EnvCredentialResolver:
    """Resolves credentials from environment variables.

    Explicit credentials always win over the environment.
    """

    def __init__(self, env_map: dict[CredentialType, str] | None = None):
        self.env_map = env_map or CREDENTIAL_ENV_MAP

    def resolve(self, explicit: Credentials | None = None) -> Credentials:
        """Return a credential map combining the environment and explicit values."""
        resolved: Credentials = {}
        for cred_type, env_name in self.env_map.items():
            value = os.getenv(env_name)
            if value:
                resolved[cred_type] = value
        if explicit:
            resolved.update(explicit)
        return resolved


_settings: AgentSettings | None = None


def get_settings() -> AgentSettings:
    """Get or create the settings instance."""
    global _settings
    if _settings is None:
        _settings = AgentSettings.from_env()
    return _settings


def default_model_config() -> ModelConfig:
    """Model config used when a request does not name one."""
    return ModelConfig(model=get_settings().default_model)


def default_max_iterations() -> int:
    return get_settings().max_iterations
