"""Chat model construction for the supported providers."""

from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_google_genai import ChatGoogleGenerativeAI, HarmBlockThreshold, HarmCategory
from langchain_openai import ChatOpenAI

from flowagent.config import get_settings
from flowagent.errors import MissingCredentialError, UnsupportedProviderError
from flowagent.models.credentials import Credentials, CredentialType
from flowagent.models.llm import ModelConfig, ReasoningEffort
from flowagent.utils.logging import get_logger

logger = get_logger(__name__)

PROVIDER_CREDENTIALS: dict[str, CredentialType] = {
    "openai": CredentialType.OPENAI_CRED,
    "google": CredentialType.GOOGLE_GEMINI_CRED,
    "anthropic": CredentialType.ANTHROPIC_CRED,
    "openrouter": CredentialType.OPENROUTER_CRED,
}

# Thinking token budgets per reasoning effort
THINKING_BUDGETS: dict[str, int] = {
    "low": 1025,
    "medium": 5000,
    "high": 10000,
}

GEMINI_SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_NONE,
}


def split_model_id(model: str) -> tuple[str, str]:
    """Split ``provider/model-name`` on the first slash."""
    provider, _, model_name = model.partition("/")
    return provider, model_name


def credential_type_for_model(model: str) -> CredentialType:
    """Credential type needed to call ``model``.

    Raises:
        UnsupportedProviderError: If the provider segment is unknown
    """
    provider, _ = split_model_id(model)
    try:
        return PROVIDER_CREDENTIALS[provider]
    except KeyError:
        raise UnsupportedProviderError(provider) from None


def thinking_budget(effort: ReasoningEffort) -> int:
    return THINKING_BUDGETS[effort]


class ModelProviderAdapter:
    """Turns a ModelConfig and credentials into a configured chat model.

    No network call is made while building.
    """

    def __init__(self, openrouter_base_url: str | None = None):
        self.openrouter_base_url = openrouter_base_url or get_settings().openrouter_base_url

    def build(self, model_config: ModelConfig, credentials: Credentials, streaming: bool = False) -> BaseChatModel:
        """Build the chat model for ``model_config``.

        Args:
            model_config: Model id and sampling/reasoning settings
            credentials: Available credentials, keyed by type
            streaming: Whether a streaming callback is attached

        Returns:
            Configured LangChain chat model

        Raises:
            UnsupportedProviderError: Unknown provider prefix
            MissingCredentialError: No credential for the provider
        """
        provider, model_name = split_model_id(model_config.model)
        cred_type = credential_type_for_model(model_config.model)
        api_key = credentials.get(cred_type)
        if not api_key:
            raise MissingCredentialError(provider)

        logger.debug(f"Building {provider} model {model_name} (streaming={streaming})")
        builder = getattr(self, f"_build_{provider}")
        return builder(model_name, model_config, api_key, streaming)

    def _build_openai(self, model_name: str, config: ModelConfig, api_key: str, streaming: bool) -> BaseChatModel:
        kwargs: dict[str, Any] = {}
        if config.reasoning_effort:
            kwargs["reasoning"] = {"effort": config.reasoning_effort, "summary": "auto"}
        return ChatOpenAI(
            model=model_name,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            api_key=api_key,
            streaming=streaming,
            max_retries=config.max_retries,
            **kwargs,
        )

    def _build_google(self, model_name: str, config: ModelConfig, api_key: str, streaming: bool) -> BaseChatModel:
        kwargs: dict[str, Any] = {}
        if config.reasoning_effort:
            kwargs["thinking_budget"] = thinking_budget(config.reasoning_effort)
            kwargs["include_thoughts"] = True
        # Streaming stays off for Gemini regardless of the callback
        return ChatGoogleGenerativeAI(
            model=model_name,
            temperature=config.temperature,
            max_output_tokens=config.max_tokens,
            google_api_key=api_key,
            max_retries=config.max_retries,
            safety_settings=GEMINI_SAFETY_SETTINGS,
            disable_streaming=True,
            **kwargs,
        )

    def _build_anthropic(self, model_name: str, config: ModelConfig, api_key: str, streaming: bool) -> BaseChatModel:
        if config.reasoning_effort:
            # Anthropic requires temperature=1 with thinking, and rejects top_p
            return ChatAnthropic(
                model=model_name,
                temperature=1,
                max_tokens=config.max_tokens,
                api_key=api_key,
                streaming=True,
                max_retries=config.max_retries,
                thinking={"type": "enabled", "budget_tokens": thinking_budget(config.reasoning_effort)},
            )
        return ChatAnthropic(
            model=model_name,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            api_key=api_key,
            streaming=True,
            max_retries=config.max_retries,
            top_p=None,
        )

    def _build_openrouter(self, model_name: str, config: ModelConfig, api_key: str, streaming: bool) -> BaseChatModel:
        extra_body: dict[str, Any] = {
            "reasoning": {"effort": config.reasoning_effort or "medium", "exclude": False},
        }
        if config.provider:
            extra_body["provider"] = {"order": config.provider}

        return ChatOpenAI(
            model=model_name,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            api_key=api_key,
            base_url=self.openrouter_base_url,
            streaming=streaming,
            max_retries=config.max_retries,
            extra_body=extra_body,
        )
