"""Exception hierarchy for the agent runtime."""


class AgentError(Exception):
    """Base class for all agent runtime errors."""


class ConfigurationError(AgentError):
    """Raised when an agent run cannot be set up from its configuration."""


class UnsupportedProviderError(ConfigurationError):
    """Raised when a model id names a provider the runtime does not know."""

    def __init__(self, provider: str):
        super().__init__(f"Unsupported model provider: {provider}")
        self.provider = provider


class MissingCredentialError(ConfigurationError):
    """Raised when no credential is available for the resolved provider."""

    def __init__(self, provider: str):
        super().__init__(f"No credential found for provider: {provider}")
        self.provider = provider


class InvalidToolSchemaError(ConfigurationError):
    """Raised when a tool parameter schema cannot be turned into an input model."""


class ProviderError(AgentError):
    """Raised for failures reported by a model provider."""


class TerminalProviderError(ProviderError):
    """A provider condition that retrying or falling back cannot fix.

    ``reason`` is one of ``"safety"`` or ``"max_tokens"``.
    """

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason


class DeepResearchError(ProviderError):
    """Raised when the direct deep-research request fails."""


class IterationLimitError(AgentError):
    """Raised when the control loop exceeds its step budget."""

    def __init__(self, max_iterations: int):
        super().__init__(
            f"Agent exceeded the maximum of {max_iterations} iterations without reaching a final answer"
        )
        self.max_iterations = max_iterations


class ImageFetchError(AgentError):
    """Raised when an image given by URL cannot be downloaded."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to load image from URL {url}: {reason}")
        self.url = url
