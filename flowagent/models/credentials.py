"""Credential kinds understood by the runtime."""

from enum import StrEnum


class CredentialType(StrEnum):
    """Kinds of secrets an agent run can be handed."""

    # AI providers
    OPENAI_CRED = "OPENAI_CRED"
    GOOGLE_GEMINI_CRED = "GOOGLE_GEMINI_CRED"
    ANTHROPIC_CRED = "ANTHROPIC_CRED"
    OPENROUTER_CRED = "OPENROUTER_CRED"

    # Service integrations
    SLACK_CRED = "SLACK_CRED"
    GITHUB_TOKEN = "GITHUB_TOKEN"
    GOOGLE_DRIVE_CRED = "GOOGLE_DRIVE_CRED"
    FIRECRAWL_API_KEY = "FIRECRAWL_API_KEY"


# Environment variable each credential is read from when not passed explicitly
CREDENTIAL_ENV_MAP: dict[CredentialType, str] = {
    CredentialType.OPENAI_CRED: "OPENAI_API_KEY",
    CredentialType.GOOGLE_GEMINI_CRED: "GOOGLE_API_KEY",
    CredentialType.ANTHROPIC_CRED: "ANTHROPIC_API_KEY",
    CredentialType.OPENROUTER_CRED: "OPENROUTER_API_KEY",
    CredentialType.SLACK_CRED: "SLACK_TOKEN",
    CredentialType.GITHUB_TOKEN: "GITHUB_TOKEN",
    CredentialType.GOOGLE_DRIVE_CRED: "GOOGLE_DRIVE_TOKEN",
    CredentialType.FIRECRAWL_API_KEY: "FIRECRAWL_API_KEY",
}

Credentials = dict[CredentialType, str]
