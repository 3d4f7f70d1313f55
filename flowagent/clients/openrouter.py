"""Direct OpenRouter chat completions client for deep research models."""

from dataclasses import dataclass
from typing import Any

import httpx

from flowagent.config import get_settings
from flowagent.errors import DeepResearchError
from flowagent.utils.logging import get_logger

logger = get_logger(__name__)

APP_REFERER = "https://github.com/flowagent/flowagent"
APP_TITLE = "flowagent"


@dataclass
class DeepResearchResponse:
    """Parsed deep research completion."""

    id: str | None
    content: str
    reasoning: str | None
    total_cost: float | None
    total_tokens: int | None


class OpenRouterClient:
    """Minimal async client for OpenRouter's chat completions endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        """Initialize the client.

        Args:
            api_key: OpenRouter API key
            base_url: API base URL (defaults to settings)
            http_client: Pre-built client, mainly for tests
            timeout: Request timeout in seconds (defaults to settings)
        """
        settings = get_settings()
        self.api_key = api_key
        self.base_url = (base_url or settings.openrouter_base_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout
        self._http_client = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": APP_REFERER,
            "X-Title": APP_TITLE,
        }

    async def create_completion(
        self,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float,
        max_tokens: int,
    ) -> DeepResearchResponse:
        """Run a single completion with usage accounting enabled.

        Raises:
            DeepResearchError: On transport failure or a non-2xx response
        """
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "usage": {"include": True},
        }
        url = f"{self.base_url}/chat/completions"
        logger.info(f"Calling OpenRouter deep research model {model}")

        client = self._http_client or httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await client.post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as e:
            raise DeepResearchError(f"OpenRouter request failed: {e}") from e
        finally:
            if self._http_client is None:
                await client.aclose()

        if response.is_error:
            detail = response.reason_phrase
            try:
                body = response.json()
            except ValueError:
                body = None
            error = body.get("error") if isinstance(body, dict) else None
            if isinstance(error, dict):
                detail = error.get("message") or detail
            elif isinstance(error, str) and error:
                detail = error
            raise DeepResearchError(f"OpenRouter API error: {response.status_code} - {detail}")

        data = response.json()
        choices = data.get("choices") or [{}]
        message = choices[0].get("message") or {}
        usage = data.get("usage") or {}

        total_cost = usage.get("cost")
        if isinstance(total_cost, int | float):
            logger.info(f"Deep research total cost: ${total_cost:.4f}")

        return DeepResearchResponse(
            id=data.get("id"),
            content=message.get("content") or "",
            reasoning=message.get("reasoning"),
            total_cost=total_cost,
            total_tokens=usage.get("total_tokens"),
        )
