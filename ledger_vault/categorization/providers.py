"""
AI Provider Clients — One text-completion client per supported provider.

Each client turns ``(prompt, api_key, model)`` into the provider's raw
response text with exactly one HTTP call. Providers that block browser CORS
(Anthropic) are reached through the stateless relay in ``ledger_vault.relay``.

The registry is checked at import time to cover every ``AiProvider`` member,
so adding a provider to the enum without a client fails immediately.

Security Note:
    API keys travel in request headers (or the relay body) only; they are
    never put in URLs or log lines.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import aiohttp
import orjson

from ..exceptions import ProviderError
from ..models import AiProvider, AiProviderSettings
from ..transport import client_session, read_json
from ..vault.config import VaultConfig

logger = logging.getLogger("ledger_vault.categorization")

DEFAULT_MODELS: dict[AiProvider, str] = {
    AiProvider.OPENAI: "gpt-4o-mini",
    AiProvider.ANTHROPIC: "claude-3-5-haiku-latest",
    AiProvider.GOOGLE: "gemini-2.0-flash",
}

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
GOOGLE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

TEMPERATURE = 0.1


class ProviderClient(ABC):
    """Text-completion client for one AI provider."""

    provider: AiProvider
    label: str = "AI provider"

    def __init__(self, timeout: float = 30.0):
        self._timeout = timeout

    @abstractmethod
    async def complete(self, prompt: str, api_key: str, model: str) -> str:
        """Send ``prompt`` and return the raw response text.

        Raises:
            ProviderError: On network failure, non-2xx status or missing configuration.
        """

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        try:
            async with client_session(self._timeout) as session:
                async with session.post(url, json=payload, headers=headers) as resp:
                    if resp.status >= 300:
                        body = await resp.text()
                        logger.warning(
                            "%s returned HTTP %d", self.label, resp.status,
                        )
                        raise ProviderError(
                            f"{self.label} API error ({resp.status}): {body[:200]}",
                            details={"status": resp.status},
                        )
                    return await read_json(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise ProviderError(
                f"{self.label} request failed: {type(err).__name__}",
            ) from err
        except orjson.JSONDecodeError as err:
            raise ProviderError(
                f"{self.label} returned a non-JSON body",
            ) from err


class OpenAIClient(ProviderClient):
    provider = AiProvider.OPENAI
    label = "OpenAI"

    def __init__(self, timeout: float = 30.0, url: str = OPENAI_URL):
        super().__init__(timeout)
        self._url = url

    async def complete(self, prompt: str, api_key: str, model: str) -> str:
        data = await self._post_json(
            self._url,
            {
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": TEMPERATURE,
                "response_format": {"type": "json_object"},
            },
            headers={"Authorization": f"Bearer {api_key}"},
        )
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            return ""


class AnthropicRelayClient(ProviderClient):
    """Anthropic Messages API through the stateless CORS relay."""

    provider = AiProvider.ANTHROPIC
    label = "Anthropic"

    def __init__(self, timeout: float = 30.0, relay_url: Optional[str] = None):
        super().__init__(timeout)
        self._relay_url = relay_url.rstrip("/") if relay_url else None

    async def complete(self, prompt: str, api_key: str, model: str) -> str:
        if not self._relay_url:
            raise ProviderError(
                "An API base URL is required for Anthropic (relay). "
                "Set LEDGER_VAULT_API_BASE_URL.",
            )
        data = await self._post_json(
            f"{self._relay_url}/ai/proxy",
            {
                "provider": self.provider.value,
                "apiKey": api_key,
                "body": {
                    "model": model,
                    "max_tokens": 4096,
                    "messages": [{"role": "user", "content": prompt}],
                },
            },
        )
        content = data.get("content") if isinstance(data, dict) else None
        for part in content or []:
            if isinstance(part, dict) and part.get("type") == "text":
                return part.get("text") or ""
        return ""


class GoogleClient(ProviderClient):
    provider = AiProvider.GOOGLE
    label = "Google Gemini"

    def __init__(self, timeout: float = 30.0, url: str = GOOGLE_URL):
        super().__init__(timeout)
        self._url = url.rstrip("/")

    async def complete(self, prompt: str, api_key: str, model: str) -> str:
        data = await self._post_json(
            f"{self._url}/{model}:generateContent",
            {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": TEMPERATURE,
                    "responseMimeType": "application/json",
                },
            },
            headers={"x-goog-api-key": api_key},
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"] or ""
        except (KeyError, IndexError, TypeError):
            return ""


PROVIDER_CLIENTS: dict[AiProvider, type[ProviderClient]] = {
    AiProvider.OPENAI: OpenAIClient,
    AiProvider.ANTHROPIC: AnthropicRelayClient,
    AiProvider.GOOGLE: GoogleClient,
}

_unhandled = set(AiProvider) - set(PROVIDER_CLIENTS)
if _unhandled:
    raise RuntimeError(
        f"No client registered for AI provider(s): {sorted(p.value for p in _unhandled)}"
    )


def client_for(
    settings: AiProviderSettings,
    config: Optional[VaultConfig] = None,
) -> ProviderClient:
    """Instantiate the client for the configured provider."""
    timeout = config.http_timeout if config else 30.0
    if settings.provider is AiProvider.ANTHROPIC:
        return AnthropicRelayClient(
            timeout, relay_url=config.api_base_url if config else None,
        )
    return PROVIDER_CLIENTS[settings.provider](timeout)
