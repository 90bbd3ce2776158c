"""
Text generation providers and the fallback chain.

Providers are tried in order (local Ollama, Anthropic, OpenAI-compatible);
the first one that is configured and returns non-empty text wins. A provider
that errors or times out is logged and skipped.
"""

import logging
import re

import httpx

from shopflow.config import settings
from shopflow.providers.base import TextProvider

logger = logging.getLogger(__name__)

LLM_TIMEOUT = httpx.Timeout(connect=10.0, read=120.0, write=10.0, pool=10.0)


def _strip_think_tags(text: str) -> str:
    return re.sub(r"<think>.*?</think>\s*", "", text, flags=re.DOTALL).strip()


class OllamaProvider:
    name = "ollama"

    def __init__(self, base_url: str | None = None, model: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url or settings.ollama_url
        self.model = model if model is not None else settings.llm_model
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.model)

    async def invoke(self, prompt: str, max_tokens: int = 800) -> str:
        async with httpx.AsyncClient(timeout=LLM_TIMEOUT, transport=self._transport) as client:
            resp = await client.post(
                f"{self.base_url}/api/chat",
                json={
                    "model": self.model,
                    "messages": [{"role": "user", "content": prompt}],
                    "stream": False,
                    "options": {"temperature": 0.7, "num_predict": max_tokens},
                },
            )
            resp.raise_for_status()
            content = resp.json().get("message", {}).get("content", "")
        return _strip_think_tags(content)


class AnthropicProvider:
    name = "anthropic"

    API_URL = "https://api.anthropic.com/v1/messages"

    def __init__(self, api_key: str | None = None, model: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.model = model or settings.anthropic_model
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def invoke(self, prompt: str, max_tokens: int = 800) -> str:
        async with httpx.AsyncClient(timeout=LLM_TIMEOUT, transport=self._transport) as client:
            resp = await client.post(
                self.API_URL,
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json={
                    "model": self.model,
                    "max_tokens": max_tokens,
                    "messages": [{"role": "user", "content": prompt}],
                },
            )
            resp.raise_for_status()
            blocks = resp.json().get("content", [])
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text").strip()


class OpenAICompatibleProvider:
    """Any /chat/completions endpoint (DeepSeek by default)."""

    name = "openai-compatible"

    def __init__(self, base_url: str | None = None, api_key: str | None = None, model: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.openai_model
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def invoke(self, prompt: str, max_tokens: int = 800) -> str:
        async with httpx.AsyncClient(timeout=LLM_TIMEOUT, transport=self._transport) as client:
            resp = await client.post(
                f"{self.base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "max_tokens": max_tokens,
                    "messages": [{"role": "user", "content": prompt}],
                },
            )
            resp.raise_for_status()
            choices = resp.json().get("choices", [])
        if not choices:
            return ""
        return _strip_think_tags(choices[0].get("message", {}).get("content", "") or "")


class FallbackTextGenerator:
    """Walks an ordered list of TextProviders until one returns text."""

    def __init__(self, providers: list[TextProvider]):
        self.providers = providers

    @property
    def enabled(self) -> bool:
        return any(p.enabled for p in self.providers)

    async def generate(self, prompt: str, max_tokens: int = 800) -> str | None:
        for provider in self.providers:
            if not provider.enabled:
                continue
            try:
                text = await provider.invoke(prompt, max_tokens=max_tokens)
            except httpx.TimeoutException:
                logger.warning("Text provider %s timed out", provider.name)
                continue
            except Exception as exc:
                logger.warning("Text provider %s failed: %s", provider.name, exc)
                continue
            if text:
                return text
        return None


def default_text_generator() -> FallbackTextGenerator:
    return FallbackTextGenerator([OllamaProvider(), AnthropicProvider(), OpenAICompatibleProvider()])
