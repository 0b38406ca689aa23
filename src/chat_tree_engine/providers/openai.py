"""
OpenAI provider.

Requires the 'openai' extra: pip install chat-tree-engine[openai]
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

try:
    from openai import AsyncOpenAI, OpenAIError  # type: ignore[import-not-found]
except ImportError:
    raise ImportError(
        "OpenAI provider requires the 'openai' package. "
        "Install with: pip install chat-tree-engine[openai]"
    )

from chat_tree_engine.errors import ProviderError
from chat_tree_engine.providers.base import (
    HistoryEntry,
    Provider,
    ProviderSettings,
    encode_image,
)

DEFAULT_MODEL = "gpt-4o"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096


def default_settings(name: str = "openai") -> ProviderSettings:
    return ProviderSettings(
        name=name,
        host="openai",
        model=DEFAULT_MODEL,
        max_tokens=DEFAULT_MAX_TOKENS,
        temperature=DEFAULT_TEMPERATURE,
    )


class OpenAIProvider(Provider):
    """
    Provider backed by the OpenAI Chat Completions API.

    ``base_url`` may point at any OpenAI-compatible server.
    """

    host = "openai"

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        settings = replace(settings) if settings is not None else default_settings()
        settings.host = settings.host or self.host
        settings.model = settings.model or DEFAULT_MODEL
        settings.max_tokens = settings.max_tokens or DEFAULT_MAX_TOKENS
        settings.temperature = settings.temperature or DEFAULT_TEMPERATURE
        super().__init__(settings)
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            kwargs: dict[str, Any] = {}
            if self.settings.base_url:
                kwargs["base_url"] = self.settings.base_url
            try:
                self._client = AsyncOpenAI(**kwargs)
            except OpenAIError as e:
                raise ProviderError(f"Cannot create OpenAI client: {e}") from e
        return self._client

    @staticmethod
    def _user_content(question: str, images: list[str]) -> str | list[dict[str, Any]]:
        if not images:
            return question
        parts: list[dict[str, Any]] = [{"type": "text", "text": question}]
        for path in images:
            media_type, data = encode_image(path)
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{media_type};base64,{data}"},
                }
            )
        return parts

    async def complete(
        self,
        question: str,
        history: list[HistoryEntry],
        images: list[str],
    ) -> str:
        """Send the conversation to OpenAI and return the text reply."""
        messages: list[dict[str, Any]] = []

        system = self.build_system_prompt()
        if system:
            messages.append({"role": "system", "content": system})

        for entry in history:
            messages.append({"role": entry["role"], "content": entry["content"]})
        messages.append({"role": "user", "content": self._user_content(question, images)})

        try:
            response = await self.client.chat.completions.create(
                model=self.settings.model,
                max_tokens=self.settings.max_tokens,
                temperature=self.settings.temperature,
                messages=messages,
            )
        except OpenAIError as e:
            raise ProviderError(f"OpenAI request failed: {e}") from e

        return response.choices[0].message.content or ""

    def clone_with_settings(self, settings: ProviderSettings) -> OpenAIProvider:
        client = self._client if settings.base_url == self.settings.base_url else None
        return OpenAIProvider(settings, client=client)
