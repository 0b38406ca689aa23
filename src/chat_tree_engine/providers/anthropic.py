"""
Anthropic provider.

Requires the 'anthropic' extra: pip install chat-tree-engine[anthropic]
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

try:
    from anthropic import APIError, AsyncAnthropic  # type: ignore[import-not-found]
except ImportError:
    raise ImportError(
        "Anthropic provider requires the 'anthropic' package. "
        "Install with: pip install chat-tree-engine[anthropic]"
    )

from chat_tree_engine.errors import ProviderError
from chat_tree_engine.providers.base import (
    HistoryEntry,
    Provider,
    ProviderSettings,
    encode_image,
)

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4000


def default_settings(name: str = "anthropic") -> ProviderSettings:
    return ProviderSettings(
        name=name,
        host="anthropic",
        model=DEFAULT_MODEL,
        max_tokens=DEFAULT_MAX_TOKENS,
        temperature=DEFAULT_TEMPERATURE,
    )


class AnthropicProvider(Provider):
    """
    Provider backed by the Anthropic Messages API.

    Example:
        from anthropic import AsyncAnthropic
        from chat_tree_engine.providers import AnthropicProvider

        provider = AnthropicProvider(client=AsyncAnthropic())
        root = provider.new_conversation_root()
        pair = await provider.extend_from(root)("Hello")
    """

    host = "anthropic"

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        settings = replace(settings) if settings is not None else default_settings()
        settings.host = settings.host or self.host
        settings.model = settings.model or DEFAULT_MODEL
        settings.max_tokens = settings.max_tokens or DEFAULT_MAX_TOKENS
        settings.temperature = settings.temperature or DEFAULT_TEMPERATURE
        super().__init__(settings)
        self._client = client

    @property
    def client(self) -> AsyncAnthropic:
        """SDK client, created on first use so no API key is needed until then."""
        if self._client is None:
            kwargs: dict[str, Any] = {}
            if self.settings.base_url:
                kwargs["base_url"] = self.settings.base_url
            self._client = AsyncAnthropic(**kwargs)
        return self._client

    def _user_content(self, question: str, images: list[str]) -> str | list[dict[str, Any]]:
        if not images:
            return question
        blocks: list[dict[str, Any]] = []
        for path in images:
            media_type, data = encode_image(path)
            blocks.append(
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": media_type, "data": data},
                }
            )
        blocks.append({"type": "text", "text": question})
        return blocks

    async def complete(
        self,
        question: str,
        history: list[HistoryEntry],
        images: list[str],
    ) -> str:
        """Send the conversation to Anthropic and return the text reply."""
        messages: list[dict[str, Any]] = [
            {"role": entry["role"], "content": entry["content"]} for entry in history
        ]
        messages.append({"role": "user", "content": self._user_content(question, images)})

        request_kwargs: dict[str, Any] = {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "temperature": self.settings.temperature,
            "messages": messages,
        }

        system = self.build_system_prompt()
        if system:
            request_kwargs["system"] = system

        try:
            response = await self.client.messages.create(**request_kwargs)
        except APIError as e:
            raise ProviderError(f"Anthropic request failed: {e}") from e

        content = ""
        for block in response.content:
            if block.type == "text":
                content += block.text
        return content

    def clone_with_settings(self, settings: ProviderSettings) -> AnthropicProvider:
        client = self._client if settings.base_url == self.settings.base_url else None
        return AnthropicProvider(settings, client=client)
