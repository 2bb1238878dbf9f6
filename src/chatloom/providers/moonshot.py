"""Moonshot adapter. OpenAI-compatible wire format with a stricter message filter."""

from __future__ import annotations

from typing import Any, Optional

from chatloom.config import ProviderConfig
from chatloom.core.models import Message
from chatloom.providers.openai import OpenAIAdapter


class MoonshotAdapter(OpenAIAdapter):
    name = "moonshot"
    label = "Moonshot"
    default_url = "https://api.moonshot.cn/v1/chat/completions"

    def _keep(self, msg: Message) -> bool:
        # Moonshot rejects every empty-content message, tool calls or not.
        return bool(msg.content.strip())

    def _format_message(self, msg: Message) -> dict[str, Any]:
        formatted: dict[str, Any] = {"role": msg.role.value, "content": msg.content}
        if msg.name:
            formatted["name"] = msg.name
        return formatted

    def _sampling(self, config: ProviderConfig) -> dict[str, Any]:
        return {
            "temperature": config.temperature if config.temperature is not None else 0.7,
            "max_tokens": config.max_tokens,
            "top_p": config.top_p,
        }

    def _body(
        self,
        messages: list[Message],
        config: ProviderConfig,
        tools: Optional[list[dict[str, Any]]],
        stream: bool,
    ) -> dict[str, Any]:
        return super()._body(messages, config, None, stream)
