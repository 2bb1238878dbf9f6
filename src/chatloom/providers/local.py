"""Adapter for local OpenAI-compatible servers (Ollama, LM Studio, llama.cpp)."""

from __future__ import annotations

from chatloom.config import ProviderConfig
from chatloom.core.models import Message
from chatloom.core.types import Role
from chatloom.providers.moonshot import MoonshotAdapter


class LocalAdapter(MoonshotAdapter):
    name = "local"
    label = "Local LLM"
    default_url = "http://localhost:11434/v1/chat/completions"

    def _headers(self, config: ProviderConfig) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        return headers

    def _keep(self, msg: Message) -> bool:
        if msg.role == Role.ASSISTANT and not msg.content.strip():
            return False
        if msg.role != Role.SYSTEM:
            return bool(msg.content)
        return True
