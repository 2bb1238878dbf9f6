from chatloom.providers.anthropic import AnthropicAdapter
from chatloom.providers.base import ProviderAdapter
from chatloom.providers.local import LocalAdapter
from chatloom.providers.moonshot import MoonshotAdapter
from chatloom.providers.openai import OpenAIAdapter
from chatloom.providers.registry import ProviderRegistry
from chatloom.providers.transport import AiohttpTransport, HttpRequest, HttpResponse, Transport

__all__ = [
    "AiohttpTransport",
    "AnthropicAdapter",
    "HttpRequest",
    "HttpResponse",
    "LocalAdapter",
    "MoonshotAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "ProviderRegistry",
    "Transport",
]
