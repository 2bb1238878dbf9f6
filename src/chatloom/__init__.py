"""Multi-turn LLM conversation runtime with streaming vendor adapters."""

from chatloom.config import AppConfig, MemoryConfig, ProviderConfig, load_config
from chatloom.core.accumulator import CancelToken, StreamAccumulator, StreamCallbacks
from chatloom.core.composer import PromptComposer
from chatloom.core.models import Message, StreamChunk, ToolCall, Usage
from chatloom.core.orchestrator import SessionOrchestrator
from chatloom.core.types import FinishReason, Role, TurnState
from chatloom.core.window import ContextWindow
from chatloom.plugins import ChatPlugin, FunctionPlugin, PluginContext, PluginManager
from chatloom.providers import ProviderAdapter, ProviderRegistry

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "CancelToken",
    "ChatPlugin",
    "ContextWindow",
    "FinishReason",
    "FunctionPlugin",
    "MemoryConfig",
    "Message",
    "PluginContext",
    "PluginManager",
    "PromptComposer",
    "ProviderAdapter",
    "ProviderConfig",
    "ProviderRegistry",
    "Role",
    "SessionOrchestrator",
    "StreamAccumulator",
    "StreamCallbacks",
    "StreamChunk",
    "ToolCall",
    "TurnState",
    "Usage",
    "load_config",
]
