"""Plugin contract: optional hooks around each turn."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

if TYPE_CHECKING:
    from chatloom.core.models import Message, ToolCall


@dataclass(frozen=True)
class PluginContext:
    """Value threaded through the hook chain. Hooks return a new one."""

    messages: list[Message]
    system_prompt: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def copy(self) -> PluginContext:
        """Independent copy, down to each message, for handing to one hook."""
        messages = [replace(m, tool_calls=list(m.tool_calls)) for m in self.messages]
        return replace(self, messages=messages, metadata=dict(self.metadata))

    def with_messages(self, messages: list[Message]) -> PluginContext:
        return replace(self, messages=list(messages))


MaybeAwaitable = Union[Any, Awaitable[Any]]


class ChatPlugin:
    """Base class for plugins. Override only the hooks you need.

    Every hook may be a plain method or a coroutine. The defaults pass their
    input through unchanged.
    """

    name: str = "plugin"

    def before_send(self, ctx: PluginContext) -> MaybeAwaitable:
        """Transform the outgoing context before it reaches the provider."""
        return ctx

    def after_receive(self, ctx: PluginContext, response: Message) -> MaybeAwaitable:
        """Transform the finished assistant message."""
        return response

    def on_tool_call(self, tool_call: ToolCall, ctx: PluginContext) -> MaybeAwaitable:
        """Handle a tool call. A non-None result is recorded as a tool message."""
        return None


class FunctionPlugin(ChatPlugin):
    """Plugin assembled from plain callables."""

    def __init__(
        self,
        name: str,
        before_send: Optional[Callable[[PluginContext], MaybeAwaitable]] = None,
        after_receive: Optional[Callable[[PluginContext, Message], MaybeAwaitable]] = None,
        on_tool_call: Optional[Callable[[ToolCall, PluginContext], MaybeAwaitable]] = None,
    ):
        self.name = name
        self._before_send = before_send
        self._after_receive = after_receive
        self._on_tool_call = on_tool_call

    def before_send(self, ctx: PluginContext) -> MaybeAwaitable:
        if self._before_send is None:
            return ctx
        return self._before_send(ctx)

    def after_receive(self, ctx: PluginContext, response: Message) -> MaybeAwaitable:
        if self._after_receive is None:
            return response
        return self._after_receive(ctx, response)

    def on_tool_call(self, tool_call: ToolCall, ctx: PluginContext) -> MaybeAwaitable:
        if self._on_tool_call is None:
            return None
        return self._on_tool_call(tool_call, ctx)
