"""Ordered plugin chain with per-hook failure isolation."""

from __future__ import annotations

import inspect
from typing import Any, Iterable

from chatloom.core.models import Message, ToolCall
from chatloom.errors import PluginError
from chatloom.log import get_logger
from chatloom.plugins.base import ChatPlugin, PluginContext

logger = get_logger(__name__)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _warn(exc: Exception, plugin: ChatPlugin, hook: str) -> None:
    error = PluginError(str(exc), plugin=plugin.name, hook=hook)
    logger.warning(
        "plugin_hook_failed",
        plugin=error.plugin,
        hook=error.hook,
        error=error.message,
        error_type=type(exc).__name__,
    )


class PluginManager:
    """Registry of plugins, run in registration order.

    A hook that raises is logged and skipped; its failure never reaches the caller.
    """

    def __init__(self, plugins: Iterable[ChatPlugin] = ()):
        self._plugins: dict[str, ChatPlugin] = {}
        for plugin in plugins:
            self.register(plugin)

    def register(self, plugin: ChatPlugin) -> None:
        self._plugins[plugin.name] = plugin
        logger.debug("plugin_registered", plugin=plugin.name)

    def unregister(self, name: str) -> None:
        self._plugins.pop(name, None)

    def get(self, name: str) -> ChatPlugin | None:
        return self._plugins.get(name)

    def all(self) -> list[ChatPlugin]:
        return list(self._plugins.values())

    def __len__(self) -> int:
        return len(self._plugins)

    async def run_before_send(self, ctx: PluginContext) -> PluginContext:
        result = ctx
        for plugin in self._plugins.values():
            try:
                returned = await _resolve(plugin.before_send(result.copy()))
            except Exception as exc:
                _warn(exc, plugin, "before_send")
                continue
            if returned is not None:
                result = returned
        return result

    async def run_after_receive(self, message: Message, ctx: PluginContext) -> Message:
        result = message
        for plugin in self._plugins.values():
            try:
                returned = await _resolve(plugin.after_receive(ctx.copy(), result))
            except Exception as exc:
                _warn(exc, plugin, "after_receive")
                continue
            if returned is not None:
                result = returned
        return result

    async def run_tool_call(self, tool_call: ToolCall, ctx: PluginContext) -> list[Any]:
        """Offer a tool call to every plugin; collect the non-None results."""
        results: list[Any] = []
        for plugin in self._plugins.values():
            try:
                returned = await _resolve(plugin.on_tool_call(tool_call, ctx.copy()))
            except Exception as exc:
                _warn(exc, plugin, "on_tool_call")
                continue
            if returned is not None:
                results.append(returned)
        return results
