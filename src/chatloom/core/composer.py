"""Prompt composition: system prompt + window + plugin chain, then vendor reshaping."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional

from chatloom.core.models import Message, system_message
from chatloom.core.types import Role
from chatloom.log import get_logger
from chatloom.plugins.base import PluginContext
from chatloom.plugins.manager import PluginManager

logger = get_logger(__name__)

# Vendors that reject a system role inside the message array.
SYSTEM_MERGE_VENDORS = frozenset({"anthropic", "claude"})


class PromptComposer:
    """Builds the outgoing message list for a turn."""

    @staticmethod
    async def compose(
        system_prompt: Optional[str],
        messages: list[Message],
        plugins: Optional[PluginManager] = None,
        tools: Optional[list[dict[str, Any]]] = None,
        json_schema: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> list[Message]:
        composed: list[Message] = []
        if system_prompt:
            composed.append(system_message(system_prompt))
        composed.extend(messages)

        if not plugins:
            return composed

        ctx = PluginContext(
            messages=composed,
            system_prompt=system_prompt,
            metadata={"tools": tools, "json_schema": json_schema, **(metadata or {})},
        )
        ctx = await plugins.run_before_send(ctx)
        return list(ctx.messages)

    @staticmethod
    def format_for_provider(messages: list[Message], vendor_id: str) -> list[Message]:
        if vendor_id not in SYSTEM_MERGE_VENDORS:
            return messages
        return _merge_system_into_first_turn(messages)

    @staticmethod
    def validate_messages(messages: list[Message]) -> bool:
        if not messages:
            return False
        for msg in messages:
            if not msg.id or not isinstance(msg.role, Role):
                return False
            if not msg.is_valid():
                return False
        return True


def _merge_system_into_first_turn(messages: list[Message]) -> list[Message]:
    system_parts = [m.content for m in messages if m.role == Role.SYSTEM]
    others = [m for m in messages if m.role != Role.SYSTEM]
    if not system_parts:
        return messages

    system_text = "\n\n".join(system_parts)
    if not others:
        first_system = next(m for m in messages if m.role == Role.SYSTEM)
        return [replace(first_system, content=system_text)]

    first, rest = others[0], others[1:]
    logger.debug("system_merged_into_first_turn", system_count=len(system_parts))
    return [replace(first, content=f"{system_text}\n\n{first.content}"), *rest]
