"""Anthropic Messages API adapter (content-block-keyed SSE events)."""

from __future__ import annotations

import json
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from chatloom.config import ProviderConfig
from chatloom.core.accumulator import CancelToken
from chatloom.core.models import Message, ProviderResponse, StreamChunk, ToolCall, Usage
from chatloom.core.types import FinishReason, Role
from chatloom.errors import MalformedResponseError, TransportError
from chatloom.log import get_logger
from chatloom.providers.base import ProviderAdapter
from chatloom.providers.transport import HttpRequest

logger = get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


def _tool_input(arguments: str) -> dict[str, Any]:
    try:
        parsed = json.loads(arguments) if arguments else {}
    except (json.JSONDecodeError, TypeError):
        return {}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def _is_tool_result_turn(entry: dict[str, Any]) -> bool:
    content = entry.get("content")
    return (
        entry.get("role") == "user"
        and isinstance(content, list)
        and all(block.get("type") == "tool_result" for block in content)
    )


def format_messages(messages: list[Message]) -> tuple[Optional[str], list[dict[str, Any]]]:
    """Split out the system text and convert the rest to Anthropic turns.

    Assistant tool calls become ``tool_use`` blocks; consecutive tool results
    are grouped into one user turn of ``tool_result`` blocks.
    """
    system_parts: list[str] = []
    formatted: list[dict[str, Any]] = []

    for msg in messages:
        if msg.role == Role.SYSTEM:
            if msg.content:
                system_parts.append(msg.content)
            continue

        if msg.role == Role.ASSISTANT:
            if msg.tool_calls:
                blocks: list[dict[str, Any]] = []
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    blocks.append(
                        {"type": "tool_use", "id": tc.id, "name": tc.name, "input": _tool_input(tc.arguments)}
                    )
                formatted.append({"role": "assistant", "content": blocks})
            elif msg.content.strip():
                formatted.append({"role": "assistant", "content": msg.content})
            continue

        if msg.role == Role.TOOL:
            block = {"type": "tool_result", "tool_use_id": msg.tool_call_id or "", "content": msg.content}
            if formatted and _is_tool_result_turn(formatted[-1]):
                formatted[-1]["content"].append(block)
            else:
                formatted.append({"role": "user", "content": [block]})
            continue

        if msg.content:
            formatted.append({"role": "user", "content": msg.content})

    system = "\n\n".join(system_parts) or None
    return system, formatted


def format_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Accept OpenAI-style function tools or native Anthropic tool dicts."""
    converted: list[dict[str, Any]] = []
    for tool in tools:
        if "input_schema" in tool:
            converted.append(tool)
            continue
        function = tool.get("function") or tool
        converted.append(
            {
                "name": function.get("name", ""),
                "description": function.get("description", ""),
                "input_schema": function.get("parameters") or {"type": "object", "properties": {}},
            }
        )
    return converted


class AnthropicAdapter(ProviderAdapter):
    name = "anthropic"
    label = "Claude"
    aliases = ("claude",)
    default_url = "https://api.anthropic.com/v1/messages"

    def _headers(self, config: ProviderConfig) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _request(
        self,
        messages: list[Message],
        config: ProviderConfig,
        tools: Optional[list[dict[str, Any]]],
        stream: bool,
    ) -> HttpRequest:
        system, conversation = format_messages(messages)
        body: dict[str, Any] = {
            "model": config.model,
            "max_tokens": config.max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": config.temperature if config.temperature is not None else 0.7,
            "top_p": config.top_p,
            "messages": conversation,
            "system": system,
            "tools": format_tools(tools) if tools else None,
            "stream": True if stream else None,
        }
        return HttpRequest(
            url=self._url(config),
            body={k: v for k, v in body.items() if v is not None},
            headers=self._headers(config),
            timeout=config.timeout,
        )

    async def stream(
        self,
        messages: list[Message],
        config: ProviderConfig,
        cancel: Optional[CancelToken] = None,
        *,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> AsyncIterator[StreamChunk]:
        request = self._request(messages, config, tools, stream=True)
        logger.debug("provider_stream_start", provider=self.name, model=config.model)

        tool_blocks: dict[int, dict[str, Any]] = {}
        finish: Optional[FinishReason] = None
        usage: Optional[Usage] = None

        async with aclosing(self._events(request, cancel)) as events:
            async for event in events:
                match event.get("type"):
                    case "message_start":
                        usage = Usage.from_anthropic((event.get("message") or {}).get("usage"))
                    case "content_block_start":
                        block = event.get("content_block") or {}
                        if block.get("type") == "tool_use":
                            tool_blocks[int(event.get("index", 0))] = {
                                "id": str(block.get("id") or ""),
                                "name": str(block.get("name") or ""),
                                "arguments": [],
                            }
                        elif block.get("type") == "text" and block.get("text"):
                            yield StreamChunk(content=block["text"])
                    case "content_block_delta":
                        delta = event.get("delta") or {}
                        if delta.get("type") == "input_json_delta":
                            slot = tool_blocks.get(int(event.get("index", 0)))
                            if slot is not None:
                                slot["arguments"].append(delta.get("partial_json") or "")
                                yield StreamChunk(tool_calls=_snapshot(tool_blocks))
                        elif delta.get("text"):
                            yield StreamChunk(content=delta["text"])
                    case "message_delta":
                        stop_reason = (event.get("delta") or {}).get("stop_reason")
                        if stop_reason:
                            finish = FinishReason.normalize(stop_reason)
                        reported = Usage.from_anthropic(event.get("usage"))
                        usage = usage.merge(reported) if usage else reported
                    case "message_stop":
                        finish = finish or FinishReason.STOP
                        break
                    case "error":
                        error = event.get("error") or {}
                        raise TransportError(
                            f"{self.label} stream error: {error.get('message', error)}",
                            body=event,
                            provider=self.name,
                        )

        yield StreamChunk(finish_reason=finish, usage=usage, done=True)

    async def chat(
        self,
        messages: list[Message],
        config: ProviderConfig,
        cancel: Optional[CancelToken] = None,
        *,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> ProviderResponse:
        request = self._request(messages, config, tools, stream=False)
        data = await self._post_json(request, cancel)

        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise MalformedResponseError(f"{self.label} response has no content", provider=self.name, body=data)

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in blocks:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text":
                text_parts.append(block.get("text") or "")
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=str(block.get("id") or ""),
                        name=str(block.get("name") or ""),
                        arguments=json.dumps(block.get("input") or {}),
                    )
                )

        return ProviderResponse(
            content="".join(text_parts),
            tool_calls=tool_calls,
            usage=Usage.from_anthropic(data.get("usage")),
            finish_reason=FinishReason.normalize(data.get("stop_reason")),
            raw=data,
        )


def _snapshot(tool_blocks: dict[int, dict[str, Any]]) -> list[ToolCall]:
    return [
        ToolCall(id=slot["id"], name=slot["name"], arguments="".join(slot["arguments"]))
        for _, slot in sorted(tool_blocks.items())
    ]
