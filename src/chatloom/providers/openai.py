"""OpenAI-compatible chat-completions adapter (delta-keyed SSE events)."""

from __future__ import annotations

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


class OpenAIAdapter(ProviderAdapter):
    name = "openai"
    label = "OpenAI"
    default_url = "https://api.openai.com/v1/chat/completions"
    done_sentinel = "[DONE]"

    def _headers(self, config: ProviderConfig) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key or ''}",
        }

    def _keep(self, msg: Message) -> bool:
        if msg.role == Role.ASSISTANT and not msg.content.strip():
            # Empty assistant content is only accepted alongside tool calls.
            return bool(msg.tool_calls)
        if msg.role != Role.SYSTEM:
            return bool(msg.content)
        return True

    def _format_message(self, msg: Message) -> dict[str, Any]:
        formatted: dict[str, Any] = {"role": msg.role.value, "content": msg.content}
        if msg.name:
            formatted["name"] = msg.name
        if msg.tool_calls:
            formatted["tool_calls"] = [tc.to_openai() for tc in msg.tool_calls]
        if msg.tool_call_id:
            formatted["tool_call_id"] = msg.tool_call_id
        return formatted

    def _format_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        return [self._format_message(m) for m in messages if self._keep(m)]

    def _sampling(self, config: ProviderConfig) -> dict[str, Any]:
        return {
            "temperature": config.temperature if config.temperature is not None else 0.7,
            "max_tokens": config.max_tokens,
            "top_p": config.top_p,
            "frequency_penalty": config.frequency_penalty,
            "presence_penalty": config.presence_penalty,
        }

    def _body(
        self,
        messages: list[Message],
        config: ProviderConfig,
        tools: Optional[list[dict[str, Any]]],
        stream: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": config.model,
            "messages": self._format_messages(messages),
            **self._sampling(config),
        }
        if tools:
            body["tools"] = tools
        if stream:
            body["stream"] = True
        return {k: v for k, v in body.items() if v is not None}

    def _request(
        self,
        messages: list[Message],
        config: ProviderConfig,
        tools: Optional[list[dict[str, Any]]],
        stream: bool,
    ) -> HttpRequest:
        return HttpRequest(
            url=self._url(config),
            body=self._body(messages, config, tools, stream),
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

        pending: dict[int, dict[str, Any]] = {}
        finish: Optional[FinishReason] = None
        usage: Optional[Usage] = None

        async with aclosing(self._events(request, cancel)) as events:
            async for event in events:
                if isinstance(event.get("error"), dict):
                    raise TransportError(
                        f"{self.label} stream error: {event['error'].get('message', event['error'])}",
                        body=event,
                        provider=self.name,
                    )
                usage = Usage.from_openai(event.get("usage")) or usage

                choices = event.get("choices") or []
                if not choices or not isinstance(choices[0], dict):
                    continue
                choice = choices[0]
                delta = choice.get("delta") or {}

                content = delta.get("content")
                if isinstance(content, str) and content:
                    yield StreamChunk(content=content)

                fragments = delta.get("tool_calls")
                if fragments:
                    _merge_tool_call_fragments(pending, fragments)
                    yield StreamChunk(tool_calls=_snapshot_tool_calls(pending))

                if choice.get("finish_reason"):
                    finish = FinishReason.normalize(choice["finish_reason"])

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

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise MalformedResponseError(f"{self.label} response has no choices", provider=self.name, body=data)
        message = choices[0].get("message")
        if not isinstance(message, dict):
            raise MalformedResponseError(f"{self.label} response has no message", provider=self.name, body=data)

        return ProviderResponse(
            content=message.get("content") or "",
            tool_calls=[ToolCall.from_openai(tc) for tc in message.get("tool_calls") or []],
            usage=Usage.from_openai(data.get("usage")),
            finish_reason=FinishReason.normalize(choices[0].get("finish_reason")),
            raw=data,
        )


def _merge_tool_call_fragments(pending: dict[int, dict[str, Any]], fragments: list[Any]) -> None:
    for item in fragments:
        if not isinstance(item, dict):
            continue
        index = int(item.get("index", 0) or 0)
        slot = pending.setdefault(index, {"id": "", "name": "", "arguments": []})
        if item.get("id"):
            slot["id"] = str(item["id"])
        function = item.get("function") or {}
        if function.get("name"):
            slot["name"] = str(function["name"])
        if function.get("arguments"):
            slot["arguments"].append(str(function["arguments"]))


def _snapshot_tool_calls(pending: dict[int, dict[str, Any]]) -> list[ToolCall]:
    return [
        ToolCall(id=slot["id"], name=slot["name"], arguments="".join(slot["arguments"]))
        for _, slot in sorted(pending.items())
    ]
