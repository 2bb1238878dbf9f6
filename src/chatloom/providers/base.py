"""Provider adapter abstraction shared by every vendor backend."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from chatloom.config import ProviderConfig
from chatloom.core.accumulator import CancelToken
from chatloom.core.models import Message, ProviderResponse, StreamChunk
from chatloom.errors import MalformedResponseError, TransportError
from chatloom.log import get_logger
from chatloom.providers.sse import iter_sse_data
from chatloom.providers.transport import HttpRequest, HttpResponse, Transport

logger = get_logger(__name__)


class ProviderAdapter(ABC):
    """Translates normalized requests to one vendor's wire format and back.

    Adapters hold no per-call state, so one instance may serve any number of
    sequential or concurrent calls.
    """

    name: str = ""
    label: str = ""
    # Extra provider ids that resolve to this adapter.
    aliases: tuple[str, ...] = ()
    default_url: str = ""
    # End-of-stream marker sent as a data payload, if the vendor uses one.
    done_sentinel: Optional[str] = None

    def __init__(self, transport: Transport):
        self._transport = transport

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        config: ProviderConfig,
        cancel: Optional[CancelToken] = None,
        *,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> ProviderResponse:
        """Single blocking call returning the final response."""
        ...

    @abstractmethod
    def stream(
        self,
        messages: list[Message],
        config: ProviderConfig,
        cancel: Optional[CancelToken] = None,
        *,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> AsyncIterator[StreamChunk]:
        """Streamed call. Yields exactly one terminal chunk, then completes."""
        ...

    def _url(self, config: ProviderConfig) -> str:
        return config.base_url or self.default_url

    async def _raise_for_status(self, response: HttpResponse) -> None:
        if response.ok:
            return
        text = await response.text()
        try:
            body: Any = json.loads(text)
        except json.JSONDecodeError:
            body = text or "Unknown error"
        logger.warning("provider_http_error", provider=self.name, status=response.status)
        raise TransportError(
            f"{self.label or self.name} API error ({response.status}): "
            f"{json.dumps(body, ensure_ascii=False) if not isinstance(body, str) else body}",
            status=response.status,
            body=body,
            provider=self.name,
        )

    async def _post_json(self, request: HttpRequest, cancel: Optional[CancelToken]) -> dict[str, Any]:
        async with self._transport.open(request, cancel) as response:
            await self._raise_for_status(response)
            raw = await response.read()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(
                f"{self.label or self.name} returned a non-JSON body", provider=self.name, body=raw
            ) from exc
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"{self.label or self.name} returned an unexpected body", provider=self.name, body=data
            )
        if cancel is not None:
            cancel.raise_if_cancelled()
        return data

    async def _events(
        self, request: HttpRequest, cancel: Optional[CancelToken]
    ) -> AsyncIterator[dict[str, Any]]:
        """Decoded JSON events of an SSE response, stopping at the sentinel.

        Lines that are not valid JSON objects are skipped, not fatal.
        """
        async with self._transport.open(request, cancel) as response:
            await self._raise_for_status(response)
            async with aclosing(iter_sse_data(response.iter_bytes())) as lines:
                async for data in lines:
                    if self.done_sentinel is not None and data.strip() == self.done_sentinel:
                        return
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug("sse_line_skipped", provider=self.name, line=data[:200])
                        continue
                    if not isinstance(event, dict):
                        logger.debug("sse_line_skipped", provider=self.name, line=data[:200])
                        continue
                    yield event
