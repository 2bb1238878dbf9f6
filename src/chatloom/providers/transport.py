"""HTTP transport collaborator used by the provider adapters."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Mapping, Optional

import aiohttp

from chatloom.log import get_logger

if TYPE_CHECKING:
    from chatloom.core.accumulator import CancelToken

logger = get_logger(__name__)


@dataclass
class HttpRequest:
    url: str
    body: dict[str, Any]
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None


class HttpResponse(ABC):
    """Status, headers, and a body that is either streamed or read whole."""

    status: int
    headers: Mapping[str, str]

    @abstractmethod
    def iter_bytes(self) -> AsyncIterator[bytes]:
        ...

    @abstractmethod
    async def read(self) -> bytes:
        ...

    async def text(self) -> str:
        return (await self.read()).decode("utf-8", errors="replace")

    async def json(self) -> Any:
        return json.loads(await self.read())

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(ABC):
    """Anything that can issue a request and hand back a readable response."""

    @abstractmethod
    def open(
        self, request: HttpRequest, cancel: Optional[CancelToken] = None
    ) -> Any:
        """Return an async context manager yielding an HttpResponse."""
        ...

    async def close(self) -> None:
        return None


class _AiohttpResponse(HttpResponse):
    def __init__(self, response: aiohttp.ClientResponse):
        self._response = response
        self.status = response.status
        self.headers = response.headers

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        async for data in self._response.content.iter_any():
            yield data

    async def read(self) -> bytes:
        return await self._response.read()


class AiohttpTransport(Transport):
    """Default transport backed by a shared aiohttp ClientSession."""

    def __init__(self, session: aiohttp.ClientSession | None = None):
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    @asynccontextmanager
    async def open(
        self, request: HttpRequest, cancel: Optional[CancelToken] = None
    ) -> AsyncIterator[HttpResponse]:
        if cancel is not None:
            cancel.raise_if_cancelled()
        session = await self._get_session()
        kwargs: dict[str, Any] = {"json": request.body, "headers": request.headers}
        if request.timeout:
            kwargs["timeout"] = aiohttp.ClientTimeout(
                total=None, sock_connect=request.timeout, sock_read=request.timeout
            )
        logger.debug("http_request", method=request.method, url=request.url)
        async with session.request(request.method, request.url, **kwargs) as response:
            yield _AiohttpResponse(response)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
