"""Stream accumulator: folds a chunk stream into one assistant message."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, AsyncIterable, Awaitable, Callable, Optional, Union

from chatloom.core.models import Message, StreamChunk, Usage, new_message_id, now_ms
from chatloom.core.types import FinishReason, Role, TurnState
from chatloom.errors import CancellationError
from chatloom.log import get_logger

logger = get_logger(__name__)


class CancelToken:
    """Out-of-band cancellation flag shared by the consumer and the adapter."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError("Request cancelled")

    async def wait(self) -> None:
        await self._event.wait()


Callback = Callable[..., Union[None, Awaitable[None]]]


@dataclass
class StreamCallbacks:
    on_chunk: Optional[Callback] = None
    on_complete: Optional[Callback] = None
    on_error: Optional[Callback] = None


async def invoke_callback(callback: Optional[Callback], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class StreamAccumulator:
    """Consumes normalized chunks and materializes the assistant message.

    One run at a time. Cancellation is checked once per chunk, before the
    chunk is applied; a chunk already being applied is never rolled back.
    """

    def __init__(self) -> None:
        self._cancel: Optional[CancelToken] = None
        self.outcome: Optional[TurnState] = None
        self.finish_reason: Optional[FinishReason] = None
        self.usage: Optional[Usage] = None

    @property
    def is_streaming(self) -> bool:
        return self._cancel is not None and not self._cancel.cancelled

    def cancel(self) -> None:
        if self._cancel is not None:
            self._cancel.cancel()

    async def consume(
        self,
        chunks: AsyncIterable[StreamChunk],
        callbacks: Optional[StreamCallbacks] = None,
        message_id: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Message:
        callbacks = callbacks or StreamCallbacks()
        token = cancel or CancelToken()
        self._cancel = token
        self.outcome = None
        self.finish_reason = None
        self.usage = None

        message = Message(
            id=message_id or new_message_id(),
            role=Role.ASSISTANT,
            content="",
            timestamp=now_ms(),
        )
        parts: list[str] = []
        chunk_count = 0
        finished = False

        try:
            async for chunk in chunks:
                if token.cancelled:
                    break
                chunk_count += 1

                if chunk.content:
                    parts.append(chunk.content)
                    message.content = "".join(parts)
                if chunk.tool_calls:
                    message.tool_calls = list(chunk.tool_calls)
                if chunk.usage is not None:
                    self.usage = chunk.usage if self.usage is None else self.usage.merge(chunk.usage)
                if chunk.finish_reason is not None:
                    self.finish_reason = chunk.finish_reason

                await invoke_callback(callbacks.on_chunk, chunk)

                if chunk.is_terminal:
                    finished = True
                    break
        except CancellationError:
            token.cancel()
        except asyncio.CancelledError:
            self.outcome = TurnState.CANCELLED
            raise
        except Exception as exc:
            self.outcome = TurnState.FAILED
            logger.warning("stream_failed", message_id=message.id, error=str(exc), chunks=chunk_count)
            await invoke_callback(callbacks.on_error, exc)
            raise
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
            self._cancel = None

        if token.cancelled and not finished:
            self.outcome = TurnState.CANCELLED
            logger.info("stream_cancelled", message_id=message.id, chunks=chunk_count)
            return message

        self.outcome = TurnState.COMPLETED
        logger.debug(
            "stream_completed",
            message_id=message.id,
            chunks=chunk_count,
            finish_reason=self.finish_reason,
        )
        await invoke_callback(callbacks.on_complete, message)
        return message
