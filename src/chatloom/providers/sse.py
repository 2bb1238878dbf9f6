"""Server-sent-event line decoding over an arbitrarily chunked byte stream."""

from __future__ import annotations

import codecs
from typing import AsyncIterable, AsyncIterator

from chatloom.errors import StreamParseError

DATA_PREFIX = "data:"
# Limit on an unterminated line, in decoded characters.
MAX_LINE_CHARS = 1 << 20


class SSELineDecoder:
    """Reassembles complete lines from network reads.

    Read boundaries never line up with event boundaries, so the trailing
    fragment of every read is held back until its newline arrives.
    """

    def __init__(self, max_line_chars: int = MAX_LINE_CHARS):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._max_line_chars = max_line_chars

    def feed(self, data: bytes) -> list[str]:
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        if len(self._buffer) > self._max_line_chars:
            raise StreamParseError(
                "SSE line exceeds maximum length without a newline",
                details={"buffered": len(self._buffer), "limit": self._max_line_chars},
            )
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return whatever is left once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        rest = rest.rstrip("\r")
        return [rest] if rest else []


def parse_data_line(line: str) -> str | None:
    """Payload of a ``data:`` line, or None for any other line."""
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX) :]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


async def iter_sse_data(byte_chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield the payload of each complete ``data:`` line, in order."""
    decoder = SSELineDecoder()
    async for raw in byte_chunks:
        for line in decoder.feed(raw):
            payload = parse_data_line(line)
            if payload is not None:
                yield payload
    for line in decoder.flush():
        payload = parse_data_line(line)
        if payload is not None:
            yield payload
