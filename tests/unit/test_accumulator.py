import asyncio

import pytest

from chatloom.core.accumulator import CancelToken, StreamAccumulator, StreamCallbacks
from chatloom.core.models import StreamChunk, ToolCall, Usage
from chatloom.core.types import FinishReason, TurnState
from chatloom.errors import CancellationError, TransportError
from tests.unit.fakes import chunk_stream


@pytest.mark.asyncio
async def test_chunks_accumulate_into_message():
    accumulator = StreamAccumulator()
    stream = chunk_stream(
        StreamChunk(content="Hel"),
        StreamChunk(content="lo"),
        StreamChunk(finish_reason=FinishReason.STOP, done=True),
    )

    message = await accumulator.consume(stream)

    assert message.content == "Hello"
    assert accumulator.finish_reason == FinishReason.STOP
    assert accumulator.outcome == TurnState.COMPLETED


@pytest.mark.asyncio
async def test_cancel_before_second_chunk_keeps_first_only():
    accumulator = StreamAccumulator()
    token = CancelToken()
    seen = []

    def on_chunk(chunk):
        seen.append(chunk.content)
        token.cancel()

    stream = chunk_stream(
        StreamChunk(content="Hel"),
        StreamChunk(content="lo"),
        StreamChunk(finish_reason=FinishReason.STOP, done=True),
    )

    message = await accumulator.consume(stream, StreamCallbacks(on_chunk=on_chunk), cancel=token)

    assert message.content == "Hel"
    assert seen == ["Hel"]
    assert accumulator.outcome == TurnState.CANCELLED


@pytest.mark.asyncio
async def test_cancellation_error_from_source_is_cancelled_outcome():
    async def source():
        yield StreamChunk(content="part")
        raise CancellationError("Request cancelled")

    accumulator = StreamAccumulator()
    message = await accumulator.consume(source())

    assert message.content == "part"
    assert accumulator.outcome == TurnState.CANCELLED


@pytest.mark.asyncio
async def test_callbacks_fire_in_order():
    events = []

    async def on_chunk(chunk):
        events.append(("chunk", chunk.content))

    def on_complete(message):
        events.append(("complete", message.content))

    accumulator = StreamAccumulator()
    await accumulator.consume(
        chunk_stream(StreamChunk(content="a"), StreamChunk(content="b"), StreamChunk(done=True)),
        StreamCallbacks(on_chunk=on_chunk, on_complete=on_complete),
    )

    assert events == [("chunk", "a"), ("chunk", "b"), ("chunk", None), ("complete", "ab")]


@pytest.mark.asyncio
async def test_error_propagates_and_calls_on_error():
    errors = []

    async def source():
        yield StreamChunk(content="x")
        raise TransportError("boom", status=500)

    accumulator = StreamAccumulator()
    with pytest.raises(TransportError):
        await accumulator.consume(source(), StreamCallbacks(on_error=errors.append))

    assert accumulator.outcome == TurnState.FAILED
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_tool_calls_and_usage_are_recorded():
    call = ToolCall(id="c1", name="lookup", arguments='{"q": 1}')
    accumulator = StreamAccumulator()

    message = await accumulator.consume(
        chunk_stream(
            StreamChunk(tool_calls=[ToolCall(id="c1", name="lookup", arguments='{"q"')]),
            StreamChunk(tool_calls=[call]),
            StreamChunk(finish_reason=FinishReason.TOOL_CALLS, usage=Usage(3, 4, 7), done=True),
        )
    )

    assert message.tool_calls == [call]
    assert accumulator.usage == Usage(3, 4, 7)
    assert accumulator.finish_reason == FinishReason.TOOL_CALLS


@pytest.mark.asyncio
async def test_chunks_after_terminal_are_ignored():
    accumulator = StreamAccumulator()

    message = await accumulator.consume(
        chunk_stream(StreamChunk(content="a"), StreamChunk(done=True), StreamChunk(content="late"))
    )

    assert message.content == "a"


@pytest.mark.asyncio
async def test_stream_without_terminal_still_completes():
    accumulator = StreamAccumulator()

    message = await accumulator.consume(chunk_stream(StreamChunk(content="a")))

    assert message.content == "a"
    assert accumulator.outcome == TurnState.COMPLETED
    assert accumulator.finish_reason is None


@pytest.mark.asyncio
async def test_is_streaming_and_external_cancel():
    gate = asyncio.Event()
    accumulator = StreamAccumulator()

    async def source():
        yield StreamChunk(content="first")
        await gate.wait()
        yield StreamChunk(content="second")

    task = asyncio.create_task(accumulator.consume(source()))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert accumulator.is_streaming

    accumulator.cancel()
    gate.set()
    message = await task

    assert message.content == "first"
    assert accumulator.outcome == TurnState.CANCELLED
    assert not accumulator.is_streaming
