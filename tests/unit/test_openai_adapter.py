import json

import pytest

from chatloom.config import ProviderConfig
from chatloom.core.accumulator import CancelToken
from chatloom.core.models import Message, StreamChunk, ToolCall, Usage, user_message
from chatloom.core.types import FinishReason, Role
from chatloom.errors import CancellationError, MalformedResponseError, TransportError
from chatloom.providers.local import LocalAdapter
from chatloom.providers.moonshot import MoonshotAdapter
from chatloom.providers.openai import OpenAIAdapter
from tests.unit.fakes import FakeResponse, FakeTransport, collect, split_bytes, sse


def _delta(content=None, finish=None, **delta):
    if content is not None:
        delta["content"] = content
    return {"choices": [{"index": 0, "delta": delta, "finish_reason": finish}]}


CONFIG = ProviderConfig(provider="openai", model="gpt-4o-mini", api_key="sk-test")


@pytest.mark.asyncio
async def test_stream_yields_content_then_single_terminal_chunk():
    body = sse(_delta("Hel"), _delta("lo"), _delta(finish="stop"), "[DONE]")
    transport = FakeTransport(FakeResponse(chunks=split_bytes(body, 7)))
    adapter = OpenAIAdapter(transport)

    chunks = await collect(adapter.stream([user_message("hi")], CONFIG))

    assert [c.content for c in chunks if c.content] == ["Hel", "lo"]
    terminal = [c for c in chunks if c.is_terminal]
    assert len(terminal) == 1
    assert chunks[-1] is terminal[0]
    assert terminal[0].finish_reason == FinishReason.STOP


@pytest.mark.asyncio
async def test_stream_skips_unparseable_line():
    body = sse(_delta("first"), "{not json", _delta("second"), "[DONE]")
    adapter = OpenAIAdapter(FakeTransport(FakeResponse(chunks=[body])))

    chunks = await collect(adapter.stream([user_message("hi")], CONFIG))

    assert [c.content for c in chunks if c.content] == ["first", "second"]


@pytest.mark.asyncio
async def test_stream_request_shape():
    transport = FakeTransport(FakeResponse(chunks=[sse("[DONE]")]))
    adapter = OpenAIAdapter(transport)
    messages = [
        Message(id="s", role=Role.SYSTEM, content="sys"),
        user_message("hi"),
        Message(id="empty", role=Role.ASSISTANT, content=""),
    ]

    await collect(adapter.stream(messages, CONFIG))

    request = transport.requests[0]
    assert request.url == "https://api.openai.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert request.body["stream"] is True
    assert request.body["model"] == "gpt-4o-mini"
    assert request.body["temperature"] == 0.7
    assert "max_tokens" not in request.body
    assert [m["role"] for m in request.body["messages"]] == ["system", "user"]


@pytest.mark.asyncio
async def test_stream_merges_tool_call_fragments():
    body = sse(
        _delta(tool_calls=[{"index": 0, "id": "call_1", "function": {"name": "lookup", "arguments": '{"q"'}}]),
        _delta(tool_calls=[{"index": 0, "function": {"arguments": ': "x"}'}}]),
        _delta(finish="tool_calls"),
        {"choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}},
        "[DONE]",
    )
    adapter = OpenAIAdapter(FakeTransport(FakeResponse(chunks=[body])))

    chunks = await collect(adapter.stream([user_message("hi")], CONFIG))

    snapshots = [c.tool_calls for c in chunks if c.tool_calls]
    assert snapshots[-1] == [ToolCall(id="call_1", name="lookup", arguments='{"q": "x"}')]
    assert chunks[-1].finish_reason == FinishReason.TOOL_CALLS
    assert chunks[-1].usage == Usage(5, 2, 7)


@pytest.mark.asyncio
async def test_stream_ends_with_terminal_chunk_without_sentinel():
    adapter = OpenAIAdapter(FakeTransport(FakeResponse(chunks=[sse(_delta("only"))])))

    chunks = await collect(adapter.stream([user_message("hi")], CONFIG))

    assert chunks[-1] == StreamChunk(done=True)
    assert chunks[0].content == "only"


@pytest.mark.asyncio
async def test_stream_http_error_raises_transport_error():
    error = json.dumps({"error": {"message": "bad key"}}).encode()
    adapter = OpenAIAdapter(FakeTransport(FakeResponse(status=401, body=error)))

    with pytest.raises(TransportError) as exc_info:
        await collect(adapter.stream([user_message("hi")], CONFIG))

    assert exc_info.value.status == 401
    assert exc_info.value.body == {"error": {"message": "bad key"}}
    assert exc_info.value.provider == "openai"


@pytest.mark.asyncio
async def test_stream_error_event_raises_transport_error():
    body = sse({"error": {"message": "overloaded"}})
    adapter = OpenAIAdapter(FakeTransport(FakeResponse(chunks=[body])))

    with pytest.raises(TransportError, match="overloaded"):
        await collect(adapter.stream([user_message("hi")], CONFIG))


@pytest.mark.asyncio
async def test_stream_cancelled_before_request():
    token = CancelToken()
    token.cancel()
    transport = FakeTransport(FakeResponse(chunks=[sse("[DONE]")]))
    adapter = OpenAIAdapter(transport)

    with pytest.raises(CancellationError):
        await collect(adapter.stream([user_message("hi")], CONFIG, token))

    assert transport.requests == []


@pytest.mark.asyncio
async def test_chat_parses_response():
    data = {
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "content": "Hello",
                    "tool_calls": [{"id": "c1", "type": "function", "function": {"name": "f", "arguments": "{}"}}],
                },
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3},
    }
    transport = FakeTransport(FakeResponse(body=json.dumps(data).encode()))
    adapter = OpenAIAdapter(transport)

    response = await adapter.chat([user_message("hi")], CONFIG)

    assert response.content == "Hello"
    assert response.tool_calls == [ToolCall(id="c1", name="f", arguments="{}")]
    assert response.usage == Usage(1, 2, 3)
    assert response.finish_reason == FinishReason.STOP
    assert "stream" not in transport.requests[0].body


@pytest.mark.asyncio
async def test_chat_rejects_non_json_body():
    adapter = OpenAIAdapter(FakeTransport(FakeResponse(body=b"<html>")))

    with pytest.raises(MalformedResponseError):
        await adapter.chat([user_message("hi")], CONFIG)


@pytest.mark.asyncio
async def test_chat_rejects_missing_choices():
    adapter = OpenAIAdapter(FakeTransport(FakeResponse(body=b'{"id": "x"}')))

    with pytest.raises(MalformedResponseError):
        await adapter.chat([user_message("hi")], CONFIG)


@pytest.mark.asyncio
async def test_moonshot_request_shape():
    transport = FakeTransport(FakeResponse(chunks=[sse("[DONE]")]))
    adapter = MoonshotAdapter(transport)
    config = ProviderConfig(
        provider="moonshot", model="moonshot-v1-8k", api_key="k", frequency_penalty=0.5, presence_penalty=0.5
    )
    messages = [user_message("hi"), Message(id="blank", role=Role.USER, content="   ")]

    await collect(adapter.stream(messages, config, tools=[{"type": "function"}]))

    request = transport.requests[0]
    assert request.url == "https://api.moonshot.cn/v1/chat/completions"
    assert "frequency_penalty" not in request.body
    assert "presence_penalty" not in request.body
    assert "tools" not in request.body
    assert request.body["messages"] == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_local_adapter_without_key_and_custom_url():
    transport = FakeTransport(FakeResponse(chunks=[sse(_delta("ok"), "[DONE]")]))
    adapter = LocalAdapter(transport)
    config = ProviderConfig(provider="local", model="llama3", base_url="http://gpu-box:8000/v1/chat/completions")
    messages = [user_message("hi"), Message(id="a", role=Role.ASSISTANT, content="")]

    chunks = await collect(adapter.stream(messages, config))

    request = transport.requests[0]
    assert request.url == "http://gpu-box:8000/v1/chat/completions"
    assert "Authorization" not in request.headers
    assert [m["role"] for m in request.body["messages"]] == ["user"]
    assert chunks[0].content == "ok"
