import asyncio
import json

import httpx
import pytest

from notechat_core.domain.exceptions import (
    CancellationFault,
    ConfigurationError,
    ProviderError,
    RateLimitError,
    TransportError,
    is_cancellation,
)
from notechat_core.domain.models import ChatMessage, ChatRequest
from notechat_core.providers.chat_client import StreamingChatClient
from notechat_core.providers.dialect import Dialect


class SettingsStub:
    def __init__(self, api_endpoint="http://localhost:11434", api_key="", model="llama3", **kw):
        self.api_endpoint = api_endpoint
        self.api_key = api_key
        self.model = model
        self.provider = None
        self.extra_headers = kw.get("extra_headers", {})
        self.http_timeout = None


class Recorder:
    """记录 MockTransport 收到的请求，并按 handler 返回响应。"""

    def __init__(self, handler):
        self._handler = handler
        self.requests = []

    async def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return await self._handler(request)


def make_client(handler, **settings_kw):
    recorder = Recorder(handler)
    client = StreamingChatClient(SettingsStub(**settings_kw), transport=httpx.MockTransport(recorder))
    return client, recorder


def two_messages():
    return [ChatMessage(role="system", content="note body"), ChatMessage(role="user", content="hi")]


async def chunked(chunks, gate: asyncio.Event = None, hang_after: int = None):
    for i, chunk in enumerate(chunks):
        if hang_after is not None and i == hang_after:
            await gate.wait()
        await asyncio.sleep(0)
        yield chunk


def sse(delta):
    return f"data: {json.dumps({'choices': [{'delta': {'content': delta}}]})}\n\n".encode()


def ndjson(delta, done=False):
    return (json.dumps({"message": {"role": "assistant", "content": delta}, "done": done}) + "\n").encode()


# ---- 非流式 ----

@pytest.mark.asyncio
async def test_non_streaming_local_round_trip():
    async def handler(request):
        body = json.loads(request.content)
        assert request.url.path == "/api/chat"
        assert body["options"] == {"temperature": 0.5, "num_predict": 64}
        assert body["stream"] is False
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "local answer"}, "done": True})

    client, recorder = make_client(handler)
    assert client.dialect is Dialect.LOCAL
    msg = await client.chat(ChatRequest(model="llama3", messages=two_messages(), temperature=0.5, max_tokens=64))
    assert msg == ChatMessage(role="assistant", content="local answer")
    assert "authorization" not in recorder.requests[0].headers
    assert not client.in_flight


@pytest.mark.asyncio
async def test_non_streaming_openai_round_trip():
    async def handler(request):
        body = json.loads(request.content)
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert body["max_tokens"] == 32
        assert [m["role"] for m in body["messages"]] == ["system", "user"]
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "remote answer"}}]})

    client, recorder = make_client(handler, api_endpoint="https://api.openai.com/", api_key="sk-test")
    assert client.dialect is Dialect.OPENAI_COMPATIBLE
    msg = await client.chat(ChatRequest(model="gpt-4o", messages=two_messages(), max_tokens=32))
    assert msg.content == "remote answer"
    assert msg.role == "assistant"
    assert recorder.requests[0].headers["authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_openrouter_preset_headers_are_attached():
    async def handler(request):
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "ok"}}]})

    client, recorder = make_client(handler, api_endpoint="https://openrouter.ai/api/v1", api_key="sk-or")
    await client.chat(ChatRequest(model="m", messages=two_messages()))
    headers = recorder.requests[0].headers
    assert headers["x-title"] == "NoteChat"
    assert "http-referer" in headers


# ---- 流式 ----

@pytest.mark.asyncio
async def test_streaming_openai_reassembles_split_lines():
    body = b"".join(sse(d) for d in ["The ", "quick ", "fox"]) + b"data: [DONE]\n\n"
    chunks = [body[i:i + 7] for i in range(0, len(body), 7)]

    async def handler(request):
        return httpx.Response(200, content=chunked(chunks), headers={"content-type": "text/event-stream"})

    client, _ = make_client(handler, api_endpoint="https://api.example.com/v1", api_key="k")
    tokens = []
    msg = await client.chat(ChatRequest(model="m", messages=two_messages(), stream=True), tokens.append)
    assert tokens == ["The ", "quick ", "fox"]
    assert "".join(tokens) == msg.content == "The quick fox"
    assert msg.role == "assistant"


@pytest.mark.asyncio
async def test_streaming_local_with_malformed_line():
    chunks = [ndjson("a") + b'{"message": {"content": \n', ndjson("b"), ndjson("", done=True)]

    async def handler(request):
        return httpx.Response(200, content=chunked(chunks))

    client, _ = make_client(handler)
    tokens = []
    msg = await client.chat(ChatRequest(model="llama3", messages=two_messages(), stream=True), tokens.append)
    assert tokens == ["a", "b"]
    assert msg.content == "ab"


@pytest.mark.asyncio
async def test_streaming_without_callback_still_returns_content():
    async def handler(request):
        return httpx.Response(200, content=chunked([sse("x"), sse("y"), b"data: [DONE]\n\n"]))

    client, _ = make_client(handler, api_endpoint="https://api.example.com")
    msg = await client.chat(ChatRequest(model="m", messages=two_messages(), stream=True))
    assert msg.content == "xy"


# ---- 取消 ----

@pytest.mark.asyncio
async def test_abort_from_token_callback():
    async def handler(request):
        return httpx.Response(200, content=chunked([sse("first"), sse("second"), sse("third")]))

    client, _ = make_client(handler, api_endpoint="https://api.example.com")
    tokens = []

    def on_token(delta):
        tokens.append(delta)
        client.abort()

    with pytest.raises(CancellationFault) as ei:
        await client.chat(ChatRequest(model="m", messages=two_messages(), stream=True), on_token)
    assert tokens == ["first"]
    assert is_cancellation(ei.value)
    assert not isinstance(ei.value, TransportError)
    assert not client.in_flight


@pytest.mark.asyncio
async def test_abort_from_another_task_interrupts_pending_read():
    gate = asyncio.Event()

    async def handler(request):
        return httpx.Response(200, content=chunked([sse("first"), sse("never")], gate=gate, hang_after=1))

    client, _ = make_client(handler, api_endpoint="https://api.example.com")
    tokens = []
    task = asyncio.create_task(
        client.chat(ChatRequest(model="m", messages=two_messages(), stream=True), tokens.append)
    )
    while not tokens:
        await asyncio.sleep(0)
    assert client.in_flight

    client.abort()
    client.abort()
    with pytest.raises(CancellationFault):
        await task
    gate.set()
    await asyncio.sleep(0)
    assert tokens == ["first"]
    assert not client.in_flight


def test_abort_without_call_is_noop():
    client = StreamingChatClient(SettingsStub())
    client.abort()
    client.abort()
    assert not client.in_flight


@pytest.mark.asyncio
async def test_second_concurrent_call_is_rejected():
    gate = asyncio.Event()

    async def handler(request):
        return httpx.Response(200, content=chunked([sse("a"), sse("b")], gate=gate, hang_after=1))

    client, recorder = make_client(handler, api_endpoint="https://api.example.com")
    first = asyncio.create_task(client.chat(ChatRequest(model="m", messages=two_messages(), stream=True)))
    while not client.in_flight or not recorder.requests:
        await asyncio.sleep(0)

    with pytest.raises(ConfigurationError) as ei:
        await client.chat(ChatRequest(model="m", messages=two_messages()))
    assert ei.value.code == "CALL_IN_FLIGHT"
    assert len(recorder.requests) == 1

    gate.set()
    msg = await first
    assert msg.content == "ab"


# ---- 错误 ----

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "req",
    [
        ChatRequest(model="", messages=[ChatMessage(role="user", content="hi")]),
        ChatRequest(model="x", messages=[]),
        ChatRequest(model="x", messages=[ChatMessage(role="user", content="hi")], temperature=1.5),
        ChatRequest(model="x", messages=[ChatMessage(role="user", content="hi")], max_tokens=0),
    ],
)
async def test_invalid_request_fails_before_network(req):
    async def handler(request):
        return httpx.Response(200, json={})

    client, recorder = make_client(handler)
    with pytest.raises(ConfigurationError):
        await client.chat(req)
    assert recorder.requests == []
    assert not client.in_flight


@pytest.mark.asyncio
@pytest.mark.parametrize("stream", [False, True])
async def test_malformed_endpoint_is_configuration_error(stream):
    async def handler(request):
        return httpx.Response(200, json={})

    client, recorder = make_client(handler, api_endpoint="https://[::1")
    with pytest.raises(ConfigurationError) as ei:
        await client.chat(ChatRequest(model="m", messages=two_messages(), stream=stream))
    assert ei.value.code == "INVALID_ENDPOINT"
    assert not is_cancellation(ei.value)
    assert recorder.requests == []
    assert not client.in_flight
    assert await client.fetch_models() == []


@pytest.mark.asyncio
async def test_provider_error_uses_structured_message():
    async def handler(request):
        return httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})

    client, _ = make_client(handler, api_endpoint="https://api.openai.com/v1", api_key="bad")
    with pytest.raises(ProviderError) as ei:
        await client.chat(ChatRequest(model="m", messages=two_messages()))
    assert ei.value.message == "Incorrect API key provided"
    assert ei.value.http_status == 401
    assert not is_cancellation(ei.value)


@pytest.mark.asyncio
async def test_provider_error_on_stream_falls_back_to_status():
    async def handler(request):
        return httpx.Response(500, content=b"<html>boom</html>")

    client, _ = make_client(handler)
    with pytest.raises(ProviderError) as ei:
        await client.chat(ChatRequest(model="llama3", messages=two_messages(), stream=True))
    assert ei.value.message == "API error: 500"


@pytest.mark.asyncio
async def test_rate_limit_is_a_provider_error():
    async def handler(request):
        return httpx.Response(429, json={"error": {"message": "slow down"}})

    client, _ = make_client(handler, api_endpoint="https://api.example.com")
    with pytest.raises(RateLimitError) as ei:
        await client.chat(ChatRequest(model="m", messages=two_messages()))
    assert isinstance(ei.value, ProviderError)


@pytest.mark.asyncio
async def test_transport_failure_is_wrapped():
    async def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _ = make_client(handler)
    with pytest.raises(TransportError) as ei:
        await client.chat(ChatRequest(model="llama3", messages=two_messages()))
    assert "connection refused" in ei.value.message
    assert not is_cancellation(ei.value)
    assert not client.in_flight


# ---- 模型列表 ----

@pytest.mark.asyncio
async def test_fetch_models_local():
    async def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "llama3", "modified_at": "2024-01-01T00:00:00Z", "size": 42}]})

    client, _ = make_client(handler)
    models = await client.fetch_models()
    assert [m.name for m in models] == ["llama3"]
    assert models[0].size_bytes == 42


@pytest.mark.asyncio
async def test_fetch_models_openai():
    async def handler(request):
        assert str(request.url) == "https://api.example.com/v1/models"
        return httpx.Response(200, json={"data": [{"id": "gpt-4o", "created": 0}, {"id": "gpt-4o-mini", "created": 1700000000}]})

    client, _ = make_client(handler, api_endpoint="https://api.example.com")
    models = await client.fetch_models()
    assert [m.name for m in models] == ["gpt-4o", "gpt-4o-mini"]
    assert models[1].modified_at.endswith("Z")


@pytest.mark.asyncio
@pytest.mark.parametrize("failure", ["connect", "status", "json", "crash"])
async def test_fetch_models_never_raises(failure):
    async def handler(request):
        if failure == "connect":
            raise httpx.ConnectError("down", request=request)
        if failure == "status":
            return httpx.Response(503, json={"error": "busy"})
        if failure == "json":
            return httpx.Response(200, content=b"not json")
        raise RuntimeError("unexpected")

    client, _ = make_client(handler)
    assert await client.fetch_models() == []


# ---- 配置 ----

@pytest.mark.asyncio
async def test_update_settings_switches_dialect_for_later_calls():
    async def handler(request):
        if request.url.path == "/api/chat":
            return httpx.Response(200, json={"message": {"role": "assistant", "content": "local"}})
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "remote"}}]})

    client, recorder = make_client(handler)
    assert client.get_current_model() == "llama3"
    assert (await client.chat(ChatRequest(model="llama3", messages=two_messages()))).content == "local"

    client.update_settings(SettingsStub(api_endpoint="https://api.example.com", api_key="k", model=""))
    assert client.dialect is Dialect.OPENAI_COMPATIBLE
    assert client.get_current_model() == ""
    assert (await client.chat(ChatRequest(model="m", messages=two_messages()))).content == "remote"
    assert str(recorder.requests[-1].url) == "https://api.example.com/v1/chat/completions"
