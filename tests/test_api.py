import asyncio
import json

import httpx
import pytest
from conftest import make_client
from fastapi.testclient import TestClient

from llm_relay.api import v1_relay
from llm_relay.main import app
from llm_relay.providers import dispatch
from llm_relay.relay.context import QueueResponseWriter
from llm_relay.relay.model import Usage
from llm_relay.services.errors import InvalidRequestError


@pytest.fixture
def upstream(monkeypatch: pytest.MonkeyPatch):
    """Подменяет общий httpx-клиент mock-транспортом; возвращает список запросов."""
    calls: list[httpx.Request] = []
    responses: list = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return responses.pop(0)

    monkeypatch.setattr(dispatch, "_client", make_client(handler))
    return calls, responses


def test_chat_completion_passthrough(configure, upstream) -> None:
    configure(
        CHANNEL_TYPE="deepseek",
        CHANNEL_API_KEY="sk-deep",
        CHANNEL_MODEL_MAPPING={"chat": "deepseek-chat"},
    )
    calls, responses = upstream
    body = {"id": "x", "choices": [{"index": 0, "message": {"role": "assistant", "content": "a b c"}}]}
    responses.append(httpx.Response(200, json=body))

    r = TestClient(app).post("/v1/chat/completions", json={"model": "chat", "messages": [{"role": "user", "content": "hi"}]})

    assert r.status_code == 200
    assert r.json() == body
    sent = calls[0]
    assert str(sent.url) == "https://api.deepseek.com/v1/chat/completions"
    assert sent.headers["authorization"] == "Bearer sk-deep"
    assert json.loads(sent.content)["model"] == "deepseek-chat"


def test_upstream_error_is_returned_with_its_status(configure, upstream) -> None:
    configure(CHANNEL_TYPE="deepseek", CHANNEL_API_KEY="bad")
    _, responses = upstream
    responses.append(httpx.Response(401, json={"error": {"message": "Invalid key", "type": "auth", "code": "invalid_api_key"}}))

    r = TestClient(app).post("/v1/chat/completions", json={"model": "deepseek-chat", "messages": []})

    assert r.status_code == 401
    assert r.json() == {"error": {"code": "invalid_api_key", "message": "Invalid key", "type": "auth"}}


def test_stream_is_forwarded_as_sse(configure, upstream) -> None:
    configure(CHANNEL_TYPE="deepseek", ENFORCE_INCLUDE_USAGE=True)
    calls, responses = upstream
    chunk = {"choices": [{"index": 0, "delta": {"content": "hi"}}]}
    sse = f"data: {json.dumps(chunk)}\n\ndata: [DONE]\n\n".encode()
    responses.append(httpx.Response(200, content=sse))

    r = TestClient(app).post(
        "/v1/chat/completions",
        json={"model": "deepseek-chat", "stream": True, "messages": [{"role": "user", "content": "x"}]},
    )

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.content == sse
    assert json.loads(calls[0].content)["stream_options"] == {"include_usage": True}


def test_invalid_body_is_rejected_before_upstream(configure, upstream) -> None:
    configure(CHANNEL_TYPE="deepseek")
    calls, _ = upstream

    r = TestClient(app).post("/v1/chat/completions", content=b"not json", headers={"content-type": "application/json"})

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_request"
    assert calls == []


def test_audio_stream_requires_usage_enforcement(configure, upstream) -> None:
    configure(CHANNEL_TYPE="openai")
    calls, _ = upstream

    r = TestClient(app).post(
        "/v1/chat/completions",
        json={"model": "gpt-4o-audio", "stream": True, "messages": [{"role": "user", "content": "x"}]},
    )

    assert r.status_code == 500
    assert r.json()["error"]["code"] == "configuration_error"
    assert calls == []


def test_proxy_route(configure, upstream) -> None:
    configure(CHANNEL_ID=7, CHANNEL_BASE_URL="https://up.example.com", CHANNEL_API_KEY="raw")
    calls, responses = upstream
    responses.append(httpx.Response(202, content=b"accepted", headers={"x-upstream": "yes"}))

    r = TestClient(app).get("/v1/oneapi/proxy/7/files?limit=1")

    assert r.status_code == 202
    assert r.content == b"accepted"
    assert r.headers["x-upstream"] == "yes"
    assert str(calls[0].url) == "https://up.example.com/files?limit=1"
    assert calls[0].headers["authorization"] == "raw"


def test_proxy_route_rejects_other_channels(configure, upstream) -> None:
    configure(CHANNEL_ID=7)
    calls, _ = upstream

    r = TestClient(app).get("/v1/oneapi/proxy/8/files")

    assert r.status_code == 400
    assert calls == []


def test_models_for_configured_channel(configure) -> None:
    configure(CHANNEL_TYPE="deepseek")

    r = TestClient(app).get("/v1/models")

    assert r.status_code == 200
    data = r.json()["data"]
    assert [m["id"] for m in data] == ["deepseek-chat", "deepseek-reasoner"]
    assert {m["owned_by"] for m in data} == {"deepseek"}


class _Inbound:
    """Входящий запрос, у которого можно «оборвать» соединение."""

    def __init__(self, gone: bool) -> None:
        self.gone = gone

    async def is_disconnected(self) -> bool:
        return self.gone


@pytest.mark.asyncio
async def test_client_disconnect_before_headers_cancels_upstream_call(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(v1_relay, "DISCONNECT_POLL_SECONDS", 0.01)
    cancelled = asyncio.Event()

    async def slow_upstream() -> Usage:
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return Usage()

    r = await v1_relay._run(_Inbound(gone=True), QueueResponseWriter(), slow_upstream)

    assert r.status_code == v1_relay.CLIENT_CLOSED_REQUEST
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_buffered_error_waits_for_connected_client(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(v1_relay, "DISCONNECT_POLL_SECONDS", 0.01)

    async def failing_upstream() -> Usage:
        await asyncio.sleep(0.05)
        raise InvalidRequestError("bad")

    r = await v1_relay._run(_Inbound(gone=False), QueueResponseWriter(), failing_upstream)

    assert r.status_code == 400
    assert json.loads(r.body)["error"]["message"] == "bad"
