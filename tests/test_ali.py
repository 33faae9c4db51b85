import json

import httpx
import pytest
from conftest import make_ctx, make_meta

from llm_relay.providers.ali import AliAdaptor
from llm_relay.providers.ali.convert import convert_image_request, convert_request
from llm_relay.providers.dispatch import encode_request_body
from llm_relay.relay.meta import ChannelConfig, ChannelType, RelayMode
from llm_relay.relay.model import GeneralOpenAIRequest, ImageRequest
from llm_relay.services.errors import UpstreamStatusError
from llm_relay.services.relay import relay_image, relay_text

BASE = "https://dashscope.aliyuncs.com"


def _meta(**overrides):
    values = {
        "channel_type": ChannelType.ALI,
        "base_url": BASE,
        "actual_model_name": "qwen-plus",
        "origin_model_name": "qwen-plus",
    }
    values.update(overrides)
    return make_meta(**values)


def _request(**fields) -> GeneralOpenAIRequest:
    data = {"model": "qwen-plus", "messages": [{"role": "user", "content": "hi"}]}
    data.update(fields)
    return GeneralOpenAIRequest.model_validate(data)


def test_internet_suffix_enables_search() -> None:
    converted = convert_request(_request(model="qwen-max-internet", top_p=1.0, stream=True))
    body = json.loads(encode_request_body(converted))
    assert body["model"] == "qwen-max"
    assert body["parameters"]["enable_search"] is True
    assert body["parameters"]["incremental_output"] is True
    assert body["parameters"]["top_p"] == 0.9999
    assert body["parameters"]["result_format"] == "message"
    assert body["input"]["messages"] == [{"role": "user", "content": "hi"}]


def test_image_request_keeps_response_format_local() -> None:
    converted = convert_image_request(ImageRequest(model="wanx-v1", prompt="cat", size="512x512", response_format="b64_json"))
    body = json.loads(encode_request_body(converted))
    assert body == {"model": "wanx-v1", "input": {"prompt": "cat"}, "parameters": {"size": "512*512", "n": 1}}


@pytest.mark.asyncio
async def test_chat_is_converted_to_openai_shape() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        return httpx.Response(
            200,
            json={
                "request_id": "req-1",
                "output": {"choices": [{"message": {"role": "assistant", "content": "hello"}, "finish_reason": "stop"}]},
                "usage": {"input_tokens": 7, "output_tokens": 3},
            },
        )

    ctx = make_ctx(handler)
    meta = _meta(config=ChannelConfig(plugin="search-plugin"))
    usage = await relay_text(AliAdaptor(), ctx, meta, _request())

    assert seen["url"] == f"{BASE}/api/v1/services/aigc/text-generation/generation"
    assert seen["headers"]["authorization"] == "Bearer sk-test"
    assert seen["headers"]["x-dashscope-plugin"] == "search-plugin"
    chat = json.loads(ctx.writer.body)
    assert chat["id"] == "req-1"
    assert chat["object"] == "chat.completion"
    assert chat["choices"][0]["message"]["content"] == "hello"
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (7, 3, 10)


@pytest.mark.asyncio
async def test_stream_chunks_are_converted_and_terminated() -> None:
    body = (
        'data: {"request_id": "r", "output": {"choices": [{"message": {"role": "assistant", "content": "he"}, "finish_reason": "null"}]}}\n\n'
        'data: {"request_id": "r", "output": {"choices": [{"message": {"content": "llo"}, "finish_reason": "stop"}]},'
        ' "usage": {"input_tokens": 2, "output_tokens": 2, "total_tokens": 4}}\n\n'
    ).encode()
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        return httpx.Response(200, content=body)

    ctx = make_ctx(handler)
    usage = await relay_text(AliAdaptor(), ctx, _meta(is_stream=True), _request(stream=True))

    assert seen["headers"]["x-dashscope-sse"] == "enable"
    assert seen["headers"]["accept"] == "text/event-stream"
    lines = [line for line in ctx.writer.body.decode().split("\n\n") if line]
    assert lines[-1] == "data: [DONE]"
    first = json.loads(lines[0][len("data: "):])
    second = json.loads(lines[1][len("data: "):])
    assert first["choices"][0]["finish_reason"] is None
    assert second["choices"][0]["finish_reason"] == "stop"
    assert usage.total_tokens == 4


@pytest.mark.asyncio
async def test_embeddings() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"output": {"embeddings": [{"text_index": 0, "embedding": [0.1, 0.2]}]}, "usage": {"total_tokens": 3}},
        )

    ctx = make_ctx(handler)
    meta = _meta(mode=RelayMode.EMBEDDINGS, request_url_path="/v1/embeddings", actual_model_name="text-embedding-v1")
    request = GeneralOpenAIRequest.model_validate({"model": "text-embedding-v1", "input": "hello"})
    usage = await relay_text(AliAdaptor(), ctx, meta, request)

    assert seen["url"] == f"{BASE}/api/v1/services/embeddings/text-embedding/text-embedding"
    assert seen["body"]["input"] == {"texts": ["hello"]}
    payload = json.loads(ctx.writer.body)
    assert payload["data"][0]["embedding"] == [0.1, 0.2]
    assert (usage.prompt_tokens, usage.total_tokens) == (3, 3)


@pytest.mark.asyncio
async def test_image_task_is_polled_until_done() -> None:
    polls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            assert request.headers["x-dashscope-async"] == "enable"
            return httpx.Response(200, json={"output": {"task_id": "t1", "task_status": "PENDING"}})
        assert str(request.url) == f"{BASE}/api/v1/tasks/t1"
        polls["n"] += 1
        if polls["n"] < 2:
            return httpx.Response(200, json={"output": {"task_status": "RUNNING"}})
        return httpx.Response(
            200,
            json={"output": {"task_status": "SUCCEEDED", "results": [{"url": "https://img/1.png"}]}},
        )

    ctx = make_ctx(handler)
    meta = _meta(mode=RelayMode.IMAGES_GENERATIONS, request_url_path="/v1/images/generations", actual_model_name="wanx-v1")
    adaptor = AliAdaptor(poll_interval=0, poll_max_attempts=5)
    usage = await relay_image(adaptor, ctx, meta, ImageRequest(model="wanx-v1", prompt="cat"))

    assert polls["n"] == 2
    assert json.loads(ctx.writer.body)["data"] == [{"url": "https://img/1.png"}]
    assert usage.total_tokens == 0


@pytest.mark.asyncio
async def test_failed_image_task() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"output": {"task_id": "t2"}})
        return httpx.Response(200, json={"output": {"task_status": "FAILED", "message": "bad prompt"}})

    ctx = make_ctx(handler)
    meta = _meta(mode=RelayMode.IMAGES_GENERATIONS, request_url_path="/v1/images/generations", actual_model_name="wanx-v1")
    with pytest.raises(UpstreamStatusError) as exc_info:
        await relay_image(AliAdaptor(poll_interval=0), ctx, meta, ImageRequest(model="wanx-v1", prompt="cat"))
    assert exc_info.value.message == "bad prompt"


@pytest.mark.asyncio
async def test_dashscope_error_body() -> None:
    ctx = make_ctx(lambda request: httpx.Response(400, json={"code": "InvalidParameter", "message": "bad input"}))
    with pytest.raises(UpstreamStatusError) as exc_info:
        await relay_text(AliAdaptor(), ctx, _meta(), _request())
    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "InvalidParameter"


def test_pricing_falls_back_to_default() -> None:
    adaptor = AliAdaptor()
    assert adaptor.get_model_ratio("qwen-unknown") == pytest.approx(0.8 * 0.0001)
    assert adaptor.get_completion_ratio("qwen-unknown") == 1.0
    assert adaptor.get_completion_ratio("qwen-max") == 4


@pytest.mark.asyncio
async def test_stream_without_usage_is_estimated_from_text() -> None:
    body = (
        'data: {"output": {"choices": [{"message": {"role": "assistant", "content": "hello "}, "finish_reason": "null"}]}}\n\n'
        'data: {"output": {"choices": [{"message": {"content": "big world"}, "finish_reason": "stop"}]}}\n\n'
    ).encode()
    ctx = make_ctx(lambda request: httpx.Response(200, content=body))
    usage = await relay_text(AliAdaptor(), ctx, _meta(is_stream=True, prompt_tokens=4), _request(stream=True))
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (4, 3, 7)
