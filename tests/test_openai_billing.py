import httpx
import pytest
from conftest import make_ctx, make_meta

from llm_relay.providers.openai import OpenAIAdaptor
from llm_relay.providers.openai.billing import (
    apply_tools_cost,
    search_context_size,
    structured_output_cost,
    web_search_cost,
)
from llm_relay.providers.openai.response_api import convert_chat_completion_to_response_api
from llm_relay.relay.meta import ChannelType
from llm_relay.relay.model import GeneralOpenAIRequest, Usage
from llm_relay.services.errors import InvalidRequestError
from llm_relay.services.relay import relay_text

_USAGE_BODY = {
    "choices": [{"index": 0, "message": {"role": "assistant", "content": "ok"}}],
    "usage": {"prompt_tokens": 10, "completion_tokens": 10, "total_tokens": 20},
}


def _search_request(size: str | None) -> GeneralOpenAIRequest:
    data: dict = {"model": "gpt-4o-search-preview", "messages": [{"role": "user", "content": "news"}]}
    if size is not None:
        data["web_search_options"] = {"search_context_size": size}
    return GeneralOpenAIRequest.model_validate(data)


def _schema_request(model: str = "gpt-4o") -> GeneralOpenAIRequest:
    return GeneralOpenAIRequest.model_validate(
        {
            "model": model,
            "messages": [{"role": "user", "content": "json please"}],
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "answer", "schema": {"type": "object"}},
            },
        }
    )


@pytest.mark.parametrize(
    "model,size,expected",
    [
        ("gpt-4o-search-preview", "low", 15000),
        ("gpt-4o-search-preview", "medium", 17500),
        ("gpt-4o-search-preview", "high", 20000),
        ("gpt-4o-mini-search-preview", "medium", 13750),
        ("gpt-4o", "high", 0),
    ],
)
def test_web_search_cost(model: str, size: str, expected: int) -> None:
    assert web_search_cost(model, size) == expected


def test_unknown_search_context_size_is_rejected() -> None:
    with pytest.raises(InvalidRequestError):
        web_search_cost("gpt-4o-search-preview", "ultra")


def test_search_context_size_defaults_to_medium() -> None:
    assert search_context_size(_search_request(None)) == "medium"
    assert search_context_size(_search_request("low")) == "low"


def test_structured_output_cost_rounds_up() -> None:
    assert structured_output_cost(10, 1.25) == 4
    assert structured_output_cost(0, 1.25) == 0


@pytest.mark.asyncio
async def test_search_model_is_charged_once_per_call() -> None:
    ctx = make_ctx(lambda request: httpx.Response(200, json=_USAGE_BODY))
    meta = make_meta(actual_model_name="gpt-4o-search-preview")
    usage = await relay_text(OpenAIAdaptor(), ctx, meta, _search_request("high"))
    # search-модели идут через chat completions, конвертации нет
    assert ctx.converted_request is None
    assert usage.tools_cost == 20000
    assert usage.total_tokens == 20


def test_converted_request_takes_precedence_over_original() -> None:
    original = _search_request("low")
    converted = convert_chat_completion_to_response_api(original)
    converted.tools = [{"type": "web_search_preview", "search_context_size": "high"}]
    ctx = make_ctx(original_request=original, converted_request=converted)
    meta = make_meta(actual_model_name="gpt-4o-search-preview")

    usage = apply_tools_cost(ctx, meta, Usage(prompt_tokens=1, completion_tokens=1, total_tokens=2))
    assert usage.tools_cost == 20000


def test_invalid_context_size_fails_the_call() -> None:
    ctx = make_ctx(original_request=_search_request("ultra"))
    meta = make_meta(actual_model_name="gpt-4o-search-preview")
    with pytest.raises(InvalidRequestError):
        apply_tools_cost(ctx, meta, Usage(total_tokens=1))


def test_structured_output_uses_channel_ratio_override() -> None:
    ctx = make_ctx(original_request=_schema_request(), channel_model_ratio={"gpt-4o": 2.0})
    usage = apply_tools_cost(ctx, make_meta(), Usage(prompt_tokens=3, completion_tokens=10, total_tokens=13))
    assert usage.tools_cost == 5


def test_structured_output_on_converted_request() -> None:
    converted = convert_chat_completion_to_response_api(_schema_request())
    assert converted.is_structured_output()
    ctx = make_ctx(converted_request=converted, channel_model_ratio={"gpt-4o": 4.0})
    usage = apply_tools_cost(ctx, make_meta(), Usage(completion_tokens=3, total_tokens=3))
    assert usage.tools_cost == 3


def test_plain_request_has_no_surcharge() -> None:
    request = GeneralOpenAIRequest.model_validate({"model": "gpt-4o", "messages": []})
    ctx = make_ctx(original_request=request)
    usage = Usage(prompt_tokens=5, completion_tokens=5, total_tokens=10)
    assert apply_tools_cost(ctx, make_meta(), usage).tools_cost == 0


def test_usage_is_not_mutated_in_place() -> None:
    ctx = make_ctx(original_request=_search_request("medium"))
    usage = Usage(total_tokens=1)
    charged = apply_tools_cost(ctx, make_meta(actual_model_name="gpt-4o-search-preview"), usage)
    assert usage.tools_cost == 0
    assert charged.tools_cost == 17500


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "channel_type,upstream",
    [
        (ChannelType.OPENAI, {"output": [], "usage": {"input_tokens": 5, "output_tokens": 100}}),
        (ChannelType.AZURE, {"choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 100, "total_tokens": 105}}),
    ],
)
async def test_schemaless_json_schema_format_is_charged_on_every_channel(channel_type: ChannelType, upstream: dict) -> None:
    request = GeneralOpenAIRequest.model_validate(
        {
            "model": "gpt-4o",
            "messages": [{"role": "user", "content": "json please"}],
            "response_format": {"type": "json_schema", "json_schema": {"name": "answer"}},
        }
    )
    ctx = make_ctx(lambda r: httpx.Response(200, json=upstream), channel_model_ratio={"gpt-4o": 1.0})
    meta = make_meta(channel_type=channel_type)
    usage = await relay_text(OpenAIAdaptor(channel_type), ctx, meta, request)
    assert usage.completion_tokens == 100
    assert usage.tools_cost == 25
