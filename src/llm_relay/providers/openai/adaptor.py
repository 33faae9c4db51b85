"""OpenAI-совместимый адаптер (OpenAI, Azure, OpenRouter и вендоры со схемой OpenAI)."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from llm_relay.providers.base import Adaptor
from llm_relay.providers.dispatch import setup_common_request_header
from llm_relay.providers.openai import constants, handlers
from llm_relay.providers.openai.billing import apply_tools_cost
from llm_relay.providers.openai.response_api import (
    ResponseAPIRequest,
    convert_chat_completion_to_response_api,
)
from llm_relay.providers.openai.urls import VENDOR_URL_RESOLVERS, get_full_request_url
from llm_relay.relay.context import RelayContext
from llm_relay.relay.meta import ChannelType, Meta, RelayMode
from llm_relay.relay.model import (
    GeneralOpenAIRequest,
    ImageRequest,
    RequestProvider,
    StreamOptions,
    Usage,
)
from llm_relay.services import tokenizer
from llm_relay.services.errors import ConfigurationError, InvalidRequestError
from llm_relay.services.pricing import ModelConfig
from llm_relay.settings import RelayPolicy

log = structlog.get_logger()

RESPONSE_API_PATH = "/v1/responses"


def converts_to_response_api(meta: Meta) -> bool:
    """Chat-запрос к самому OpenAI уходит в Response API (кроме chat-only моделей)."""
    return (
        meta.mode == RelayMode.CHAT_COMPLETIONS
        and meta.channel_type == ChannelType.OPENAI
        and not constants.is_model_only_supported_by_chat_completion_api(meta.actual_model_name)
    )


def apply_request_transformations(
    policy: RelayPolicy,
    meta: Meta,
    request: GeneralOpenAIRequest,
) -> None:
    """Правки запроса под канал и модель (на месте)."""
    if meta.channel_type == ChannelType.OPENROUTER:
        request.include_reasoning = True
        if request.provider is None or not request.provider.sort:
            if policy.openrouter_provider_sort:
                if request.provider is None:
                    request.provider = RequestProvider()
                request.provider.sort = policy.openrouter_provider_sort

    if request.stream and not policy.enforce_include_usage:
        log.warning(
            "stream_usage_not_enforced",
            model=meta.actual_model_name,
            hint="set ENFORCE_INCLUDE_USAGE=true to ensure accurate billing in stream mode",
        )

    if policy.enforce_include_usage and request.stream:
        if request.stream_options is None:
            request.stream_options = StreamOptions()
        request.stream_options.include_usage = True

    model = meta.actual_model_name
    if constants.is_reasoning_model(model):
        request.temperature = 1.0
        request.max_tokens = None
        request.top_p = None
        if request.reasoning_effort is None:
            request.reasoning_effort = "high"
        if request.messages is not None:
            request.messages = [m for m in request.messages if m.role != "system"]
    else:
        request.reasoning_effort = None

    if model.endswith(constants.WEB_SEARCH_MODEL_SUFFIX):
        request.temperature = None
        request.top_p = None
        request.presence_penalty = None
        request.n = None
        request.frequency_penalty = None

    if (
        request.stream
        and not policy.enforce_include_usage
        and request.model.endswith(constants.AUDIO_MODEL_SUFFIX)
    ):
        raise ConfigurationError(
            "set ENFORCE_INCLUDE_USAGE=true to enable stream mode for audio models"
        )


def split_total_usage(usage: Usage, prompt_tokens: int) -> Usage:
    """Часть каналов присылает только total_tokens: prompt берём из Meta, completion = остаток."""
    if usage.is_empty() or usage.prompt_tokens != 0:
        return usage
    return usage.model_copy(
        update={
            "prompt_tokens": prompt_tokens,
            "completion_tokens": usage.total_tokens - prompt_tokens,
        }
    )


class OpenAIAdaptor(Adaptor):
    def __init__(self, channel_type: ChannelType = ChannelType.OPENAI) -> None:
        self.channel_type = channel_type

    def init(self, meta: Meta) -> None:
        self.channel_type = meta.channel_type

    def get_request_url(self, meta: Meta) -> str:
        if meta.channel_type == ChannelType.AZURE:
            return self._azure_request_url(meta)

        resolver = VENDOR_URL_RESOLVERS.get(meta.channel_type)
        if resolver is not None:
            return resolver(meta)

        if converts_to_response_api(meta):
            return get_full_request_url(meta.base_url, RESPONSE_API_PATH, meta.channel_type)
        return get_full_request_url(meta.base_url, meta.request_url_path, meta.channel_type)

    def _azure_request_url(self, meta: Meta) -> str:
        api_version = meta.config.api_version
        if meta.actual_model_name.startswith(constants.AZURE_REASONING_PREFIXES):
            api_version = constants.AZURE_REASONING_API_VERSION

        if meta.mode == RelayMode.IMAGES_GENERATIONS:
            return (
                f"{meta.base_url}/openai/deployments/{meta.actual_model_name}"
                f"/images/generations?api-version={api_version}"
            )

        path = meta.request_url_path.split("?", 1)[0]
        task = path[len("/v1/"):] if path.startswith("/v1/") else path.lstrip("/")
        request_url = (
            f"/openai/deployments/{meta.actual_model_name}/{task}?api-version={api_version}"
        )
        return get_full_request_url(meta.base_url, request_url, meta.channel_type)

    def setup_request_header(self, ctx: RelayContext, headers: httpx.Headers, meta: Meta) -> None:
        setup_common_request_header(ctx, headers, meta)
        if meta.channel_type == ChannelType.AZURE:
            headers["api-key"] = meta.api_key
            return
        headers["Authorization"] = f"Bearer {meta.api_key}"
        if meta.channel_type == ChannelType.OPENROUTER:
            headers["HTTP-Referer"] = ctx.policy.openrouter_referer
            headers["X-Title"] = ctx.policy.openrouter_title

    def convert_request(
        self,
        ctx: RelayContext,
        meta: Meta,
        mode: RelayMode,
        request: GeneralOpenAIRequest | None,
    ) -> Any:
        if request is None:
            raise InvalidRequestError("request is nil")

        # Уже формат Response API: отдаём как есть.
        if mode == RelayMode.RESPONSE_API:
            return request

        if mode == RelayMode.CHAT_COMPLETIONS and converts_to_response_api(meta):
            apply_request_transformations(ctx.policy, meta, request)
            converted = convert_chat_completion_to_response_api(request)
            ctx.converted_request = converted
            return converted

        apply_request_transformations(ctx.policy, meta, request)
        return request

    def convert_image_request(self, ctx: RelayContext, request: ImageRequest | None) -> Any:
        if request is None:
            raise InvalidRequestError("request is nil")
        return request

    async def do_response(self, ctx: RelayContext, resp: httpx.Response, meta: Meta) -> Usage:
        try:
            await handlers.ensure_success(resp)
            if meta.is_stream:
                usage = await self._do_stream_response(ctx, resp, meta)
            else:
                usage = await self._do_buffered_response(ctx, resp, meta)
        finally:
            await resp.aclose()
        usage = split_total_usage(usage, meta.prompt_tokens)
        return apply_tools_cost(ctx, meta, usage)

    async def _do_stream_response(self, ctx: RelayContext, resp: httpx.Response, meta: Meta) -> Usage:
        if meta.mode == RelayMode.RESPONSE_API:
            text, usage = await handlers.response_api_direct_stream_handler(ctx, resp)
        elif isinstance(ctx.converted_request, ResponseAPIRequest):
            text, usage = await handlers.response_api_stream_handler(
                ctx, resp, ctx.converted_request.include_usage
            )
        else:
            text, usage = await handlers.stream_handler(ctx, resp, meta.mode)

        if usage is None or usage.is_empty():
            usage = tokenizer.response_text_to_usage(text, meta.actual_model_name, meta.prompt_tokens)
        return usage

    async def _do_buffered_response(
        self,
        ctx: RelayContext,
        resp: httpx.Response,
        meta: Meta,
    ) -> Usage:
        if meta.mode in (RelayMode.IMAGES_GENERATIONS, RelayMode.IMAGES_EDITS):
            return await handlers.image_handler(ctx, resp)
        if meta.mode == RelayMode.RESPONSE_API:
            return await handlers.response_api_direct_handler(
                ctx, resp, meta.prompt_tokens, meta.actual_model_name
            )
        if meta.mode == RelayMode.CHAT_COMPLETIONS and isinstance(
            ctx.converted_request, ResponseAPIRequest
        ):
            return await handlers.response_api_handler(
                ctx, resp, meta.prompt_tokens, meta.actual_model_name
            )
        return await handlers.handler(ctx, resp, meta.prompt_tokens, meta.actual_model_name)

    def get_channel_name(self) -> str:
        name, _ = constants.get_compatible_channel_meta(self.channel_type)
        return name

    def get_model_list(self) -> list[str]:
        _, models = constants.get_compatible_channel_meta(self.channel_type)
        if models is not None:
            return list(models)
        return super().get_model_list()

    def get_default_model_pricing(self) -> dict[str, ModelConfig]:
        return constants.MODEL_RATIOS

    def _channel_type_for_pricing(self) -> int:
        return int(self.channel_type)
