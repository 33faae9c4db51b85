"""Адаптер Alibaba DashScope (нативный формат, не OpenAI-схема)."""

from __future__ import annotations

from typing import Any

import httpx

from llm_relay.providers.ali import constants, convert, handlers
from llm_relay.providers.base import Adaptor
from llm_relay.providers.dispatch import setup_common_request_header
from llm_relay.providers.openai.handlers import ensure_success
from llm_relay.relay.context import RelayContext
from llm_relay.relay.meta import Meta, RelayMode
from llm_relay.relay.model import GeneralOpenAIRequest, ImageRequest, Usage
from llm_relay.services import tokenizer
from llm_relay.services.errors import InvalidRequestError
from llm_relay.services.pricing import ModelConfig


class AliAdaptor(Adaptor):
    def __init__(self, poll_interval: float = 2.0, poll_max_attempts: int = 60) -> None:
        self.meta: Meta | None = None
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts
        self._image_response_format: str | None = None

    def init(self, meta: Meta) -> None:
        self.meta = meta

    def get_request_url(self, meta: Meta) -> str:
        if meta.mode == RelayMode.EMBEDDINGS:
            return f"{meta.base_url}/api/v1/services/embeddings/text-embedding/text-embedding"
        if meta.mode == RelayMode.IMAGES_GENERATIONS:
            return f"{meta.base_url}/api/v1/services/aigc/text2image/image-synthesis"
        return f"{meta.base_url}/api/v1/services/aigc/text-generation/generation"

    def setup_request_header(self, ctx: RelayContext, headers: httpx.Headers, meta: Meta) -> None:
        setup_common_request_header(ctx, headers, meta)
        if meta.is_stream:
            headers["Accept"] = "text/event-stream"
            headers["X-DashScope-SSE"] = "enable"
        headers["Authorization"] = f"Bearer {meta.api_key}"
        if meta.mode == RelayMode.IMAGES_GENERATIONS:
            headers["X-DashScope-Async"] = "enable"
        plugin = (self.meta or meta).config.plugin
        if plugin:
            headers["X-DashScope-Plugin"] = plugin

    def convert_request(
        self,
        ctx: RelayContext,
        meta: Meta,
        mode: RelayMode,
        request: GeneralOpenAIRequest | None,
    ) -> Any:
        if request is None:
            raise InvalidRequestError("request is nil")
        if mode == RelayMode.EMBEDDINGS:
            return convert.convert_embedding_request(request)
        return convert.convert_request(request)

    def convert_image_request(self, ctx: RelayContext, request: ImageRequest | None) -> Any:
        if request is None:
            raise InvalidRequestError("request is nil")
        self._image_response_format = request.response_format
        return convert.convert_image_request(request)

    async def do_response(self, ctx: RelayContext, resp: httpx.Response, meta: Meta) -> Usage:
        try:
            await ensure_success(resp)
            if meta.is_stream:
                text, usage = await handlers.stream_handler(ctx, resp, meta.actual_model_name)
                if usage is None or usage.is_empty():
                    usage = tokenizer.response_text_to_usage(
                        text, meta.actual_model_name, meta.prompt_tokens
                    )
                return usage
            if meta.mode == RelayMode.EMBEDDINGS:
                return await handlers.embedding_handler(ctx, resp, meta.actual_model_name)
            if meta.mode == RelayMode.IMAGES_GENERATIONS:
                return await handlers.image_handler(
                    ctx,
                    resp,
                    base_url=meta.base_url,
                    api_key=meta.api_key,
                    response_format=self._image_response_format,
                    poll_interval=self.poll_interval,
                    poll_max_attempts=self.poll_max_attempts,
                )
            return await handlers.handler(ctx, resp, meta.actual_model_name)
        finally:
            await resp.aclose()

    def get_channel_name(self) -> str:
        return "ali"

    def get_default_model_pricing(self) -> dict[str, ModelConfig]:
        return constants.MODEL_RATIOS

    def get_model_ratio(self, model_name: str) -> float:
        price = constants.MODEL_RATIOS.get(model_name)
        if price is not None:
            return price.ratio
        return constants.DEFAULT_MODEL_RATIO

    def get_completion_ratio(self, model_name: str) -> float:
        price = constants.MODEL_RATIOS.get(model_name)
        if price is not None:
            return price.completion_ratio
        return constants.DEFAULT_COMPLETION_RATIO
