"""Pipeline одного вызова: Meta -> конвертация -> отправка -> разбор ответа."""

from __future__ import annotations

import time

import structlog

from llm_relay.metrics import relay_latency_seconds, relay_requests_total, tokens_total, tools_cost_total
from llm_relay.providers.base import Adaptor
from llm_relay.providers.dispatch import encode_request_body
from llm_relay.relay.context import RelayContext
from llm_relay.relay.meta import (
    DEFAULT_BASE_URLS,
    ChannelConfig,
    ChannelType,
    Meta,
    RelayMode,
    resolve_model_name,
)
from llm_relay.relay.model import GeneralOpenAIRequest, ImageRequest, Usage
from llm_relay.services.errors import RelayError
from llm_relay.services.pricing import calc_quota
from llm_relay.settings import Settings

log = structlog.get_logger()


def build_meta(
    settings: Settings,
    *,
    mode: RelayMode,
    request_url_path: str,
    model: str = "",
    is_stream: bool = False,
    prompt_tokens: int = 0,
) -> Meta:
    """Meta для единственного настроенного канала процесса."""
    channel_type = ChannelType.from_name(settings.channel_type)
    base_url = settings.channel_base_url or DEFAULT_BASE_URLS.get(channel_type, "")
    return Meta(
        channel_type=channel_type,
        channel_id=settings.channel_id,
        base_url=base_url.rstrip("/"),
        api_key=settings.channel_api_key,
        mode=mode,
        is_stream=is_stream,
        origin_model_name=model,
        actual_model_name=resolve_model_name(model, settings.channel_model_mapping),
        request_url_path=request_url_path,
        prompt_tokens=prompt_tokens,
        config=ChannelConfig(
            api_version=settings.channel_api_version,
            plugin=settings.channel_plugin,
        ),
    )


def _observe(adaptor: Adaptor, meta: Meta, status: str, started: float, usage: Usage | None) -> None:
    channel = adaptor.get_channel_name()
    relay_requests_total.labels(channel=channel, mode=meta.mode.value, status=status).inc()
    relay_latency_seconds.labels(channel=channel, mode=meta.mode.value).observe(
        time.monotonic() - started
    )
    if usage is None:
        return
    model = meta.actual_model_name or "-"
    tokens_total.labels(channel=channel, model=model, kind="prompt").inc(usage.prompt_tokens)
    tokens_total.labels(channel=channel, model=model, kind="completion").inc(usage.completion_tokens)
    if usage.tools_cost:
        tools_cost_total.labels(channel=channel, model=model).inc(usage.tools_cost)


def _call_logging(adaptor: Adaptor, meta: Meta):
    """Поля вызова во всех логах pipeline (structlog contextvars)."""
    return structlog.contextvars.bound_contextvars(
        channel=adaptor.get_channel_name(),
        mode=meta.mode.value,
        model=meta.actual_model_name,
    )


async def _dispatch(adaptor: Adaptor, ctx: RelayContext, meta: Meta, body: bytes) -> Usage:
    started = time.monotonic()
    try:
        resp = await adaptor.do_request(ctx, meta, body)
        usage = await adaptor.do_response(ctx, resp, meta)
    except RelayError as e:
        _observe(adaptor, meta, "failed", started, None)
        log.warning(
            "relay_failed",
            status=e.status_code,
            code=e.code,
            err=e.message,
        )
        raise

    _observe(adaptor, meta, "succeeded", started, usage)
    quota = calc_quota(
        usage.prompt_tokens,
        usage.completion_tokens,
        usage.tools_cost,
        adaptor.get_model_ratio(meta.actual_model_name),
        adaptor.get_completion_ratio(meta.actual_model_name),
    )
    log.info(
        "relay_completed",
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        tools_cost=usage.tools_cost,
        quota=quota,
    )
    return usage


async def relay_text(
    adaptor: Adaptor,
    ctx: RelayContext,
    meta: Meta,
    request: GeneralOpenAIRequest,
) -> Usage:
    """Chat/completions/embeddings/responses через адаптер канала."""
    adaptor.init(meta)
    with _call_logging(adaptor, meta):
        # Исходный запрос клиента не трогаем: адаптер правит копию.
        ctx.original_request = request
        working = request.model_copy(deep=True)
        working.model = meta.actual_model_name or working.model
        converted = adaptor.convert_request(ctx, meta, meta.mode, working)
        return await _dispatch(adaptor, ctx, meta, encode_request_body(converted))


async def relay_image(
    adaptor: Adaptor,
    ctx: RelayContext,
    meta: Meta,
    request: ImageRequest,
) -> Usage:
    adaptor.init(meta)
    with _call_logging(adaptor, meta):
        working = request.model_copy(deep=True)
        working.model = meta.actual_model_name or working.model
        converted = adaptor.convert_image_request(ctx, working)
        return await _dispatch(adaptor, ctx, meta, encode_request_body(converted))


async def relay_proxy(adaptor: Adaptor, ctx: RelayContext, meta: Meta, body: bytes) -> Usage:
    """Сырое проксирование: тело запроса уходит без конвертации."""
    adaptor.init(meta)
    with _call_logging(adaptor, meta):
        return await _dispatch(adaptor, ctx, meta, body)
