"""Доплаты к usage за инструменты: web search и structured output."""

from __future__ import annotations

import math
from typing import Any

import structlog

from llm_relay.providers.openai.response_api import ResponseAPIRequest
from llm_relay.relay.context import RelayContext
from llm_relay.relay.meta import Meta
from llm_relay.relay.model import GeneralOpenAIRequest, Usage
from llm_relay.services.errors import InvalidRequestError
from llm_relay.services.pricing import QUOTA_PER_USD, get_model_ratio_with_channel

log = structlog.get_logger()

DEFAULT_SEARCH_CONTEXT_SIZE = "medium"

# USD за 1000 вызовов поиска по размеру контекста.
WEB_SEARCH_USD_PER_1K_CALLS: dict[str, dict[str, float]] = {
    "gpt-4o-search": {"low": 30, "medium": 35, "high": 40},
    "gpt-4o-mini-search": {"low": 25, "medium": 27.5, "high": 30},
}

# Structured output: +25% к completion-токенам по ставке модели (политика, не расчёт).
STRUCTURED_OUTPUT_COST_RATIO = 0.25


def billing_request(ctx: RelayContext) -> Any:
    """Запрос, по которому считаем доплаты: сконвертированный, иначе исходный."""
    if ctx.converted_request is not None:
        return ctx.converted_request
    return ctx.original_request


def search_context_size(request: Any) -> str:
    if isinstance(request, GeneralOpenAIRequest):
        opts = request.web_search_options
        if opts is not None and opts.search_context_size is not None:
            return opts.search_context_size
    elif isinstance(request, ResponseAPIRequest):
        for tool in request.tools or []:
            if str(tool.get("type", "")).startswith("web_search") and tool.get("search_context_size"):
                return str(tool["search_context_size"])
    return DEFAULT_SEARCH_CONTEXT_SIZE


def wants_structured_output(request: Any) -> bool:
    if isinstance(request, GeneralOpenAIRequest):
        fmt = request.response_format
        return fmt is not None and fmt.type == "json_schema" and fmt.json_schema is not None
    if isinstance(request, ResponseAPIRequest):
        return request.is_structured_output()
    return False


def web_search_cost(model: str, context_size: str) -> int:
    """Квота за один вызов search-модели (0 для прочих моделей)."""
    for prefix, rates in WEB_SEARCH_USD_PER_1K_CALLS.items():
        if not model.startswith(prefix):
            continue
        if context_size not in rates:
            raise InvalidRequestError(f"invalid search context size: {context_size}")
        return math.ceil(rates[context_size] * QUOTA_PER_USD / 1000)
    return 0


def structured_output_cost(completion_tokens: int, model_ratio: float) -> int:
    return math.ceil(completion_tokens * STRUCTURED_OUTPUT_COST_RATIO * model_ratio)


def apply_tools_cost(ctx: RelayContext, meta: Meta, usage: Usage) -> Usage:
    """Возвращает копию usage с доплатами в tools_cost (по одному разу на вызов).

    Неизвестный search_context_size -> InvalidRequestError, usage не возвращается.
    """
    request = billing_request(ctx)
    if request is None:
        return usage

    model = meta.actual_model_name
    tools_cost = usage.tools_cost
    tools_cost += web_search_cost(model, search_context_size(request))

    if wants_structured_output(request):
        model_ratio = get_model_ratio_with_channel(model, meta.channel_type, ctx.channel_model_ratio)
        cost = structured_output_cost(usage.completion_tokens, model_ratio)
        tools_cost += cost
        log.debug(
            "structured_output_cost_applied",
            cost=cost,
            completion_tokens=usage.completion_tokens,
            model=model,
        )

    return usage.model_copy(update={"tools_cost": tools_cost})
