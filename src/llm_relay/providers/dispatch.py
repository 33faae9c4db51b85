"""Общий хелпер отправки запроса upstream (URL/заголовки берём у адаптера)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import BaseModel

from llm_relay.relay.context import RelayContext
from llm_relay.relay.meta import Meta
from llm_relay.services.errors import ConfigurationError, RelayError, map_transport_exception
from llm_relay.settings import get_settings

if TYPE_CHECKING:
    from llm_relay.providers.base import Adaptor

log = structlog.get_logger()

_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Общий AsyncClient на процесс (пул соединений)."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = httpx.AsyncClient(timeout=httpx.Timeout(settings.relay_timeout_seconds))
    return _client


async def close_http_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def encode_request_body(body: Any) -> bytes:
    """Тело запроса upstream -> JSON bytes.

    Для pydantic-моделей шлём только поля, которые прислал клиент или выставил
    адаптер (присваивание тоже считается), без None.
    """
    if isinstance(body, bytes):
        return body
    if isinstance(body, BaseModel):
        return body.model_dump_json(exclude_unset=True, exclude_none=True, by_alias=True).encode("utf-8")
    return json.dumps(body, ensure_ascii=False).encode("utf-8")


def setup_common_request_header(ctx: RelayContext, headers: httpx.Headers, meta: Meta) -> None:
    """Content-Type/Accept из входящего запроса; для stream по умолчанию SSE."""
    headers["Content-Type"] = ctx.inbound_header("Content-Type") or "application/json"
    accept = ctx.inbound_header("Accept")
    if accept:
        headers["Accept"] = accept
    if meta.is_stream and not accept:
        headers["Accept"] = "text/event-stream"


async def do_request_helper(
    adaptor: Adaptor,
    ctx: RelayContext,
    meta: Meta,
    body: bytes,
) -> httpx.Response:
    """Собирает запрос (URL + заголовки адаптера) и отправляет его со stream=True.

    Ответ возвращается открытым: его закрывает обработчик ответа.
    """
    try:
        url = adaptor.get_request_url(meta)
    except RelayError:
        raise
    except Exception as e:
        raise ConfigurationError(f"get request url failed: {e}") from e

    headers = httpx.Headers()
    adaptor.setup_request_header(ctx, headers, meta)

    client = ctx.http_client or get_http_client()
    request = client.build_request(ctx.method, url, content=body, headers=headers)
    try:
        resp = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        log.warning("upstream_request_failed", channel_type=meta.channel_type.name, err=str(e))
        raise map_transport_exception(e) from e
    return resp
