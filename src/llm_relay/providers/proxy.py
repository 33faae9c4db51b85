"""Проксирующий адаптер: без конвертации формата, тело и статус как есть."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from llm_relay.providers.base import Adaptor
from llm_relay.relay.context import RelayContext
from llm_relay.relay.meta import Meta, RelayMode
from llm_relay.relay.model import GeneralOpenAIRequest, ImageRequest, Usage
from llm_relay.services.errors import NotImplementedByAdaptorError, UpstreamTransportError

log = structlog.get_logger()

CHANNEL_NAME = "proxy"
PROXY_PATH_PREFIX = "/v1/oneapi/proxy"

# Заголовки транспорта, которые не пересылаем upstream.
_DROP_REQUEST_HEADERS = {"host", "content-length", "accept-encoding", "connection"}


def proxy_prefix(channel_id: int) -> str:
    return f"{PROXY_PATH_PREFIX}/{channel_id}"


class ProxyAdaptor(Adaptor):
    def get_request_url(self, meta: Meta) -> str:
        """Срезает собственный префикс шлюза и дописывает остаток к base_url."""
        prefix = proxy_prefix(meta.channel_id)
        path = meta.request_url_path
        if path.startswith(prefix):
            path = path[len(prefix):]
        return meta.base_url + path

    def setup_request_header(self, ctx: RelayContext, headers: httpx.Headers, meta: Meta) -> None:
        for name, value in ctx.request_headers.items():
            if name.lower() in _DROP_REQUEST_HEADERS:
                continue
            headers[name] = value
        headers["Authorization"] = meta.api_key

    def convert_request(
        self,
        ctx: RelayContext,
        meta: Meta,
        mode: RelayMode,
        request: GeneralOpenAIRequest | None,
    ) -> Any:
        raise NotImplementedByAdaptorError("not implemented")

    def convert_image_request(self, ctx: RelayContext, request: ImageRequest | None) -> Any:
        raise NotImplementedByAdaptorError("not implemented")

    async def do_response(self, ctx: RelayContext, resp: httpx.Response, meta: Meta) -> Usage:
        """Статус, заголовки и сырые байты тела уходят клиенту без изменений.

        Usage всегда нулевой: вызов логируется, но не списывается.
        """
        try:
            for name, value in resp.headers.items():
                ctx.writer.set_header(name, value)
            await ctx.writer.write_header(resp.status_code)
            async for chunk in resp.aiter_raw():
                await ctx.writer.write(chunk)
        except httpx.HTTPError as e:
            log.error("proxy_copy_failed", err=str(e))
            raise UpstreamTransportError(str(e)) from e
        finally:
            await resp.aclose()
        return Usage()

    def get_model_list(self) -> list[str]:
        return []

    def get_channel_name(self) -> str:
        return CHANNEL_NAME
