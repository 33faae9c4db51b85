"""Relay-эндпоинты `/v1/*` для единственного настроенного канала."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError

from llm_relay.providers.factory import get_adaptor
from llm_relay.relay.context import QueueResponseWriter, RelayContext
from llm_relay.relay.meta import ChannelType, RelayMode, relay_mode_from_path
from llm_relay.relay.model import GeneralOpenAIRequest, ImageRequest, Usage
from llm_relay.services.errors import InvalidRequestError, RelayError, error_payload
from llm_relay.services.relay import build_meta, relay_image, relay_proxy, relay_text
from llm_relay.services.tokenizer import count_message_tokens, count_text_tokens
from llm_relay.settings import get_policy, get_settings

router = APIRouter()
log = structlog.get_logger()

# Hop-by-hop заголовки не отдаём клиенту (их выставляет сервер).
_HOP_BY_HOP = {"connection", "keep-alive", "transfer-encoding", "content-length"}

# Как часто проверяем, не ушёл ли клиент, пока upstream готовит ответ.
DISCONNECT_POLL_SECONDS = 0.5
# nginx-код "клиент закрыл соединение"
CLIENT_CLOSED_REQUEST = 499


def _prompt_tokens(request: GeneralOpenAIRequest, mode: RelayMode, model: str) -> int:
    if mode == RelayMode.EMBEDDINGS:
        return sum(count_text_tokens(text, model) for text in request.parse_input())
    if request.messages:
        return count_message_tokens(request.messages, model)
    if isinstance(request.input, str):
        return count_text_tokens(request.input, model)
    return 0


async def _wait_headers(request: Request, writer: QueueResponseWriter) -> bool:
    """Ждёт первые заголовки от адаптера; False, если клиент ушёл раньше."""
    headers_ready = asyncio.ensure_future(writer.wait_headers())
    try:
        while True:
            done, _ = await asyncio.wait({headers_ready}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return True
            if await request.is_disconnected():
                return False
    finally:
        headers_ready.cancel()


async def _run(
    request: Request,
    writer: QueueResponseWriter,
    pipeline: Callable[[], Awaitable[Usage]],
) -> Response:
    """Запускает pipeline в задаче и отдаёт клиенту то, что пишет адаптер.

    Ошибка до первых заголовков -> JSON-ошибка. Разрыв клиента (до или после
    заголовков) отменяет задачу и вместе с ней запрос к upstream.
    """

    async def runner() -> Usage:
        try:
            return await pipeline()
        finally:
            await writer.close()

    task = asyncio.create_task(runner())
    if not await _wait_headers(request, writer):
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        log.info("relay_client_disconnected", stage="before_headers")
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    if not writer.headers_sent:
        try:
            await task
        except RelayError as e:
            return JSONResponse(status_code=e.status_code, content=error_payload(e))
        return Response(status_code=204)

    async def body() -> AsyncIterator[bytes]:
        try:
            async for chunk in writer.iter_body():
                yield chunk
            await task
        except RelayError as e:
            log.warning("relay_failed_after_headers", code=e.code, err=e.message)
        finally:
            if not task.done():
                task.cancel()

    headers = {k: v for k, v in writer.headers.items() if k.lower() not in _HOP_BY_HOP}
    return StreamingResponse(body(), status_code=writer.status_code or 200, headers=headers)


def _context(request: Request, writer: QueueResponseWriter) -> RelayContext:
    settings = get_settings()
    return RelayContext(
        writer=writer,
        policy=get_policy(),
        method=request.method,
        request_headers=dict(request.headers),
        channel_model_ratio=settings.channel_model_ratio or None,
    )


async def _relay_text(request: Request) -> Response:
    try:
        payload = GeneralOpenAIRequest.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        err = InvalidRequestError(f"invalid request body: {e}")
        return JSONResponse(status_code=err.status_code, content=error_payload(err))

    settings = get_settings()
    mode = relay_mode_from_path(request.url.path)
    meta = build_meta(
        settings,
        mode=mode,
        request_url_path=request.url.path,
        model=payload.model,
        is_stream=payload.stream,
        prompt_tokens=_prompt_tokens(payload, mode, payload.model),
    )
    writer = QueueResponseWriter()
    ctx = _context(request, writer)
    adaptor = get_adaptor(meta.channel_type)
    return await _run(request, writer, lambda: relay_text(adaptor, ctx, meta, payload))


@router.post("/chat/completions")
async def chat_completions(request: Request) -> Response:
    return await _relay_text(request)


@router.post("/completions")
async def completions(request: Request) -> Response:
    return await _relay_text(request)


@router.post("/embeddings")
async def embeddings(request: Request) -> Response:
    return await _relay_text(request)


@router.post("/responses")
async def responses(request: Request) -> Response:
    return await _relay_text(request)


@router.post("/images/generations")
async def images_generations(request: Request) -> Response:
    try:
        payload = ImageRequest.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        err = InvalidRequestError(f"invalid request body: {e}")
        return JSONResponse(status_code=err.status_code, content=error_payload(err))

    meta = build_meta(
        get_settings(),
        mode=RelayMode.IMAGES_GENERATIONS,
        request_url_path=request.url.path,
        model=payload.model,
    )
    writer = QueueResponseWriter()
    ctx = _context(request, writer)
    adaptor = get_adaptor(meta.channel_type)
    return await _run(request, writer, lambda: relay_image(adaptor, ctx, meta, payload))


@router.api_route(
    "/oneapi/proxy/{channel_id}/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
)
async def proxy(channel_id: int, path: str, request: Request) -> Response:
    settings = get_settings()
    if channel_id != settings.channel_id:
        err = InvalidRequestError(f"unknown channel id: {channel_id}")
        return JSONResponse(status_code=err.status_code, content=error_payload(err))

    url_path = request.url.path
    if request.url.query:
        url_path = f"{url_path}?{request.url.query}"
    meta = build_meta(settings, mode=RelayMode.PROXY, request_url_path=url_path)
    body = await request.body()
    writer = QueueResponseWriter()
    ctx = _context(request, writer)
    adaptor = get_adaptor(ChannelType.PROXY)
    return await _run(request, writer, lambda: relay_proxy(adaptor, ctx, meta, body))
