"""Обработчики ответов OpenAI-совместимых upstream (stream и buffered)."""

from __future__ import annotations

import json
from typing import Any

import httpx
import structlog

from llm_relay.providers import sse
from llm_relay.providers.openai.response_api import (
    ResponseAPIStreamConverter,
    convert_response_api_to_chat_completion,
    usage_from_response_api,
)
from llm_relay.relay.context import RelayContext
from llm_relay.relay.meta import RelayMode
from llm_relay.relay.model import Usage
from llm_relay.services import tokenizer
from llm_relay.services.errors import UpstreamTransportError, relay_error_from_response

log = structlog.get_logger()

# Заголовки upstream, которые нельзя копировать клиенту как есть (тело уже раскодировано httpx).
_SKIP_RESPONSE_HEADERS = {
    "content-length",
    "content-encoding",
    "transfer-encoding",
    "connection",
    "keep-alive",
}


def copy_response_headers(ctx: RelayContext, resp: httpx.Response) -> None:
    for name, value in resp.headers.items():
        if name.lower() in _SKIP_RESPONSE_HEADERS:
            continue
        ctx.writer.set_header(name, value)


async def read_body(resp: httpx.Response) -> bytes:
    try:
        return await resp.aread()
    except httpx.HTTPError as e:
        raise UpstreamTransportError(f"read upstream response failed: {e}") from e


async def ensure_success(resp: httpx.Response) -> None:
    """Статус >= 400 -> RelayError с сохранением статуса/текста upstream."""
    if resp.status_code < 400:
        return
    body = await read_body(resp)
    err = relay_error_from_response(resp.status_code, body)
    log.warning("upstream_error", status=resp.status_code, code=err.code, err=err.message)
    raise err


def _parse_json(body: bytes) -> dict[str, Any]:
    try:
        data = json.loads(body)
    except ValueError as e:
        raise UpstreamTransportError(f"unmarshal upstream response body failed: {e}") from e
    if not isinstance(data, dict):
        raise UpstreamTransportError("unexpected upstream response body")
    return data


def _raise_embedded_error(data: dict[str, Any], status_code: int, body: bytes) -> None:
    err = data.get("error")
    if isinstance(err, dict) and (err.get("type") or err.get("message")):
        raise relay_error_from_response(status_code if status_code >= 400 else 500, body)


def usage_from_payload(raw: dict[str, Any] | None) -> Usage:
    raw = raw or {}
    prompt = int(raw.get("prompt_tokens") or 0)
    completion = int(raw.get("completion_tokens") or 0)
    total = int(raw.get("total_tokens") or 0)
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def _choice_text(choice: dict[str, Any], key: str) -> str:
    """Текст из choice (message/delta): content + reasoning + аргументы tools."""
    if key == "text" or ("text" in choice and key not in choice):
        return str(choice.get("text") or "")
    part = choice.get(key) or {}
    out = []
    content = part.get("content")
    if isinstance(content, str):
        out.append(content)
    reasoning = part.get("reasoning_content") or part.get("reasoning")
    if isinstance(reasoning, str):
        out.append(reasoning)
    for call in part.get("tool_calls") or []:
        fn = call.get("function") or {}
        out.append(str(fn.get("name") or ""))
        out.append(str(fn.get("arguments") or ""))
    return "".join(out)


async def _write_sse(ctx: RelayContext, payload: Any) -> None:
    await ctx.writer.write(sse.encode_data(payload))


async def _start_event_stream(ctx: RelayContext) -> None:
    sse.set_event_stream_headers(ctx.writer.headers)
    await ctx.writer.write_header(200)


async def stream_handler(
    ctx: RelayContext,
    resp: httpx.Response,
    mode: RelayMode,
) -> tuple[str, Usage | None]:
    """Chat/completions стрим: пересылаем чанки как есть, копим текст и usage."""
    await _start_event_stream(ctx)
    texts: list[str] = []
    usage: Usage | None = None
    try:
        async for data in sse.iter_sse_data(resp):
            if data == sse.DONE:
                await _write_sse(ctx, sse.DONE)
                continue
            await _write_sse(ctx, data)
            try:
                chunk = json.loads(data)
            except ValueError:
                log.warning("stream_chunk_unparsed", data=data[:200])
                continue
            if not isinstance(chunk, dict):
                continue
            key = "delta" if mode == RelayMode.CHAT_COMPLETIONS else "text"
            for choice in chunk.get("choices") or []:
                texts.append(_choice_text(choice, key))
            if chunk.get("usage"):
                usage = usage_from_payload(chunk["usage"])
    except httpx.HTTPError as e:
        log.error("stream_read_failed", err=str(e))
        raise UpstreamTransportError(f"read upstream stream failed: {e}") from e
    return "".join(texts), usage


async def response_api_stream_handler(
    ctx: RelayContext,
    resp: httpx.Response,
    include_usage: bool,
) -> tuple[str, Usage | None]:
    """Стрим Response API -> чанки chat.completion (запрос был сконвертирован)."""
    await _start_event_stream(ctx)
    converter = ResponseAPIStreamConverter(include_usage=include_usage)
    try:
        async for data in sse.iter_sse_data(resp):
            if data == sse.DONE:
                continue
            try:
                event = json.loads(data)
            except ValueError:
                log.warning("stream_event_unparsed", data=data[:200])
                continue
            if not isinstance(event, dict):
                continue
            for chunk in converter.convert(event):
                await _write_sse(ctx, chunk)
    except httpx.HTTPError as e:
        log.error("stream_read_failed", err=str(e))
        raise UpstreamTransportError(f"read upstream stream failed: {e}") from e
    await _write_sse(ctx, sse.DONE)
    return converter.response_text, converter.usage


async def response_api_direct_stream_handler(
    ctx: RelayContext,
    resp: httpx.Response,
) -> tuple[str, Usage | None]:
    """Прямой стрим Response API: строки уходят клиенту без изменений."""
    await _start_event_stream(ctx)
    texts: list[str] = []
    usage: Usage | None = None
    try:
        async for line in resp.aiter_lines():
            await ctx.writer.write(f"{line}\n".encode())
            if not line.startswith("data:"):
                continue
            try:
                event = json.loads(line[len("data:"):].strip())
            except ValueError:
                continue
            if not isinstance(event, dict):
                continue
            kind = event.get("type")
            if kind in ("response.output_text.delta", "response.reasoning_summary_text.delta"):
                texts.append(str(event.get("delta") or ""))
            elif kind in ("response.completed", "response.incomplete"):
                response = event.get("response") or {}
                if response.get("usage"):
                    usage = usage_from_response_api(response["usage"])
    except httpx.HTTPError as e:
        log.error("stream_read_failed", err=str(e))
        raise UpstreamTransportError(f"read upstream stream failed: {e}") from e
    return "".join(texts), usage


async def _write_json(ctx: RelayContext, resp: httpx.Response, body: bytes) -> None:
    copy_response_headers(ctx, resp)
    ctx.writer.set_header("Content-Type", "application/json")
    await ctx.writer.write_header(resp.status_code)
    await ctx.writer.write(body)


async def handler(
    ctx: RelayContext,
    resp: httpx.Response,
    prompt_tokens: int,
    model: str,
) -> Usage:
    """Buffered chat/completions/embeddings: тело уходит как есть, usage из ответа."""
    body = await read_body(resp)
    data = _parse_json(body)
    _raise_embedded_error(data, resp.status_code, body)
    await _write_json(ctx, resp, body)

    usage = usage_from_payload(data.get("usage"))
    if usage.is_empty():
        text = "".join(_choice_text(c, "message") for c in data.get("choices") or [])
        usage = tokenizer.response_text_to_usage(text, model, prompt_tokens)
    return usage


async def response_api_handler(
    ctx: RelayContext,
    resp: httpx.Response,
    prompt_tokens: int,
    model: str,
) -> Usage:
    """Buffered Response API -> chat.completion для клиента."""
    body = await read_body(resp)
    data = _parse_json(body)
    _raise_embedded_error(data, resp.status_code, body)

    chat = convert_response_api_to_chat_completion(data)
    await _write_json(ctx, resp, json.dumps(chat, ensure_ascii=False).encode("utf-8"))

    usage = usage_from_response_api(data.get("usage"))
    if usage.is_empty():
        text = _choice_text(chat["choices"][0], "message")
        usage = tokenizer.response_text_to_usage(text, model, prompt_tokens)
    return usage


def _response_api_output_text(data: dict[str, Any]) -> str:
    texts = []
    for item in data.get("output") or []:
        for part in item.get("content") or []:
            if part.get("type") == "output_text":
                texts.append(part.get("text") or "")
    return "".join(texts)


async def response_api_direct_handler(
    ctx: RelayContext,
    resp: httpx.Response,
    prompt_tokens: int,
    model: str,
) -> Usage:
    """Buffered Response API без конвертации."""
    body = await read_body(resp)
    data = _parse_json(body)
    _raise_embedded_error(data, resp.status_code, body)
    await _write_json(ctx, resp, body)

    usage = usage_from_response_api(data.get("usage"))
    if usage.is_empty():
        usage = tokenizer.response_text_to_usage(
            _response_api_output_text(data), model, prompt_tokens
        )
    return usage


async def image_handler(ctx: RelayContext, resp: httpx.Response) -> Usage:
    """Генерация/редактирование картинок: ответ как есть, токенов нет."""
    body = await read_body(resp)
    data = _parse_json(body)
    _raise_embedded_error(data, resp.status_code, body)
    await _write_json(ctx, resp, body)
    return Usage()
