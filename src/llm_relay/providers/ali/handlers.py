"""Обработчики ответов DashScope (чат, стрим, embeddings, картинки)."""

from __future__ import annotations

import asyncio
import base64
import json
import time
from typing import Any

import httpx
import structlog

from llm_relay.providers import sse
from llm_relay.providers.ali import convert
from llm_relay.providers.dispatch import get_http_client
from llm_relay.providers.openai.handlers import copy_response_headers, read_body
from llm_relay.relay.context import RelayContext
from llm_relay.relay.model import Usage
from llm_relay.services.errors import (
    RelayError,
    UpstreamStatusError,
    UpstreamTransportError,
    relay_error_from_response,
)

log = structlog.get_logger()

TASK_SUCCEEDED = "SUCCEEDED"
TASK_FAILED = {"FAILED", "CANCELED", "UNKNOWN"}


def _parse(body: bytes, status_code: int) -> dict[str, Any]:
    try:
        data = json.loads(body)
    except ValueError as e:
        raise UpstreamTransportError(f"unmarshal upstream response body failed: {e}") from e
    if not isinstance(data, dict):
        raise UpstreamTransportError("unexpected upstream response body")
    if data.get("code") and data.get("message"):
        raise relay_error_from_response(status_code if status_code >= 400 else 500, body)
    return data


async def _write_json(ctx: RelayContext, resp: httpx.Response, payload: dict[str, Any]) -> None:
    copy_response_headers(ctx, resp)
    ctx.writer.set_header("Content-Type", "application/json")
    await ctx.writer.write_header(resp.status_code)
    await ctx.writer.write(json.dumps(payload, ensure_ascii=False).encode("utf-8"))


async def handler(ctx: RelayContext, resp: httpx.Response, model: str) -> Usage:
    data = _parse(await read_body(resp), resp.status_code)
    await _write_json(ctx, resp, convert.response_to_openai(data, model))
    return convert.usage_from_ali(data.get("usage"))


async def stream_handler(ctx: RelayContext, resp: httpx.Response, model: str) -> tuple[str, Usage | None]:
    """Стрим DashScope -> чанки chat.completion; текст копим для оценки токенов."""
    sse.set_event_stream_headers(ctx.writer.headers)
    await ctx.writer.write_header(200)
    texts: list[str] = []
    usage: Usage | None = None
    try:
        async for data in sse.iter_sse_data(resp):
            try:
                chunk = json.loads(data)
            except ValueError:
                log.warning("stream_chunk_unparsed", data=data[:200])
                continue
            if not isinstance(chunk, dict):
                continue
            if chunk.get("usage"):
                usage = convert.usage_from_ali(chunk["usage"])
            converted = convert.stream_response_to_openai(chunk, model)
            if converted is not None:
                content = converted["choices"][0]["delta"].get("content")
                if isinstance(content, str):
                    texts.append(content)
                await ctx.writer.write(sse.encode_data(converted))
    except httpx.HTTPError as e:
        log.error("stream_read_failed", err=str(e))
        raise UpstreamTransportError(f"read upstream stream failed: {e}") from e
    await ctx.writer.write(sse.encode_data(sse.DONE))
    return "".join(texts), usage


async def embedding_handler(ctx: RelayContext, resp: httpx.Response, model: str) -> Usage:
    data = _parse(await read_body(resp), resp.status_code)
    payload = convert.embedding_response_to_openai(data, model)
    await _write_json(ctx, resp, payload)
    total = payload["usage"]["total_tokens"]
    return Usage(prompt_tokens=total, completion_tokens=0, total_tokens=total)


async def _poll_task(
    client: httpx.AsyncClient,
    base_url: str,
    api_key: str,
    task_id: str,
    interval: float,
    max_attempts: int,
) -> dict[str, Any]:
    url = f"{base_url}/api/v1/tasks/{task_id}"
    headers = {"Authorization": f"Bearer {api_key}"}
    for _ in range(max_attempts):
        try:
            r = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamTransportError(f"poll image task failed: {e}") from e
        data = _parse(r.content, r.status_code)
        output = data.get("output") or {}
        status = output.get("task_status")
        if status == TASK_SUCCEEDED:
            return data
        if status in TASK_FAILED:
            raise UpstreamStatusError(
                str(output.get("message") or f"image task {status.lower()}"),
                status_code=502,
                code=str(output.get("code") or "image_task_failed"),
            )
        await asyncio.sleep(interval)
    raise RelayError(f"image task {task_id} timed out", status_code=504, code="image_task_timeout")


async def _fetch_b64(client: httpx.AsyncClient, url: str) -> str:
    try:
        r = await client.get(url)
        r.raise_for_status()
    except httpx.HTTPError as e:
        raise UpstreamTransportError(f"download image failed: {e}") from e
    return base64.b64encode(r.content).decode("ascii")


async def image_handler(
    ctx: RelayContext,
    resp: httpx.Response,
    *,
    base_url: str,
    api_key: str,
    response_format: str | None,
    poll_interval: float,
    poll_max_attempts: int,
) -> Usage:
    """Асинхронная генерация: берём task_id и опрашиваем задачу до результата."""
    data = _parse(await read_body(resp), resp.status_code)
    task_id = (data.get("output") or {}).get("task_id")
    if not task_id:
        raise UpstreamStatusError("image task id is missing", status_code=502, code="image_task_failed")

    client = ctx.http_client or get_http_client()
    result = await _poll_task(client, base_url, api_key, task_id, poll_interval, poll_max_attempts)

    images = []
    for item in (result.get("output") or {}).get("results") or []:
        url = item.get("url")
        if not url:
            continue
        if response_format == "b64_json":
            images.append({"b64_json": await _fetch_b64(client, url)})
        else:
            images.append({"url": url})
    await _write_json(ctx, resp, {"created": int(time.time()), "data": images})
    return Usage()
