"""Server-Sent-Events: разбор стрима upstream и сборка событий для клиента."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
from sse_starlette.sse import ServerSentEvent

DONE = "[DONE]"


async def iter_sse_data(resp: httpx.Response) -> AsyncIterator[str]:
    """Отдаёт payload каждой строки `data:` по мере поступления (без буферизации всего тела)."""
    async for line in resp.aiter_lines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        yield line[len("data:"):].strip()


def encode_data(payload: Any) -> bytes:
    """Одно SSE-событие `data: ...\\n\\n` (dict уходит как JSON)."""
    text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return ServerSentEvent(data=text, sep="\n").encode()


def set_event_stream_headers(headers: dict[str, str]) -> None:
    headers["Content-Type"] = "text/event-stream"
    headers["Cache-Control"] = "no-cache"
    headers["X-Accel-Buffering"] = "no"
