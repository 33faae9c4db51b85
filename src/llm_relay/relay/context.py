"""Состояние одного вызова relay + приёмник ответа клиенту."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from llm_relay.relay.model import GeneralOpenAIRequest
from llm_relay.settings import RelayPolicy


class ResponseWriter:
    """Куда адаптер пишет ответ клиенту: статус, заголовки, тело (кусками)."""

    def __init__(self) -> None:
        self.status_code: int | None = None
        self.headers: dict[str, str] = {}

    @property
    def headers_sent(self) -> bool:
        return self.status_code is not None

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    async def write_header(self, status_code: int) -> None:
        if self.status_code is None:
            self.status_code = status_code

    async def write(self, chunk: bytes) -> None:
        if self.status_code is None:
            await self.write_header(200)
        await self._write(chunk)

    async def _write(self, chunk: bytes) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class BufferedResponseWriter(ResponseWriter):
    """Копит тело в памяти (тесты, небольшие ответы)."""

    def __init__(self) -> None:
        super().__init__()
        self._chunks: list[bytes] = []

    async def _write(self, chunk: bytes) -> None:
        self._chunks.append(chunk)

    @property
    def body(self) -> bytes:
        return b"".join(self._chunks)


class QueueResponseWriter(ResponseWriter):
    """Отдаёт куски через asyncio.Queue (для StreamingResponse)."""

    _EOF = object()

    def __init__(self, maxsize: int = 64) -> None:
        super().__init__()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._headers_ready = asyncio.Event()

    async def write_header(self, status_code: int) -> None:
        await super().write_header(status_code)
        self._headers_ready.set()

    async def _write(self, chunk: bytes) -> None:
        await self._queue.put(chunk)

    async def close(self) -> None:
        self._headers_ready.set()
        await self._queue.put(self._EOF)

    async def wait_headers(self) -> None:
        await self._headers_ready.wait()

    async def iter_body(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is self._EOF:
                return
            yield chunk


@dataclass
class RelayContext:
    """Явное состояние вызова, которое протягивается через весь pipeline.

    `converted_request` выставляет ConvertRequest, если тело было переписано в
    формат Response API; по нему DoResponse выбирает парсер ответа.
    """

    writer: ResponseWriter = field(default_factory=BufferedResponseWriter)
    policy: RelayPolicy = field(default_factory=RelayPolicy)
    method: str = "POST"
    request_headers: Mapping[str, str] = field(default_factory=dict)
    http_client: httpx.AsyncClient | None = None
    original_request: GeneralOpenAIRequest | None = None
    converted_request: Any = None
    channel_model_ratio: dict[str, float] | None = None

    def inbound_header(self, name: str) -> str:
        """Заголовок входящего запроса без учёта регистра (или "")."""
        lowered = name.lower()
        for key, value in self.request_headers.items():
            if key.lower() == lowered:
                return value
        return ""
