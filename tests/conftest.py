"""Общие fixtures: фейковый токенайзер, настройки канала, mock-upstream."""

from collections.abc import Callable

import httpx
import pytest

from llm_relay import settings as settings_module
from llm_relay.relay.context import BufferedResponseWriter, RelayContext
from llm_relay.relay.meta import ChannelConfig, ChannelType, Meta, RelayMode
from llm_relay.services import tokenizer
from llm_relay.settings import RelayPolicy, Settings


class _WordEncoding:
    """1 токен = 1 слово (без скачивания словарей tiktoken)."""

    def encode(self, text: str, disallowed_special=()) -> list[str]:
        return text.split()


@pytest.fixture(autouse=True)
def fake_encoding(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tokenizer, "get_encoding", lambda model: _WordEncoding())


@pytest.fixture
def configure(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Settings]:
    """Подменяет настройки процесса (env-имена полей)."""

    def _configure(**env: object) -> Settings:
        s = Settings(**env)
        monkeypatch.setattr(settings_module, "_settings", s)
        monkeypatch.setattr(settings_module, "_policy", None)
        return s

    return _configure


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_meta(**overrides: object) -> Meta:
    values: dict = {
        "channel_type": ChannelType.OPENAI,
        "base_url": "https://api.openai.com",
        "api_key": "sk-test",
        "mode": RelayMode.CHAT_COMPLETIONS,
        "channel_id": 7,
        "actual_model_name": "gpt-4o",
        "origin_model_name": "gpt-4o",
        "request_url_path": "/v1/chat/completions",
        "prompt_tokens": 0,
        "config": ChannelConfig(api_version="2024-03-01-preview"),
    }
    values.update(overrides)
    return Meta(**values)


def make_ctx(
    handler: Callable[[httpx.Request], httpx.Response] | None = None,
    policy: RelayPolicy | None = None,
    **fields: object,
) -> RelayContext:
    ctx = RelayContext(
        writer=BufferedResponseWriter(),
        policy=policy or RelayPolicy(),
        **fields,
    )
    if handler is not None:
        ctx.http_client = make_client(handler)
    return ctx
