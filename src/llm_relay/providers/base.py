"""Контракт адаптера провайдера (URL, заголовки, конвертация, ответ, цены)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from llm_relay.providers.dispatch import do_request_helper
from llm_relay.relay.context import RelayContext
from llm_relay.relay.meta import Meta, RelayMode
from llm_relay.relay.model import GeneralOpenAIRequest, ImageRequest, Usage
from llm_relay.services import pricing
from llm_relay.services.pricing import ModelConfig


def model_list_from_pricing(table: dict[str, ModelConfig]) -> list[str]:
    """Список моделей адаптера = ключи его таблицы цен (отсортированы)."""
    return sorted(table)


class Adaptor(ABC):
    """Базовый интерфейс адаптера: одна реализация на провайдера."""

    def init(self, meta: Meta) -> None:
        """Привязка контекста вызова (без I/O)."""

    @abstractmethod
    def get_request_url(self, meta: Meta) -> str:
        raise NotImplementedError

    @abstractmethod
    def setup_request_header(self, ctx: RelayContext, headers: httpx.Headers, meta: Meta) -> None:
        raise NotImplementedError

    @abstractmethod
    def convert_request(
        self,
        ctx: RelayContext,
        meta: Meta,
        mode: RelayMode,
        request: GeneralOpenAIRequest | None,
    ) -> Any:
        raise NotImplementedError

    @abstractmethod
    def convert_image_request(self, ctx: RelayContext, request: ImageRequest | None) -> Any:
        raise NotImplementedError

    async def do_request(self, ctx: RelayContext, meta: Meta, body: bytes) -> httpx.Response:
        """Отправка через общий dispatch-хелпер (свой транспорт адаптеры не пишут)."""
        return await do_request_helper(self, ctx, meta, body)

    @abstractmethod
    async def do_response(self, ctx: RelayContext, resp: httpx.Response, meta: Meta) -> Usage:
        """Разбирает ответ upstream: возвращает Usage или бросает RelayError."""
        raise NotImplementedError

    @abstractmethod
    def get_channel_name(self) -> str:
        raise NotImplementedError

    def get_default_model_pricing(self) -> dict[str, ModelConfig]:
        return {}

    def get_model_list(self) -> list[str]:
        return model_list_from_pricing(self.get_default_model_pricing())

    def _channel_type_for_pricing(self) -> int:
        return 0

    def get_model_ratio(self, model_name: str) -> float:
        price = self.get_default_model_pricing().get(model_name)
        if price is not None:
            return price.ratio
        return pricing.get_model_ratio(model_name, self._channel_type_for_pricing())

    def get_completion_ratio(self, model_name: str) -> float:
        price = self.get_default_model_pricing().get(model_name)
        if price is not None:
            return price.completion_ratio
        return pricing.get_completion_ratio(model_name, self._channel_type_for_pricing())
