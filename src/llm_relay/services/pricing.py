"""Ставки моделей (ratio/completion ratio) и пересчёт usage в квоту."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources

from llm_relay.relay.meta import ChannelType

# 1 USD = 500k единиц квоты; ratio = квота за 1 токен.
QUOTA_PER_USD = 500_000
MILLI_TOKENS_USD = QUOTA_PER_USD / 1_000_000
USD2RMB = 7
MILLI_TOKENS_RMB = MILLI_TOKENS_USD / USD2RMB

# Последний рубеж, если модели нет нигде (заведомо дорого).
DEFAULT_MODEL_RATIO = 30.0
DEFAULT_COMPLETION_RATIO = 1.0


@dataclass(frozen=True)
class ModelConfig:
    """Ставка модели: квота за prompt-токен и множитель для completion."""

    ratio: float
    completion_ratio: float = 1.0


@lru_cache(maxsize=1)
def load_pricing() -> dict:
    text = resources.files("llm_relay").joinpath("data/pricing.json").read_text(encoding="utf-8")
    return json.loads(text)


def _rows_to_configs(rows: dict) -> dict[str, ModelConfig]:
    out: dict[str, ModelConfig] = {}
    for name, row in rows.items():
        if not isinstance(row, dict):
            continue
        out[name] = ModelConfig(
            ratio=float(row.get("input_usd_per_1m", 0.0)) * MILLI_TOKENS_USD,
            completion_ratio=float(row.get("completion_ratio", DEFAULT_COMPLETION_RATIO)),
        )
    return out


@lru_cache(maxsize=64)
def global_model_table(channel_type: int) -> dict[str, ModelConfig]:
    """Глобальная таблица для типа канала: общие модели + модели этого типа."""
    pricing = load_pricing()
    table = _rows_to_configs(pricing.get("models") or {})
    try:
        key = ChannelType(channel_type).name.lower()
    except ValueError:
        return table
    per_channel = (pricing.get("channel_types") or {}).get(key) or {}
    table.update(_rows_to_configs(per_channel))
    return table


def get_model_ratio(model: str, channel_type: int) -> float:
    price = global_model_table(int(channel_type)).get(model)
    if price is not None:
        return price.ratio
    return DEFAULT_MODEL_RATIO


def get_completion_ratio(model: str, channel_type: int) -> float:
    price = global_model_table(int(channel_type)).get(model)
    if price is not None:
        return price.completion_ratio
    return DEFAULT_COMPLETION_RATIO


def get_model_ratio_with_channel(
    model: str,
    channel_type: int,
    channel_model_ratio: dict[str, float] | None,
) -> float:
    """Ставка с учётом override канала (если канал публикует свою)."""
    if channel_model_ratio:
        override = channel_model_ratio.get(model)
        if override is not None:
            return float(override)
    return get_model_ratio(model, channel_type)


def calc_quota(
    prompt_tokens: int,
    completion_tokens: int,
    tools_cost: int,
    model_ratio: float,
    completion_ratio: float,
) -> int:
    """Квота за вызов: токены по ставкам + стоимость инструментов."""
    tokens = prompt_tokens + completion_tokens * completion_ratio
    quota = math.ceil(tokens * model_ratio) + tools_cost
    if model_ratio != 0 and quota <= 0 and (prompt_tokens or completion_tokens):
        quota = 1
    return quota
