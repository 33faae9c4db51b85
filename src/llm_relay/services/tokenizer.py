"""Оценка токенов через tiktoken (когда upstream не прислал usage)."""

from __future__ import annotations

from functools import lru_cache

import structlog
import tiktoken

from llm_relay.relay.model import Message, Usage

log = structlog.get_logger()

# Служебные токены формата chat (на сообщение и на ответ ассистента).
TOKENS_PER_MESSAGE = 3
TOKENS_PER_NAME = 1
REPLY_PRIMING_TOKENS = 3


@lru_cache(maxsize=128)
def get_encoding(model: str) -> tiktoken.Encoding:
    """Кодировка модели; для незнакомых моделей o200k_base/cl100k_base."""
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        if model.startswith(("gpt-4o", "gpt-4.1", "o1", "o3", "o4")):
            return tiktoken.get_encoding("o200k_base")
        return tiktoken.get_encoding("cl100k_base")


def count_text_tokens(text: str, model: str) -> int:
    if not text:
        return 0
    return len(get_encoding(model).encode(text, disallowed_special=()))


def count_message_tokens(messages: list[Message], model: str) -> int:
    """Токены prompt для chat-запроса (по правилам подсчёта OpenAI)."""
    total = 0
    for msg in messages:
        total += TOKENS_PER_MESSAGE
        total += count_text_tokens(msg.string_content(), model)
        total += count_text_tokens(msg.role, model)
        if msg.name:
            total += TOKENS_PER_NAME + count_text_tokens(msg.name, model)
    return total + REPLY_PRIMING_TOKENS


def response_text_to_usage(response_text: str, model: str, prompt_tokens: int) -> Usage:
    """Восстанавливает usage по тексту ответа и известному числу prompt-токенов."""
    completion_tokens = count_text_tokens(response_text, model)
    log.debug(
        "usage_reconstructed",
        model=model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
    )
    return Usage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )
