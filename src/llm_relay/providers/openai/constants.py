"""Таблица цен OpenAI-адаптера и списки моделей с особыми правилами."""

from __future__ import annotations

from llm_relay.relay.meta import ChannelType
from llm_relay.services.pricing import MILLI_TOKENS_USD, ModelConfig

# Ставки в квоте за токен: $/1M input * MILLI_TOKENS_USD, completion: множитель.
MODEL_RATIOS: dict[str, ModelConfig] = {
    "gpt-3.5-turbo": ModelConfig(0.5 * MILLI_TOKENS_USD, 3),
    "gpt-4": ModelConfig(30 * MILLI_TOKENS_USD, 2),
    "gpt-4-turbo": ModelConfig(10 * MILLI_TOKENS_USD, 3),
    "gpt-4o": ModelConfig(2.5 * MILLI_TOKENS_USD, 4),
    "gpt-4o-2024-11-20": ModelConfig(2.5 * MILLI_TOKENS_USD, 4),
    "gpt-4o-mini": ModelConfig(0.15 * MILLI_TOKENS_USD, 4),
    "gpt-4o-search-preview": ModelConfig(2.5 * MILLI_TOKENS_USD, 4),
    "gpt-4o-mini-search-preview": ModelConfig(0.15 * MILLI_TOKENS_USD, 4),
    "gpt-4o-audio-preview": ModelConfig(2.5 * MILLI_TOKENS_USD, 4),
    "gpt-4o-mini-audio-preview": ModelConfig(0.15 * MILLI_TOKENS_USD, 4),
    "gpt-4.1": ModelConfig(2 * MILLI_TOKENS_USD, 4),
    "gpt-4.1-mini": ModelConfig(0.4 * MILLI_TOKENS_USD, 4),
    "gpt-4.1-nano": ModelConfig(0.1 * MILLI_TOKENS_USD, 4),
    "o1": ModelConfig(15 * MILLI_TOKENS_USD, 4),
    "o1-mini": ModelConfig(1.1 * MILLI_TOKENS_USD, 4),
    "o3": ModelConfig(2 * MILLI_TOKENS_USD, 4),
    "o3-mini": ModelConfig(1.1 * MILLI_TOKENS_USD, 4),
    "o4-mini": ModelConfig(1.1 * MILLI_TOKENS_USD, 4),
    "text-embedding-3-small": ModelConfig(0.02 * MILLI_TOKENS_USD, 1),
    "text-embedding-3-large": ModelConfig(0.13 * MILLI_TOKENS_USD, 1),
    "text-embedding-ada-002": ModelConfig(0.1 * MILLI_TOKENS_USD, 1),
    "dall-e-3": ModelConfig(40 * MILLI_TOKENS_USD, 1),
    "gpt-image-1": ModelConfig(5 * MILLI_TOKENS_USD, 8),
}

# Reasoning-модели: только temperature=1, без system/max_tokens/top_p.
REASONING_MODEL_PREFIXES = ("o1", "o3", "o4")

# Для этих префиксов Azure требует свежую api-version.
AZURE_REASONING_API_VERSION = "2024-12-01-preview"
AZURE_REASONING_PREFIXES = ("o1", "o3")

WEB_SEARCH_MODEL_SUFFIX = "-search"
AUDIO_MODEL_SUFFIX = "-audio"

# Подстроки моделей, которые работают только через /v1/chat/completions.
CHAT_COMPLETION_ONLY_MARKERS = ("-search", "-audio")

# Имя канала + его собственный список моделей (None -> список OpenAI).
COMPATIBLE_CHANNELS: dict[ChannelType, tuple[str, list[str] | None]] = {
    ChannelType.OPENAI: ("openai", None),
    ChannelType.AZURE: ("azure", None),
    ChannelType.OPENAI_COMPATIBLE: ("openai-compatible", None),
    ChannelType.OPENROUTER: ("openrouter", ["openai/gpt-4o", "anthropic/claude-3.5-sonnet"]),
    ChannelType.MINIMAX: ("minimax", ["abab6.5s-chat", "MiniMax-Text-01"]),
    ChannelType.MISTRAL: ("mistralai", ["mistral-large-latest", "mistral-small-latest"]),
    ChannelType.GROQ: ("groq", ["llama-3.3-70b-versatile", "llama-3.1-8b-instant"]),
    ChannelType.DEEPSEEK: ("deepseek", ["deepseek-chat", "deepseek-reasoner"]),
    ChannelType.TOGETHER: ("together.ai", ["meta-llama/Llama-3.3-70B-Instruct-Turbo"]),
    ChannelType.DOUBAO: ("doubao", ["doubao-pro-32k", "doubao-lite-32k"]),
    ChannelType.NOVITA: ("novita", ["meta-llama/llama-3.1-70b-instruct"]),
    ChannelType.XAI: ("xai", ["grok-3", "grok-3-mini"]),
    ChannelType.BAIDU_V2: ("baiduv2", ["ernie-4.0-8k", "ernie-3.5-8k"]),
    ChannelType.ALI_BAILIAN: ("alibailian", ["qwen-turbo", "qwen-plus", "qwen-max"]),
    ChannelType.GEMINI_OPENAI_COMPATIBLE: (
        "geminiOpenaiCompatible",
        ["gemini-2.0-flash", "gemini-1.5-pro"],
    ),
}


def get_compatible_channel_meta(channel_type: int) -> tuple[str, list[str] | None]:
    try:
        return COMPATIBLE_CHANNELS[ChannelType(channel_type)]
    except (KeyError, ValueError):
        return "openai", None


def is_reasoning_model(model: str) -> bool:
    return model.startswith(REASONING_MODEL_PREFIXES)


def is_model_only_supported_by_chat_completion_api(model: str) -> bool:
    """Модели, которые нельзя переводить в Response API."""
    return any(marker in model for marker in CHAT_COMPLETION_ONLY_MARKERS)
