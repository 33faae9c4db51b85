"""Цены DashScope (в юанях, пересчитанные в квоту)."""

from llm_relay.services.pricing import MILLI_TOKENS_RMB, QUOTA_PER_USD, USD2RMB, ModelConfig

MODEL_RATIOS: dict[str, ModelConfig] = {
    "qwen-turbo": ModelConfig(0.3 * MILLI_TOKENS_RMB, 2),
    "qwen-plus": ModelConfig(0.8 * MILLI_TOKENS_RMB, 2.5),
    "qwen-max": ModelConfig(2.4 * MILLI_TOKENS_RMB, 4),
    "qwen-long": ModelConfig(0.5 * MILLI_TOKENS_RMB, 4),
    "qwen-turbo-internet": ModelConfig(0.3 * MILLI_TOKENS_RMB, 2),
    "qwen-plus-internet": ModelConfig(0.8 * MILLI_TOKENS_RMB, 2.5),
    "qwen-max-internet": ModelConfig(2.4 * MILLI_TOKENS_RMB, 4),
    "qwen-vl-plus": ModelConfig(1.5 * MILLI_TOKENS_RMB, 3),
    "text-embedding-v1": ModelConfig(0.7 * MILLI_TOKENS_RMB, 1),
    "text-embedding-v2": ModelConfig(0.7 * MILLI_TOKENS_RMB, 1),
    "text-embedding-v3": ModelConfig(0.5 * MILLI_TOKENS_RMB, 1),
    # картинки: ставка за изображение
    "wanx-v1": ModelConfig(0.16 * QUOTA_PER_USD / USD2RMB, 1),
}

DEFAULT_MODEL_RATIO = 0.8 * 0.0001
DEFAULT_COMPLETION_RATIO = 1.0

ENABLE_SEARCH_MODEL_SUFFIX = "-internet"
DEFAULT_IMAGE_SIZE = "1024*1024"
